# -*- coding: utf-8 -*-
"""
Copyright (C) 2023 pyprg

This program is free software: you can redistribute it and/or modify
it under the terms of the GNU General Public License as published by
the Free Software Foundation, either version 3 of the License, or
(at your option) any later version.

This program is distributed in the hope that it will be useful,
but WITHOUT ANY WARRANTY; without even the implied warranty of
MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
GNU General Public License for more details.

You should have received a copy of the GNU General Public License
along with this program.  If not, see <https://www.gnu.org/licenses/>.

Created on Mon Oct 16 09:12:40 2023

@author: pyprg

Exceptions raised by the estimation. Conditions a caller can recover from
(a flagged outlier, an iteration without convergence) are returned as
values, these classes cover the fatal ones.
"""

class EstimationError(Exception):
    """Base class of all errors raised by acsex."""

class ObservabilityError(EstimationError):
    """The measurements do not determine the state of the grid.

    Raised when the gain matrix (or the triangular factor of the
    orthogonal variant) is singular or numerically degenerate."""

class CorrelationConfigurationError(EstimationError):
    """Orthogonal variant requested for correlated PMU errors."""

class ConvergenceFailure(EstimationError):
    """Iteration bound exhausted before the tolerance was met.

    Parameters
    ----------
    increment: float
        maximum absolute value of the last increment
    iterations: int
        number of executed iterations"""

    def __init__(self, increment, iterations):
        super().__init__(
            f'no convergence after {iterations} iterations, '
            f'last maximum increment {increment:.3e}')
        self.increment = increment
        self.iterations = iterations

class InconsistentUpdateError(EstimationError):
    """Update of a measurement which cannot be mirrored into the estimation.

    Unknown labels, fields not existing for the measurement and changes
    of the row structure (coordinate form of a PMU, correlation) are
    rejected."""
