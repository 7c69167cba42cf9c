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

Created on Mon Oct 16 09:05:12 2023

@author: pyprg
"""

__doc__ = """AC state estimation of transmission grids.

Weighted least squares (normal equations or orthogonal factorization),
least absolute value estimation, largest normalized residual test,
Newton-Raphson power flow.
"""

from .errors import (
    EstimationError, ObservabilityError, CorrelationConfigurationError,
    ConvergenceFailure, InconsistentUpdateError)
from .model import Bus, Branch, make_model
from .measurement import (
    Measurements, Template, Meterconfig, Pmuconfig, DEFAULT_TEMPLATE,
    set_means_from_state)
from .estim import (
    Variant, Status, build, iterate, solve, calculate, update_measurement,
    test_residuals, set_initial_point, get_voltages)
from .powerflow import calculate_power_flow
from .result import calculate_electric_data
