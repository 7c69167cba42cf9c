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

Created on Thu Oct 19 08:16:37 2023

@author: pyprg

AC state estimation.

Weighted least squares (variants 'normal' and 'orthogonal') solved by
Gauss-Newton iterations and least absolute value estimation (variant
'lav') solved by IPOPT.

Typical use::

    estimation = build(model, measurements)
    calculate(estimation)
    result = test_residuals(estimation)
    if result.detected:
        update_measurement(estimation, result.label, status=0)
        calculate(estimation)
"""
import logging
import numpy as np
import pandas as pd
from enum import Enum
from acsex.baddata import test_residuals as _test_residuals
from acsex.errors import (
    ConvergenceFailure, CorrelationConfigurationError,
    InconsistentUpdateError)
from acsex.jacobian import (
    calculate_jacobian, create_jacobian, get_rows, get_signature,
    is_correlated, update_rows)
from acsex.lav import create_lav_model, solve_lav, update_rows as update_lav
from acsex.measurement import UPDATABLE
from acsex.model import get_start_voltages
from acsex.solver import (
    LUFactorization, QRFactorization, calculate_increment_normal,
    calculate_increment_orthogonal)

logger = logging.getLogger(__name__)

TOLERANCE = 1e-8
MAX_ITER = 20

class Variant(Enum):
    """Estimation method."""
    NORMAL = 'normal'
    ORTHOGONAL = 'orthogonal'
    LAV = 'lav'

class Status(Enum):
    """State of an estimation."""
    INITIALIZED = 'initialized'
    ITERATING = 'iterating'
    CONVERGED = 'converged'
    MAX_ITERATIONS_EXCEEDED = 'max_iterations_exceeded'
    FAILED = 'failed'

class Estimation:
    """Handle of one state estimation.

    Owns Jacobian, residuals, precision matrix, factorization and state.
    Create instances with function 'build'."""

    def __init__(self, model, measurements, variant, jacobian, Va, Vm):
        self.model = model
        self.measurements = measurements
        self.variant = variant
        self.jacobian = jacobian
        self.Va = Va
        self.Vm = Vm
        self.status = Status.INITIALIZED
        self.iterations = 0
        self.increment = None
        self.max_increment = np.inf
        self.objective = np.nan
        self.pattern_dirty = True
        self.signature = None
        self.deviation = None
        self.lav = None
        self.factorization = (
            QRFactorization() if variant == Variant.ORTHOGONAL
            else LUFactorization())

    @property
    def is_wls(self):
        return self.variant != Variant.LAV

    def __repr__(self):
        return (
            f'Estimation(variant={self.variant.value}, '
            f'status={self.status.value}, iterations={self.iterations}, '
            f'rows={len(self.jacobian.code)})')

def _initial_state(model, Vinit):
    if Vinit is None:
        Va, Vm = get_start_voltages(model)
    else:
        Vinit = np.asarray(Vinit).reshape(-1)
        if len(Vinit) != model.count_of_nodes:
            raise ValueError(
                f'Vinit has {len(Vinit)} values, '
                f'expected {model.count_of_nodes}')
        Va, Vm = np.angle(Vinit), np.abs(Vinit)
    slack = model.index_of_slack
    if 0 <= slack:
        Va[slack] = model.buses.angle[slack]
    return Va.astype(float), Vm.astype(float)

def build(model, measurements, variant=Variant.NORMAL, *, Vinit=None):
    """Creates an estimation.

    Parameters
    ----------
    model: acsex.model.Model
        data of grid
    measurements: acsex.measurement.Measurements
        measurement devices
    variant: Variant | 'normal' | 'orthogonal' | 'lav', optional
        default is Variant.NORMAL
    Vinit: array_like, optional
        complex, start voltages of buses, default from model,
        angle of slack bus is always taken from model

    Returns
    -------
    Estimation

    Raises
    ------
    CorrelationConfigurationError
        orthogonal variant with correlated PMUs"""
    variant = Variant(variant)
    jacobian = create_jacobian(model, measurements)
    if variant == Variant.ORTHOGONAL and is_correlated(jacobian):
        raise CorrelationConfigurationError(
            'orthogonal estimation does not support PMUs with correlated '
            'errors')
    Va, Vm = _initial_state(model, Vinit)
    estimation = Estimation(model, measurements, variant, jacobian, Va, Vm)
    if variant == Variant.LAV:
        estimation.lav = create_lav_model(
            model, jacobian, Va[model.index_of_slack])
    ranges = jacobian.ranges
    logger.info(
        'build %s estimation: %d buses, %d voltmeter, %d ammeter, '
        '%d wattmeter, %d varmeter, %d PMU rows',
        variant.value, model.count_of_nodes,
        *(ranges[1:] - ranges[:-1]))
    return estimation

def set_initial_point(estimation, Vinit=None):
    """Resets the state of an estimation.

    Parameters
    ----------
    estimation: Estimation

    Vinit: array_like, optional
        complex, voltages of buses e.g. result of a power flow calculation,
        default from model"""
    estimation.Va, estimation.Vm = _initial_state(estimation.model, Vinit)
    estimation.increment = None
    estimation.status = Status.INITIALIZED

def _require_wls(estimation):
    if not estimation.is_wls:
        raise ValueError(
            'operation requires a weighted least squares estimation')

def iterate(estimation):
    """Calculates the increment of one Gauss-Newton step.

    The increment is stored in the estimation and applied by 'solve'.

    Parameters
    ----------
    estimation: Estimation
        weighted least squares estimation

    Returns
    -------
    float
        maximum absolute value of the increment

    Raises
    ------
    ObservabilityError"""
    _require_wls(estimation)
    model = estimation.model
    jacobian = estimation.jacobian
    estimation.status = Status.ITERATING
    estimation.objective = calculate_jacobian(
        model, jacobian, estimation.Va, estimation.Vm)
    signature = get_signature(jacobian)
    dirty = estimation.pattern_dirty or signature != estimation.signature
    if estimation.variant == Variant.ORTHOGONAL:
        increment = calculate_increment_orthogonal(
            jacobian, estimation.factorization, model.index_of_slack,
            signature)
    else:
        increment = calculate_increment_normal(
            jacobian, estimation.factorization, model.index_of_slack, dirty)
    estimation.signature = signature
    estimation.pattern_dirty = False
    estimation.increment = increment
    estimation.iterations += 1
    estimation.max_increment = (
        float(np.max(np.abs(increment))) if len(increment) else 0.)
    logger.debug(
        'iteration %d, objective %.6e, max increment %.3e',
        estimation.iterations, estimation.objective,
        estimation.max_increment)
    return estimation.max_increment

def solve(estimation):
    """Applies the increment (WLS) or runs the optimizer (LAV).

    Parameters
    ----------
    estimation: Estimation

    Returns
    -------
    float | bool
        maximum absolute value of applied increment (WLS),
        success of optimization (LAV)"""
    if not estimation.is_wls:
        success, Va, Vm, deviation = solve_lav(
            estimation.lav, estimation.Va, estimation.Vm)
        estimation.iterations += 1
        if success:
            estimation.Va, estimation.Vm = Va, Vm
            estimation.deviation = deviation
            estimation.status = Status.CONVERGED
        else:
            estimation.status = Status.FAILED
        return success
    if estimation.increment is None:
        iterate(estimation)
    n = estimation.model.count_of_nodes
    increment = estimation.increment
    estimation.Va = estimation.Va + increment[:n]
    estimation.Vm = estimation.Vm + increment[n:]
    estimation.increment = None
    return estimation.max_increment

def calculate(estimation, *, tolerance=TOLERANCE, max_iter=MAX_ITER):
    """Iterates until the increment is smaller than tolerance.

    Parameters
    ----------
    estimation: Estimation

    tolerance: float, optional
        limit of maximum absolute value of increment
    max_iter: int, optional
        limit of number of iterations

    Returns
    -------
    int
        number of iterations of this call

    Raises
    ------
    ConvergenceFailure
        limit of iterations reached, LAV optimization failed
    ObservabilityError
        gain matrix is singular"""
    if not estimation.is_wls:
        if not solve(estimation):
            raise ConvergenceFailure(np.nan, estimation.iterations)
        return 1
    max_increment = np.inf
    for count in range(1, max_iter + 1):
        max_increment = iterate(estimation)
        solve(estimation)
        if max_increment < tolerance:
            estimation.status = Status.CONVERGED
            logger.info(
                'converged after %d iterations, objective %.6e',
                count, estimation.objective)
            return count
    estimation.status = Status.MAX_ITERATIONS_EXCEEDED
    logger.info(
        'no convergence after %d iterations, max increment %.3e',
        max_iter, max_increment)
    raise ConvergenceFailure(max_increment, max_iter)

def update_measurement(estimation, label, **fields):
    """Changes a measurement and mirrors the change into the estimation.

    Changes the record of the measurement registry, mean, precision,
    type code and Jacobian row of the estimation. A change of the status
    marks the sparsity pattern of the gain matrix as dirty.

    Parameters
    ----------
    estimation: Estimation

    label: str
        label of measurement
    fields:
        see acsex.measurement.Measurements.update

    Raises
    ------
    InconsistentUpdateError
        unknown label, field not updatable, invalid value"""
    measurements = estimation.measurements
    rows = estimation.jacobian.rows_of_label.get(label)
    if label not in measurements or rows is None:
        raise InconsistentUpdateError(f'unknown measurement {label!r}')
    category = measurements.category_of(label)
    invalid = set(fields) - UPDATABLE[category]
    if invalid:
        raise InconsistentUpdateError(
            f'fields {sorted(invalid)} of {category} {label!r} cannot be '
            'updated without rebuilding the estimation')
    try:
        measurements.update(label, **fields)
    except ValueError as e:
        raise InconsistentUpdateError(str(e)) from e
    new_rows = get_rows(category, measurements.get_record_frame(label))
    changed = update_rows(estimation.jacobian, rows, new_rows)
    if changed:
        estimation.pattern_dirty = True
        logger.debug('status of %s changed, pattern is dirty', label)
    if estimation.lav is not None:
        update_lav(estimation.lav, estimation.jacobian, rows)
    estimation.increment = None
    estimation.status = Status.INITIALIZED

def test_residuals(estimation, threshold=3.):
    """Largest normalized residual test at the current state.

    Parameters
    ----------
    estimation: Estimation
        converged weighted least squares estimation
    threshold: float, optional
        limit of normalized residual, default 3.0

    Returns
    -------
    acsex.baddata.Residualtest"""
    _require_wls(estimation)
    result = _test_residuals(
        estimation.model, estimation.jacobian, estimation.Va,
        estimation.Vm, threshold)
    if result.detected:
        logger.info(
            'bad data %r, normalized residual %.3f',
            result.label, result.max_normalized_residual)
    return result

def get_voltages(estimation):
    """Estimated voltages of buses.

    Parameters
    ----------
    estimation: Estimation

    Returns
    -------
    pandas.DataFrame
        id, V_pu, angle, Vcx_pu"""
    Va, Vm = estimation.Va, estimation.Vm
    df = pd.DataFrame({
        'id': estimation.model.buses.id,
        'V_pu': Vm,
        'angle': Va,
        'Vcx_pu': Vm * np.exp(1j * Va)})
    df.set_index('id', inplace=True)
    return df
