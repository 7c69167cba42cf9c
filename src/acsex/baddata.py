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

Created on Wed Oct 18 09:34:11 2023

@author: pyprg

Largest normalized residual test.
"""
import numpy as np
from collections import namedtuple
from acsex.jacobian import (
    calculate_jacobian, get_jacobian_matrix, get_precision_matrix)
from acsex.solver import (
    LUFactorization, create_gain_matrix, neutralize_slack, restore_slack)

_CRITICAL = 1e-10

Residualtest = namedtuple(
    'Residualtest', 'detected max_normalized_residual label index')
Residualtest.__doc__ = """Result of the largest normalized residual test.

Parameters
----------
detected: bool
    max_normalized_residual exceeds the threshold
max_normalized_residual: float
    largest normalized residual
label: str | None
    label of measurement with the largest normalized residual
index: int
    row of largest normalized residual, -1 if no row qualifies"""

def calculate_normalized_residuals(model, jacobian, Va, Vm):
    """Calculates normalized residuals of all rows.

    The residual covariance is

    ::

        Omega = W^-1 - J @ G^-1 @ J.T

    the normalized residual of row i is |r_i| / sqrt(|Omega_ii|).
    Rows out of service, rows with zero residual and rows of critical
    measurements (Omega_ii close to 0) get 0.

    Parameters
    ----------
    model: acsex.model.Model
        data of grid
    jacobian: acsex.jacobian.Jacobian
        arena, Jacobian and residual are recalculated
    Va: numpy.array
        float, voltage angles of buses (converged state)
    Vm: numpy.array
        float, voltage magnitudes of buses (converged state)

    Returns
    -------
    numpy.array
        float"""
    calculate_jacobian(model, jacobian, Va, Vm)
    saved = neutralize_slack(jacobian)
    try:
        J = get_jacobian_matrix(jacobian)
    finally:
        restore_slack(jacobian, saved)
    W = get_precision_matrix(jacobian.precision)
    gain = create_gain_matrix(J, W, model.index_of_slack)
    factorization = LUFactorization().factorize(gain)
    X = factorization.solve(J.T.toarray())
    c = np.sum(J.toarray() * X.T, axis=1)
    w_diag = jacobian.precision.data[jacobian.precision.diagonal_slot]
    residual = jacobian.residual
    variance = 1. / w_diag
    omega = np.abs(variance - c)
    # critical measurements, residual does not depend on measurement error
    critical = omega <= _CRITICAL * variance
    qualified = (jacobian.status != 0.) & (residual != 0.) & ~critical
    normalized = np.zeros(len(residual))
    normalized[qualified] = (
        np.abs(residual[qualified]) / np.sqrt(omega[qualified]))
    return normalized

def test_residuals(model, jacobian, Va, Vm, threshold=3.):
    """Identifies the row with the largest normalized residual.

    The function does not change measurements, the caller decides about
    putting the measurement out of service.

    Parameters
    ----------
    model: acsex.model.Model
        data of grid
    jacobian: acsex.jacobian.Jacobian
        arena, Jacobian and residual are recalculated
    Va: numpy.array
        float, voltage angles of buses (converged state)
    Vm: numpy.array
        float, voltage magnitudes of buses (converged state)
    threshold: float, optional
        limit of normalized residual, default 3.0

    Returns
    -------
    Residualtest"""
    normalized = calculate_normalized_residuals(model, jacobian, Va, Vm)
    if not len(normalized) or not np.any(0. < normalized):
        return Residualtest(False, 0., None, -1)
    index = int(np.argmax(normalized))
    value = float(normalized[index])
    return Residualtest(
        detected=threshold < value,
        max_normalized_residual=value,
        label=jacobian.labels[index],
        index=index)
