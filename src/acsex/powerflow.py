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

Created on Fri Oct 20 10:02:29 2023

@author: pyprg

Newton-Raphson power flow calculation in polar coordinates with
function 'calculate_power_flow'. Provides states for studies of the
estimation, e.g. as source of measured values.
"""
import logging
import numpy as np
from numpy.linalg import norm
from scipy.sparse import bmat, csr_matrix
from scipy.sparse.linalg import splu
from acsex.equations import (
    get_voltages, get_injected_current, get_injected_power,
    get_injected_power_derivatives)

logger = logging.getLogger(__name__)

def calculate_injected_power(model, Va, Vm):
    """Complex power injected into buses at the given state."""
    V, _ = get_voltages(Va, Vm)
    return get_injected_power(V, get_injected_current(model.Y, V))

def create_power_derivatives(model, Va, Vm):
    """Derivatives of injected power.

    Parameters
    ----------
    model: acsex.model.Model
        data of grid
    Va: numpy.array
        float, voltage angles
    Vm: numpy.array
        float, voltage magnitudes

    Returns
    -------
    tuple
        * scipy.sparse.csr_matrix, complex, dS/dVa
        * scipy.sparse.csr_matrix, complex, dS/dVm"""
    V, E = get_voltages(Va, Vm)
    Y = model.Y.tocoo()
    dVa, dVm = get_injected_power_derivatives(
        Y.data, Y.row, Y.col, V, E, get_injected_current(model.Y, V))
    shape = model.Y.shape
    return (
        csr_matrix((dVa, (Y.row, Y.col)), shape=shape),
        csr_matrix((dVm, (Y.row, Y.col)), shape=shape))

def get_bus_indices(model):
    """Indices of buses with unknown angle and with unknown magnitude.

    Returns
    -------
    tuple
        * numpy.array, int, PV and PQ buses
        * numpy.array, int, PQ buses"""
    bus_type = model.buses.type.to_numpy()
    return (
        np.flatnonzero(bus_type != 'slack'),
        np.flatnonzero(bus_type == 'PQ'))

def next_voltage(model, Va, Vm, pvpq, pq):
    """Yields the state and the power mismatch of each Newton step.

    Parameters
    ----------
    model: acsex.model.Model
        data of grid
    Va: numpy.array
        float, start voltage angles, changed in place
    Vm: numpy.array
        float, start voltage magnitudes, changed in place
    pvpq: numpy.array
        int, indices of buses with unknown angle
    pq: numpy.array
        int, indices of buses with unknown magnitude

    Yields
    ------
    tuple
        * numpy.array, float, voltage angles
        * numpy.array, float, voltage magnitudes
        * numpy.array, float, mismatch of P at pvpq and Q at pq"""
    Sspec = model.buses.P.to_numpy() + 1j * model.buses.Q.to_numpy()
    count_of_angles = len(pvpq)
    while True:
        dS = Sspec - calculate_injected_power(model, Va, Vm)
        mismatch = np.concatenate([dS.real[pvpq], dS.imag[pq]])
        yield Va, Vm, mismatch
        dS_dVa, dS_dVm = create_power_derivatives(model, Va, Vm)
        J = bmat([
            [dS_dVa.real[pvpq][:, pvpq], dS_dVm.real[pvpq][:, pq]],
            [dS_dVa.imag[pq][:, pvpq], dS_dVm.imag[pq][:, pq]]],
            format='csc')
        dx = splu(J).solve(mismatch)
        Va[pvpq] += dx[:count_of_angles]
        Vm[pq] += dx[count_of_angles:]

def calculate_power_flow(model, /, *, Vinit=None, precision=1e-8, max_iter=30):
    """Power flow calculating function.

    Solves the power flow problem with Newton-Raphson iterations.
    Voltage magnitudes of slack and PV buses and the voltage angle of
    the slack bus are taken from the model, specified P of PV and PQ
    buses and Q of PQ buses as well.

    Parameters
    ----------
    model: acsex.model.Model
        data of electric grid
    Vinit: array_like, optional
        complex, start value of iteration, node voltage vector
    precision: float, optional
        tolerance for power mismatch
    max_iter: int, optional
        limit of iteration count

    Returns
    -------
    tuple
        * bool, success?
        * numpy.ndarray, complex, node voltages"""
    count_of_nodes = model.count_of_nodes
    if not count_of_nodes:
        return True, np.zeros(0, dtype=complex)
    buses = model.buses
    if Vinit is None:
        Va = buses.angle.to_numpy(dtype=float).copy()
        Vm = buses.V.to_numpy(dtype=float).copy()
    else:
        Vinit = np.asarray(Vinit).reshape(-1)
        Va, Vm = np.angle(Vinit), np.abs(Vinit)
    pvpq, pq = get_bus_indices(model)
    fixed_magnitude = buses.type.to_numpy() != 'PQ'
    Vm[fixed_magnitude] = buses.V.to_numpy(dtype=float)[fixed_magnitude]
    slack = model.index_of_slack
    Va[slack] = buses.angle[slack]
    iter_counter = 0
    try:
        for Va_, Vm_, mismatch in next_voltage(model, Va, Vm, pvpq, pq):
            if norm(mismatch, np.inf) < precision if len(mismatch) else True:
                return True, Vm_ * np.exp(1j * Va_)
            if max_iter <= iter_counter:
                break
            iter_counter += 1
    except RuntimeError as e:
        logger.warning('power flow calculation failed: %s', e)
    return False, Vm * np.exp(1j * Va)
