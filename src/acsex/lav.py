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

Created on Wed Oct 18 13:05:46 2023

@author: pyprg

Least absolute value estimation as nonlinear program solved by IPOPT.

::

    min  sum(weight * (u + w))
    s.t. h(x) + u - w = mean
         u >= 0, w >= 0

One pair of deviation variables u, w per measurement row, rows are
indexed like the rows of the weighted least squares estimation.
Measurements out of service have their deviation variables fixed to 0,
weight 0 and unbounded constraints. Measured values and weights are
parameters of the program, hence, updates do not require a rebuild.
"""
import logging
import casadi
import numpy as np
from collections import namedtuple
from acsex.jacobian import Code

logger = logging.getLogger(__name__)

_IPOPT_opts = {'ipopt.print_level':0, 'print_time':0, 'ipopt.sb':'yes'}

Lavmodel = namedtuple(
    'Lavmodel',
    'nlp count_of_nodes count_of_rows index_of_slack lbx ubx lbg ubg '
    'mean weight solver')
Lavmodel.__doc__ = """Nonlinear program of the least absolute value
estimation.

Parameters
----------
nlp: dict
    'x', 'f', 'g', 'p', casadi.SX
count_of_nodes: int
    number of buses
count_of_rows: int
    number of measurement rows
index_of_slack: int
    index of slack bus, its angle is fixed
lbx: numpy.array
    float, lower bounds of decision variables, updated in place
ubx: numpy.array
    float, upper bounds of decision variables, updated in place
lbg: numpy.array
    float, lower bounds of constraints, updated in place
ubg: numpy.array
    float, upper bounds of constraints, updated in place
mean: numpy.array
    float, parameter, measured values, updated in place
weight: numpy.array
    float, parameter, status of rows, updated in place
solver: list
    cache of casadi.Function, created with first solve"""

def _branch_current(model, branch, at_B, Vre, Vim):
    """Real and imaginary part of current flowing into a branch."""
    branches = model.branches
    f = int(branches.index_of_node_A[branch])
    t = int(branches.index_of_node_B[branch])
    if at_B:
        y_a, y_b = branches.y_tf[branch], branches.y_tt[branch]
        Vt_re, Vt_im = Vre[t], Vim[t]
    else:
        y_a, y_b = branches.y_ff[branch], branches.y_ft[branch]
        Vt_re, Vt_im = Vre[f], Vim[f]
    g_a, b_a = float(y_a.real), float(y_a.imag)
    g_b, b_b = float(y_b.real), float(y_b.imag)
    Ire = g_a * Vre[f] - b_a * Vim[f] + g_b * Vre[t] - b_b * Vim[t]
    Iim = b_a * Vre[f] + g_a * Vim[f] + b_b * Vre[t] + g_b * Vim[t]
    return Ire, Iim, Vt_re, Vt_im

def _injected_current(model, bus, Vre, Vim):
    """Real and imaginary part of current injected into a bus."""
    Y = model.Y
    Ire = Iim = 0
    for pos in range(Y.indptr[bus], Y.indptr[bus+1]):
        k = int(Y.indices[pos])
        g, b = float(Y.data[pos].real), float(Y.data[pos].imag)
        Ire = Ire + g * Vre[k] - b * Vim[k]
        Iim = Iim + b * Vre[k] + g * Vim[k]
    return Ire, Iim

def _expression(model, code, index, Va, Vm, Vre, Vim):
    """Measured quantity of one row as casadi.SX."""
    if code in (Code.V, Code.PMU_V):
        return Vm[index]
    if code == Code.PMU_ANGLE:
        return Va[index]
    if code == Code.VRE:
        return Vre[index]
    if code == Code.VIM:
        return Vim[index]
    if code in (Code.P_BUS, Code.Q_BUS):
        Ire, Iim = _injected_current(model, index, Vre, Vim)
        if code == Code.P_BUS:
            return Vre[index] * Ire + Vim[index] * Iim
        return Vim[index] * Ire - Vre[index] * Iim
    at_B = code in (
        Code.I_B, Code.ISQR_B, Code.P_B, Code.Q_B, Code.PSI_B, Code.IRE_B,
        Code.IIM_B)
    Ire, Iim, Vt_re, Vt_im = _branch_current(model, index, at_B, Vre, Vim)
    if code in (Code.I_A, Code.I_B):
        return casadi.sqrt(Ire * Ire + Iim * Iim)
    if code in (Code.ISQR_A, Code.ISQR_B):
        return Ire * Ire + Iim * Iim
    if code in (Code.PSI_A, Code.PSI_B):
        return casadi.atan2(Iim, Ire)
    if code in (Code.IRE_A, Code.IRE_B):
        return Ire
    if code in (Code.IIM_A, Code.IIM_B):
        return Iim
    if code in (Code.P_A, Code.P_B):
        return Vt_re * Ire + Vt_im * Iim
    if code in (Code.Q_A, Code.Q_B):
        return Vt_im * Ire - Vt_re * Iim
    raise ValueError(f'invalid code {code}')

def _set_row_bounds(lav, rows, status):
    m = lav.count_of_rows
    offset = 2 * lav.count_of_nodes
    in_service = status != 0.
    for pos in (offset + rows, offset + m + rows):
        lav.ubx[pos] = np.where(in_service, np.inf, 0.)
    lav.lbg[rows] = np.where(in_service, 0., -np.inf)
    lav.ubg[rows] = np.where(in_service, 0., np.inf)
    lav.weight[rows] = status

def create_lav_model(model, jacobian, slack_angle):
    """Creates the nonlinear program of the least absolute value estimation.

    Decision variables are voltage angles, voltage magnitudes, positive
    deviations and negative deviations.

    Parameters
    ----------
    model: acsex.model.Model
        data of grid
    jacobian: acsex.jacobian.Jacobian
        rows of measurements, codes, indices, means and status
    slack_angle: float
        fixed voltage angle of slack bus

    Returns
    -------
    Lavmodel"""
    n = model.count_of_nodes
    m = len(jacobian.code)
    Va = casadi.SX.sym('Va', n)
    Vm = casadi.SX.sym('Vm', n)
    u = casadi.SX.sym('u', m)
    w = casadi.SX.sym('w', m)
    mean = casadi.SX.sym('mean', m)
    weight = casadi.SX.sym('weight', m)
    Vre = Vm * casadi.cos(Va)
    Vim = Vm * casadi.sin(Va)
    h = casadi.vertcat(*(
        _expression(
            model, Code(int(code)), int(index), Va, Vm, Vre, Vim)
        for code, index in zip(jacobian.code, jacobian.index)))
    nlp = {
        'x': casadi.vertcat(Va, Vm, u, w),
        'f': casadi.sum1(weight * (u + w)) if m else casadi.SX(0),
        'g': h + u - w - mean if m else casadi.SX(0, 1),
        'p': casadi.vertcat(mean, weight)}
    lbx = np.concatenate([np.full(2 * n, -np.inf), np.zeros(2 * m)])
    ubx = np.full(2 * (n + m), np.inf)
    slack = model.index_of_slack
    lbx[slack] = ubx[slack] = slack_angle
    lav = Lavmodel(
        nlp=nlp,
        count_of_nodes=n,
        count_of_rows=m,
        index_of_slack=slack,
        lbx=lbx,
        ubx=ubx,
        lbg=np.zeros(m),
        ubg=np.zeros(m),
        mean=jacobian.mean.copy(),
        weight=np.ones(m),
        solver=[])
    _set_row_bounds(lav, np.arange(m), jacobian.status)
    logger.debug(
        'LAV model, %d buses, %d measurement rows, %d out of service',
        n, m, int(np.sum(jacobian.status == 0.)))
    return lav

def update_rows(lav, jacobian, rows):
    """Copies means and status of rows from jacobian.

    Fixes deviation variables of rows out of service, releases deviation
    variables of rows in service.

    Parameters
    ----------
    lav: Lavmodel
        updated in place
    jacobian: acsex.jacobian.Jacobian
        source of mean and status
    rows: numpy.array
        int, indices of rows"""
    lav.mean[rows] = jacobian.mean[rows]
    _set_row_bounds(lav, rows, jacobian.status[rows])

def get_solver(lav):
    """Creates the IPOPT solver function once."""
    if not lav.solver:
        lav.solver.append(
            casadi.nlpsol('solver', 'ipopt', lav.nlp, _IPOPT_opts))
    return lav.solver[0]

def solve_lav(lav, Va, Vm):
    """Solves the least absolute value estimation.

    Parameters
    ----------
    lav: Lavmodel
        nonlinear program
    Va: numpy.array
        float, start values of voltage angles
    Vm: numpy.array
        float, start values of voltage magnitudes

    Returns
    -------
    tuple
        * bool, success?
        * numpy.array, float, voltage angles
        * numpy.array, float, voltage magnitudes
        * numpy.array, float, deviations u - w per row"""
    n, m = lav.count_of_nodes, lav.count_of_rows
    solver = get_solver(lav)
    x0 = np.concatenate([Va, Vm, np.zeros(2 * m)])
    x0[lav.index_of_slack] = lav.lbx[lav.index_of_slack]
    r = solver(
        x0=x0,
        p=np.concatenate([lav.mean, lav.weight]),
        lbx=lav.lbx,
        ubx=lav.ubx,
        lbg=lav.lbg,
        ubg=lav.ubg)
    success = bool(solver.stats()['success'])
    if not success:
        logger.warning(
            'LAV estimation failed: %s', solver.stats()['return_status'])
    x = np.array(r['x']).reshape(-1)
    deviation = x[2*n:2*n+m] - x[2*n+m:]
    return success, x[:n], x[n:2*n], deviation
