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

Created on Tue Oct 17 08:41:02 2023

@author: pyprg

Rows of the measurement Jacobian, measured values, residuals and
precision matrix.

Each measurement contributes one row (two rows for PMUs). Rows are ordered
by category: voltmeters, ammeters, wattmeters, varmeters, PMUs. The
sparsity pattern of the Jacobian is created once, the gain matrix
derived from it may hold fewer entries (see acsex.solver).
Out-of-service rows keep their entries, their values and residuals are
multiplied by the status 0.

State vector: voltage angles of buses at positions 0...N-1, voltage
magnitudes at N...2N-1.
"""
import numpy as np
import pandas as pd
from collections import namedtuple
from enum import IntEnum
from scipy.sparse import csr_matrix
from acsex.equations import (
    get_voltages, get_bus_voltage, get_terminal_voltage, get_branch_current,
    get_current_magnitude, get_current_magnitude_squared, get_current_angle,
    get_branch_power, get_injected_current, get_injected_power,
    get_injected_power_derivatives)

class Code(IntEnum):
    """Type of measurement row, selects the function of the state."""
    OUT = 0
    V = 1
    I_A = 2
    I_B = 3
    P_BUS = 4
    P_A = 5
    P_B = 6
    Q_BUS = 7
    Q_A = 8
    Q_B = 9
    PMU_V = 10
    PMU_ANGLE = 11
    PSI_A = 12
    PSI_B = 13
    VRE = 14
    VIM = 15
    IRE_A = 16
    IRE_B = 17
    IIM_A = 18
    IIM_B = 19
    ISQR_A = 20
    ISQR_B = 21

CATEGORIES = ('voltmeter', 'ammeter', 'wattmeter', 'varmeter', 'pmu')

def _codes(*codes):
    return np.array([int(c) for c in codes], dtype=np.int64)

_BUS_MAGNITUDE = _codes(Code.V, Code.PMU_V)
_BUS_RECTANGULAR = _codes(Code.VRE, Code.VIM)
_INJECTION = _codes(Code.P_BUS, Code.Q_BUS)
_AT_B = _codes(
    Code.I_B, Code.P_B, Code.Q_B, Code.PSI_B, Code.IRE_B, Code.IIM_B,
    Code.ISQR_B)
_AT_A = _codes(
    Code.I_A, Code.P_A, Code.Q_A, Code.PSI_A, Code.IRE_A, Code.IIM_A,
    Code.ISQR_A)
_BRANCH = np.concatenate([_AT_A, _AT_B])

Jacobian = namedtuple(
    'Jacobian',
    'shape indptr indices data slot_row first_slot '
    'code index at_B mean status residual '
    'labels rows_of_label ranges precision slack_slots injection')
Jacobian.__doc__ = """Arena of the measurement Jacobian.

Arrays are updated in place, the sparsity pattern (indptr, indices)
does not change.

Parameters
----------
shape: tuple
    int, (number of rows, 2 * number of buses)
indptr: numpy.array
    int, CSR row pointers
indices: numpy.array
    int, CSR column indices
data: numpy.array
    float, values of derivatives, multiplied by status
slot_row: numpy.array
    int, row of each element of data
first_slot: numpy.array
    int, position of first element of row in data
code: numpy.array
    int, Code of row when in service
index: numpy.array
    int, index of bus or branch
at_B: numpy.array
    bool, row belongs to terminal at side B of a branch
mean: numpy.array
    float, measured value of row when in service
status: numpy.array
    float, 1. in service, 0. out of service
residual: numpy.array
    float, status * (mean - h(state))
labels: numpy.array
    object, label of measurement of row
rows_of_label: dict
    str => numpy.array of int, rows of measurement
ranges: numpy.array
    int, six row markers, first rows of voltmeters, ammeters, wattmeters,
    varmeters, PMUs and number of rows
precision: Precision
    inverse of the covariance matrix of measurements
slack_slots: numpy.array
    int, positions in data of column of slack angle
injection: Injectionslots
    pattern of rows of power injected into buses"""

Precision = namedtuple(
    'Precision', 'shape indptr indices data diagonal_slot offdiagonal_slot')
Precision.__doc__ = """Arena of the precision matrix.

The matrix is diagonal except for 2x2 blocks of correlated rectangular
PMUs.

Parameters
----------
shape: tuple
    int
indptr: numpy.array
    int, CSR row pointers
indices: numpy.array
    int, CSR column indices
data: numpy.array
    float
diagonal_slot: numpy.array
    int, position of diagonal element of row in data
offdiagonal_slot: numpy.array
    int, position of off-diagonal element of row in data, -1 if none"""

Injectionslots = namedtuple('Injectionslots', 'pos i k y is_active')
Injectionslots.__doc__ = """Elements of rows of injected power.

Each element refers to a pair of slots (angle, magnitude) of a coupled
bus.

Parameters
----------
pos: numpy.array
    int, position of angle slot in data, magnitude slot is pos + 1
i: numpy.array
    int, bus of injection
k: numpy.array
    int, coupled bus
y: numpy.array
    complex, Y[i, k]
is_active: numpy.array
    bool, row of active power"""

class Sparsemodel:
    """Growing triplet buffer with a running counter.

    Elements must be added row by row."""

    def __init__(self):
        self.row = []
        self.col = []
        self.val = []
        self.cnt = 0

    def add(self, row, col, val=0.):
        """Adds an element, returns its position."""
        self.row.append(row)
        self.col.append(col)
        self.val.append(val)
        self.cnt += 1
        return self.cnt - 1

    def compact(self, count_of_rows):
        """Creates CSR arrays.

        Parameters
        ----------
        count_of_rows: int

        Returns
        -------
        tuple
            * numpy.array, int, indptr
            * numpy.array, int, indices
            * numpy.array, float, data
            * numpy.array, int, row of element"""
        row = np.array(self.row, dtype=np.int64)
        indptr = np.zeros(count_of_rows + 1, dtype=np.int64)
        np.cumsum(np.bincount(row, minlength=count_of_rows), out=indptr[1:])
        return (
            indptr,
            np.array(self.col, dtype=np.int64),
            np.array(self.val, dtype=float),
            row)

#
# rows of measurements
#

_ROW_COLUMNS = [
    'label', 'code', 'index', 'mean', 'status', 'w_diag', 'w_off',
    'partner_offset']

def _by_location(location, bus, A, B):
    return np.select(
        [location == 'bus', location == 'A'], [bus, A], B).astype(np.int64)

def _create_rows(df, code, mean, variance, status):
    count = len(df)
    return pd.DataFrame({
        'label': df.label.to_numpy(dtype=object),
        'code': code,
        'index': df['index'].to_numpy(dtype=np.int64),
        'mean': mean,
        'status': status,
        'w_diag': 1. / variance,
        'w_off': np.zeros(count),
        'partner_offset': np.zeros(count, dtype=np.int64)},
        columns=_ROW_COLUMNS)

def get_voltmeter_rows(voltmeters):
    """Rows of voltmeters.

    Parameters
    ----------
    voltmeters: pandas.DataFrame
        * .label, str
        * .index, int, index of bus
        * .mean, float
        * .variance, float
        * .status, int

    Returns
    -------
    pandas.DataFrame
        label, code, index, mean, status, w_diag, w_off, partner_offset"""
    return _create_rows(
        voltmeters,
        np.full(len(voltmeters), int(Code.V), dtype=np.int64),
        voltmeters['mean'].to_numpy(dtype=float),
        voltmeters.variance.to_numpy(dtype=float),
        voltmeters.status.to_numpy(dtype=float))

def get_ammeter_rows(ammeters):
    """Rows of ammeters, squared form if flag 'square' is set.

    Mean and variance of the squared form are squared."""
    location = ammeters.location.to_numpy()
    square = ammeters.square.to_numpy(dtype=bool)
    code = np.where(
        square,
        _by_location(location, Code.OUT, Code.ISQR_A, Code.ISQR_B),
        _by_location(location, Code.OUT, Code.I_A, Code.I_B))
    mean = ammeters['mean'].to_numpy(dtype=float)
    variance = ammeters.variance.to_numpy(dtype=float)
    return _create_rows(
        ammeters,
        code,
        np.where(square, mean * mean, mean),
        np.where(square, variance * variance, variance),
        ammeters.status.to_numpy(dtype=float))

def get_wattmeter_rows(wattmeters):
    """Rows of wattmeters at buses or branch terminals."""
    return _create_rows(
        wattmeters,
        _by_location(
            wattmeters.location.to_numpy(), Code.P_BUS, Code.P_A, Code.P_B),
        wattmeters['mean'].to_numpy(dtype=float),
        wattmeters.variance.to_numpy(dtype=float),
        wattmeters.status.to_numpy(dtype=float))

def get_varmeter_rows(varmeters):
    """Rows of varmeters at buses or branch terminals."""
    return _create_rows(
        varmeters,
        _by_location(
            varmeters.location.to_numpy(), Code.Q_BUS, Code.Q_A, Code.Q_B),
        varmeters['mean'].to_numpy(dtype=float),
        varmeters.variance.to_numpy(dtype=float),
        varmeters.status.to_numpy(dtype=float))

def get_rectangular_covariance(magnitude, angle, var_magnitude, var_angle):
    """Covariance of real and imaginary part of a phasor.

    Linear propagation of the errors of magnitude and angle.

    Parameters
    ----------
    magnitude: numpy.array
        float
    angle: numpy.array
        float
    var_magnitude: numpy.array
        float, variance of magnitude
    var_angle: numpy.array
        float, variance of angle

    Returns
    -------
    tuple
        * numpy.array, float, variance of real part
        * numpy.array, float, variance of imaginary part
        * numpy.array, float, covariance of real and imaginary part"""
    cos = np.cos(angle)
    sin = np.sin(angle)
    mcos = magnitude * cos
    msin = magnitude * sin
    return (
        var_magnitude * cos * cos + var_angle * msin * msin,
        var_magnitude * sin * sin + var_angle * mcos * mcos,
        sin * cos * (var_magnitude - var_angle * magnitude * magnitude))

def _interleave(first, second):
    return np.column_stack([first, second]).reshape(-1)

def get_pmu_rows(pmus):
    """Rows of PMUs, two consecutive rows per device.

    Polar PMUs measure magnitude and angle, rectangular PMUs real and
    imaginary part. Rectangular PMUs with correlated errors have a full
    2x2 block in the precision matrix.

    Parameters
    ----------
    pmus: pandas.DataFrame
        * .label, str
        * .location, 'bus' | 'A' | 'B'
        * .index, int, index of bus or branch
        * .magnitude, float
        * .angle, float
        * .variance_magnitude, float
        * .variance_angle, float
        * .status_magnitude, int
        * .status_angle, int
        * .polar, bool
        * .correlated, bool
        * .square, bool

    Returns
    -------
    pandas.DataFrame
        label, code, index, mean, status, w_diag, w_off, partner_offset"""
    location = pmus.location.to_numpy()
    at_bus = location == 'bus'
    polar = pmus.polar.to_numpy(dtype=bool)
    square = pmus.square.to_numpy(dtype=bool) & polar & ~at_bus
    correlated = pmus.correlated.to_numpy(dtype=bool) & ~polar
    magnitude = pmus.magnitude.to_numpy(dtype=float)
    angle = pmus.angle.to_numpy(dtype=float)
    var_m = pmus.variance_magnitude.to_numpy(dtype=float)
    var_a = pmus.variance_angle.to_numpy(dtype=float)
    status_m = pmus.status_magnitude.to_numpy(dtype=float)
    status_a = pmus.status_angle.to_numpy(dtype=float)
    code_first = np.where(
        polar,
        np.where(
            square,
            _by_location(location, Code.PMU_V, Code.ISQR_A, Code.ISQR_B),
            _by_location(location, Code.PMU_V, Code.I_A, Code.I_B)),
        _by_location(location, Code.VRE, Code.IRE_A, Code.IRE_B))
    code_second = np.where(
        polar,
        _by_location(location, Code.PMU_ANGLE, Code.PSI_A, Code.PSI_B),
        _by_location(location, Code.VIM, Code.IIM_A, Code.IIM_B))
    var_re, var_im, cov = get_rectangular_covariance(
        magnitude, angle, var_m, var_a)
    with np.errstate(divide='ignore', invalid='ignore'):
        det = var_re * var_im - cov * cov
        w_re = np.where(correlated, var_im / det, 1. / var_re)
        w_im = np.where(correlated, var_re / det, 1. / var_im)
        w_off = np.where(correlated, -cov / det, 0.)
        var_m_row = np.where(square, var_m * var_m, var_m)
        w_first = np.where(polar, 1. / var_m_row, w_re)
        w_second = np.where(polar, 1. / var_a, w_im)
    mean_first = np.where(
        polar,
        np.where(square, magnitude * magnitude, magnitude),
        magnitude * np.cos(angle))
    mean_second = np.where(polar, angle, magnitude * np.sin(angle))
    status_both = status_m * status_a
    status_first = np.where(polar, status_m, status_both)
    status_second = np.where(polar, status_a, status_both)
    offset = correlated.astype(np.int64)
    return pd.DataFrame({
        'label': np.repeat(pmus.label.to_numpy(dtype=object), 2),
        'code': _interleave(code_first, code_second).astype(np.int64),
        'index': np.repeat(pmus['index'].to_numpy(dtype=np.int64), 2),
        'mean': _interleave(mean_first, mean_second).astype(float),
        'status': _interleave(status_first, status_second).astype(float),
        'w_diag': _interleave(w_first, w_second).astype(float),
        'w_off': _interleave(w_off, w_off).astype(float),
        'partner_offset': _interleave(offset, -offset)},
        columns=_ROW_COLUMNS)

_GET_ROWS = {
    'voltmeter': get_voltmeter_rows,
    'ammeter': get_ammeter_rows,
    'wattmeter': get_wattmeter_rows,
    'varmeter': get_varmeter_rows,
    'pmu': get_pmu_rows}

def get_rows(category, df):
    """Rows of measurements of one category."""
    return _GET_ROWS[category](df)

#
# pattern
#

def _add_row_pattern(sm, row, code, index, model):
    N = model.count_of_nodes
    if code in _BUS_MAGNITUDE:
        sm.add(row, N + index)
    elif code == Code.PMU_ANGLE:
        sm.add(row, index)
    elif code in _BUS_RECTANGULAR:
        sm.add(row, index)
        sm.add(row, N + index)
    elif code in _BRANCH:
        branch = model.branches.loc[index]
        idx_A = int(branch.index_of_node_A)
        idx_B = int(branch.index_of_node_B)
        for col in (idx_A, idx_B, N + idx_A, N + idx_B):
            sm.add(row, col)
    elif code in _INJECTION:
        Y = model.Y
        for k in Y.indices[Y.indptr[index]:Y.indptr[index+1]]:
            sm.add(row, k)
            sm.add(row, N + k)
    else:
        raise ValueError(f'invalid code of row {row}: {code}')

def _create_injection_slots(model, rows, code, index, first_slot):
    Y = model.Y
    injection_rows = rows[np.isin(code, _INJECTION)]
    pos, i, k, y, is_active = [], [], [], [], []
    for row in injection_rows:
        bus = index[row]
        start, end = Y.indptr[bus], Y.indptr[bus+1]
        count = end - start
        pos.append(first_slot[row] + 2 * np.arange(count))
        i.append(np.full(count, bus))
        k.append(Y.indices[start:end])
        y.append(Y.data[start:end])
        is_active.append(np.full(count, code[row] == Code.P_BUS))
    concat = lambda arrays, dtype: (
        np.concatenate(arrays).astype(dtype) if arrays
        else np.zeros(0, dtype=dtype))
    return Injectionslots(
        pos=concat(pos, np.int64),
        i=concat(i, np.int64),
        k=concat(k, np.int64),
        y=concat(y, complex),
        is_active=concat(is_active, bool))

def create_precision(rows):
    """Creates the precision matrix.

    Parameters
    ----------
    rows: pandas.DataFrame
        * .w_diag, float
        * .w_off, float
        * .partner_offset, int, 1 first row of correlated pair,
          -1 second row, 0 uncorrelated

    Returns
    -------
    Precision"""
    count_of_rows = len(rows)
    w_diag = rows.w_diag.to_numpy()
    w_off = rows.w_off.to_numpy()
    partner_offset = rows.partner_offset.to_numpy()
    sm = Sparsemodel()
    diagonal_slot = np.zeros(count_of_rows, dtype=np.int64)
    offdiagonal_slot = np.full(count_of_rows, -1, dtype=np.int64)
    for row in range(count_of_rows):
        offset = partner_offset[row]
        if offset < 0:
            offdiagonal_slot[row] = sm.add(row, row + offset, w_off[row])
        diagonal_slot[row] = sm.add(row, row, w_diag[row])
        if 0 < offset:
            offdiagonal_slot[row] = sm.add(row, row + offset, w_off[row])
    indptr, indices, data, _ = sm.compact(count_of_rows)
    return Precision(
        shape=(count_of_rows, count_of_rows),
        indptr=indptr,
        indices=indices,
        data=data,
        diagonal_slot=diagonal_slot,
        offdiagonal_slot=offdiagonal_slot)

def create_jacobian(model, measurements):
    """Creates the arena of Jacobian, residual and precision matrix.

    Parameters
    ----------
    model: acsex.model.Model
        data of grid
    measurements: acsex.measurement.Measurements
        registry of measurement devices

    Returns
    -------
    Jacobian"""
    frames = [
        get_rows(category, measurements.get_frame(category))
        for category in CATEGORIES]
    counts = [len(frame) for frame in frames]
    rows = pd.concat(frames, ignore_index=True)
    count_of_rows = len(rows)
    code = rows.code.to_numpy(dtype=np.int64)
    index = rows['index'].to_numpy(dtype=np.int64)
    sm = Sparsemodel()
    for row in range(count_of_rows):
        _add_row_pattern(sm, row, code[row], index[row], model)
    indptr, indices, data, slot_row = sm.compact(count_of_rows)
    first_slot = indptr[:-1].copy()
    labels = rows.label.to_numpy(dtype=object)
    rows_of_label = (
        pd.Series(np.arange(count_of_rows)).groupby(labels).indices)
    slack = model.index_of_slack
    return Jacobian(
        shape=(count_of_rows, 2 * model.count_of_nodes),
        indptr=indptr,
        indices=indices,
        data=data,
        slot_row=slot_row,
        first_slot=first_slot,
        code=code,
        index=index,
        at_B=np.isin(code, _AT_B),
        mean=rows['mean'].to_numpy(dtype=float).copy(),
        status=rows.status.to_numpy(dtype=float).copy(),
        residual=np.zeros(count_of_rows),
        labels=labels,
        rows_of_label=rows_of_label,
        ranges=np.cumsum([0] + counts),
        precision=create_precision(rows),
        slack_slots=np.flatnonzero(indices == slack),
        injection=_create_injection_slots(
            model, np.arange(count_of_rows), code, index, first_slot))

#
# access
#

def get_type_codes(jacobian):
    """Codes of rows, 0 for out-of-service rows."""
    return jacobian.code * (jacobian.status != 0.)

def get_jacobian_matrix(jacobian):
    """Jacobian as scipy.sparse.csr_matrix.

    Returns a new matrix, explicit zeros of out-of-service rows included."""
    return csr_matrix(
        (jacobian.data.copy(), jacobian.indices.copy(),
         jacobian.indptr.copy()),
        shape=jacobian.shape)

def get_precision_matrix(precision):
    """Precision as scipy.sparse.csr_matrix."""
    return csr_matrix(
        (precision.data.copy(), precision.indices.copy(),
         precision.indptr.copy()),
        shape=precision.shape)

def is_correlated(jacobian):
    """True if precision matrix has off-diagonal elements."""
    return bool(np.any(0 <= jacobian.precision.offdiagonal_slot))

def get_signature(jacobian):
    """Signature of row structure (ranges and in-service rows)."""
    return hash((
        jacobian.ranges.tobytes(),
        (jacobian.status != 0.).tobytes()))

def get_slots(jacobian, row):
    """Positions of elements of row in data."""
    return np.arange(jacobian.indptr[row], jacobian.indptr[row+1])

#
# evaluation
#

def _current_magnitude(I, dI, Vterm, dVterm):
    return get_current_magnitude(I, dI)

def _current_magnitude_squared(I, dI, Vterm, dVterm):
    return get_current_magnitude_squared(I, dI)

def _current_angle(I, dI, Vterm, dVterm):
    return get_current_angle(I, dI)

def _current_real(I, dI, Vterm, dVterm):
    return I.real, dI.real

def _current_imag(I, dI, Vterm, dVterm):
    return I.imag, dI.imag

def _active_power(I, dI, Vterm, dVterm):
    S, dS = get_branch_power(I, dI, Vterm, dVterm)
    return S.real, dS.real

def _reactive_power(I, dI, Vterm, dVterm):
    S, dS = get_branch_power(I, dI, Vterm, dVterm)
    return S.imag, dS.imag

_BRANCH_FUNCTIONS = {
    Code.I_A: _current_magnitude,
    Code.I_B: _current_magnitude,
    Code.ISQR_A: _current_magnitude_squared,
    Code.ISQR_B: _current_magnitude_squared,
    Code.PSI_A: _current_angle,
    Code.PSI_B: _current_angle,
    Code.IRE_A: _current_real,
    Code.IRE_B: _current_real,
    Code.IIM_A: _current_imag,
    Code.IIM_B: _current_imag,
    Code.P_A: _active_power,
    Code.P_B: _active_power,
    Code.Q_A: _reactive_power,
    Code.Q_B: _reactive_power}

def _branch_values(model, jacobian, V, E, h, data):
    code = jacobian.code
    rows = np.flatnonzero(np.isin(code, _BRANCH))
    if not len(rows):
        return
    branches = model.branches
    branch = jacobian.index[rows]
    at_B = jacobian.at_B[rows]
    f = branches.index_of_node_A.to_numpy()[branch]
    t = branches.index_of_node_B.to_numpy()[branch]
    y_a = np.where(
        at_B,
        branches.y_tf.to_numpy()[branch],
        branches.y_ff.to_numpy()[branch])
    y_b = np.where(
        at_B,
        branches.y_tt.to_numpy()[branch],
        branches.y_ft.to_numpy()[branch])
    Vf, Vt, Ef, Et = V[f], V[t], E[f], E[t]
    I, dI = get_branch_current(y_a, y_b, Vf, Vt, Ef, Et)
    Vterm, dVterm = get_terminal_voltage(Vf, Vt, Ef, Et, at_B)
    row_code = code[rows]
    for c in np.unique(row_code):
        mask = row_code == c
        values, derivatives = _BRANCH_FUNCTIONS[Code(int(c))](
            I[mask], dI[:, mask], Vterm[mask], dVterm[:, mask])
        selected = rows[mask]
        h[selected] = values
        slots = jacobian.first_slot[selected].reshape(-1, 1) + np.arange(4)
        data[slots] = derivatives.T

def _injection_values(model, jacobian, V, E, h, data):
    rows = np.flatnonzero(np.isin(jacobian.code, _INJECTION))
    if not len(rows):
        return
    Iinj = get_injected_current(model.Y, V)
    S = get_injected_power(V, Iinj)[jacobian.index[rows]]
    h[rows] = np.where(jacobian.code[rows] == Code.P_BUS, S.real, S.imag)
    slots = jacobian.injection
    dVa, dVm = get_injected_power_derivatives(
        slots.y, slots.i, slots.k, V, E, Iinj)
    data[slots.pos] = np.where(slots.is_active, dVa.real, dVa.imag)
    data[slots.pos + 1] = np.where(slots.is_active, dVm.real, dVm.imag)

def calculate_values(model, jacobian, Va, Vm):
    """Calculates measured quantities and derivatives at the given state.

    Status is not applied.

    Parameters
    ----------
    model: acsex.model.Model
        data of grid
    jacobian: Jacobian
        pattern
    Va: numpy.array
        float, voltage angles of buses
    Vm: numpy.array
        float, voltage magnitudes of buses

    Returns
    -------
    tuple
        * numpy.array, float, values of measured quantities h(x)
        * numpy.array, float, data of Jacobian"""
    code = jacobian.code
    index = jacobian.index
    first = jacobian.first_slot
    h = np.zeros(len(code))
    data = np.zeros(len(jacobian.indices))
    V, E = get_voltages(Va, Vm)
    rows = np.flatnonzero(np.isin(code, _BUS_MAGNITUDE))
    h[rows] = Vm[index[rows]]
    data[first[rows]] = 1.
    rows = np.flatnonzero(code == Code.PMU_ANGLE)
    h[rows] = Va[index[rows]]
    data[first[rows]] = 1.
    rows = np.flatnonzero(np.isin(code, _BUS_RECTANGULAR))
    if len(rows):
        bus = index[rows]
        Vcx, dV = get_bus_voltage(V[bus], E[bus])
        is_real = code[rows] == Code.VRE
        h[rows] = np.where(is_real, Vcx.real, Vcx.imag)
        data[first[rows]] = np.where(is_real, dV[0].real, dV[0].imag)
        data[first[rows] + 1] = np.where(is_real, dV[1].real, dV[1].imag)
    _branch_values(model, jacobian, V, E, h, data)
    _injection_values(model, jacobian, V, E, h, data)
    return h, data

def calculate_jacobian(model, jacobian, Va, Vm):
    """Updates derivatives and residuals of jacobian in place.

    Parameters
    ----------
    model: acsex.model.Model
        data of grid
    jacobian: Jacobian
        arena, data and residual are overwritten
    Va: numpy.array
        float, voltage angles of buses
    Vm: numpy.array
        float, voltage magnitudes of buses

    Returns
    -------
    float
        value of objective function r.T @ W @ r"""
    h, data = calculate_values(model, jacobian, Va, Vm)
    status = jacobian.status
    jacobian.data[:] = data * status[jacobian.slot_row]
    jacobian.residual[:] = status * (jacobian.mean - h)
    r = jacobian.residual
    return float(r @ (get_precision_matrix(jacobian.precision) @ r))

#
# update
#

def update_rows(jacobian, rows, new_rows):
    """Writes mean, status and precision of measurement rows.

    Derivatives and residuals of rows switched out of service are
    set to zero, rows switched into service get their values
    with the next call of calculate_jacobian.

    Parameters
    ----------
    jacobian: Jacobian
        arena, updated in place
    rows: numpy.array
        int, indices of rows
    new_rows: pandas.DataFrame
        * .mean, float
        * .status, float
        * .w_diag, float
        * .w_off, float
        * .code, int

    Returns
    -------
    bool
        True if status of at least one row changed"""
    if not np.array_equal(new_rows.code.to_numpy(), jacobian.code[rows]):
        raise ValueError('update must not change the type of rows')
    status = new_rows.status.to_numpy(dtype=float)
    changed = not np.array_equal(status, jacobian.status[rows])
    jacobian.mean[rows] = new_rows['mean'].to_numpy(dtype=float)
    jacobian.status[rows] = status
    precision = jacobian.precision
    precision.data[precision.diagonal_slot[rows]] = new_rows.w_diag.to_numpy()
    offdiagonal = precision.offdiagonal_slot[rows]
    has_off = 0 <= offdiagonal
    precision.data[offdiagonal[has_off]] = new_rows.w_off.to_numpy()[has_off]
    for row in rows[status == 0.]:
        jacobian.data[get_slots(jacobian, row)] = 0.
        jacobian.residual[row] = 0.
    return changed
