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

Created on Mon Oct 16 10:03:17 2023

@author: pyprg

Grid model, buses and branches (pi-model) in per unit, nodal
admittance matrix.

Buses are indexed by their position in the input, the index is the
position of the voltage angle in the state vector, the magnitude is at
index + count_of_nodes.
"""
import numpy as np
import pandas as pd
from collections import namedtuple
from itertools import chain
from scipy.sparse import coo_matrix

Bus = namedtuple(
    'Bus',
    'id type V angle P Q g_sh b_sh',
    defaults=('PQ', 1., 0., 0., 0., 0., 0.))
Bus.__doc__ = """Node of the grid.

Parameters
----------
id: str
    unique identifier of bus
type: 'slack' | 'PV' | 'PQ'
    role of bus in power flow calculation, exactly one bus is 'slack'
V: float
    voltage magnitude, pu; reference of slack and PV buses,
    start value of other buses
angle: float
    voltage angle, rad; reference of slack bus, start value of others
P: float
    specified injected active power (generation - load), pu
Q: float
    specified injected reactive power (generation - load), pu
g_sh: float
    shunt conductance, pu
b_sh: float
    shunt susceptance, pu"""

Branch = namedtuple(
    'Branch',
    'id id_of_node_A id_of_node_B r x g b ratio shift',
    defaults=(0., 0., 0., 0., 1., 0.))
Branch.__doc__ = """Line or transformer between two buses.

Parameters
----------
id: str
    unique identifier of branch
id_of_node_A: str
    id of from-bus, side of the ideal transformer
id_of_node_B: str
    id of to-bus
r: float
    series resistance, pu
x: float
    series reactance, pu
g: float
    total shunt conductance, pu, half of it at each side
b: float
    total shunt susceptance (line charging), pu, half of it at each side
ratio: float
    off-nominal turns ratio
shift: float
    phase shift angle, rad"""

Model = namedtuple(
    'Model',
    'buses branches count_of_nodes index_of_slack Y')
Model.__doc__ = """Data of the electric grid.

Parameters
----------
buses: pandas.DataFrame
    * .id, str
    * .type, str, 'slack' | 'PV' | 'PQ'
    * .V, float
    * .angle, float
    * .P, float
    * .Q, float
    * .g_sh, float
    * .b_sh, float
    index is the position of the bus (int)
branches: pandas.DataFrame
    * .id, str
    * .id_of_node_A, str
    * .id_of_node_B, str
    * .index_of_node_A, int
    * .index_of_node_B, int
    * .r, .x, .g, .b, .ratio, .shift, float
    * .y_ff, .y_ft, .y_tf, .y_tt, complex
count_of_nodes: int
    number of buses
index_of_slack: int
    index of slack bus, -1 if model has no buses
Y: scipy.sparse.csr_matrix
    complex, nodal admittance matrix, sorted indices, explicit diagonal
    entry for each bus"""

_BUS_COLUMNS = list(Bus._fields)
_BRANCH_COLUMNS = list(Branch._fields)

def _flatten(elements):
    for element in elements:
        if isinstance(element, (Bus, Branch)):
            yield element
        elif isinstance(element, (list, tuple)):
            yield from _flatten(element)
        else:
            raise ValueError(f'unsupported element {element!r}')

def calculate_branch_admittances(branches):
    """Calculates the admittances of the pi-model of branches.

    The ideal transformer (ratio, shift) is located at side A:

    ::

        I_A = y_ff * V_A + y_ft * V_B
        I_B = y_tf * V_A + y_tt * V_B

    Parameters
    ----------
    branches: pandas.DataFrame
        * .r, .x, .g, .b, .ratio, .shift

    Returns
    -------
    numpy.array (shape 4,n)
        complex, y_ff, y_ft, y_tf, y_tt"""
    z = branches.r.to_numpy() + 1j * branches.x.to_numpy()
    if np.any(z == 0):
        ids = branches.id[z == 0].tolist()
        raise ValueError(f'series impedance of branches {ids} is zero')
    y = 1. / z
    y_half = .5 * (branches.g.to_numpy() + 1j * branches.b.to_numpy())
    ratio = branches.ratio.to_numpy()
    t = ratio * np.exp(1j * branches['shift'].to_numpy())
    return np.vstack([
        (y + y_half) / (ratio * ratio),
        -y / t.conjugate(),
        -y / t,
        y + y_half])

def create_y(count_of_nodes, branches, buses):
    """Creates the nodal admittance matrix.

    Parameters
    ----------
    count_of_nodes: int
        number of buses
    branches: pandas.DataFrame
        * .index_of_node_A, .index_of_node_B, int
        * .y_ff, .y_ft, .y_tf, .y_tt, complex
    buses: pandas.DataFrame
        * .g_sh, .b_sh, float

    Returns
    -------
    scipy.sparse.csr_matrix
        complex"""
    idx_A = branches.index_of_node_A.to_numpy()
    idx_B = branches.index_of_node_B.to_numpy()
    node_idx = np.arange(count_of_nodes)
    rows = np.concatenate([idx_A, idx_A, idx_B, idx_B, node_idx])
    cols = np.concatenate([idx_A, idx_B, idx_A, idx_B, node_idx])
    vals = np.concatenate([
        branches.y_ff.to_numpy(),
        branches.y_ft.to_numpy(),
        branches.y_tf.to_numpy(),
        branches.y_tt.to_numpy(),
        buses.g_sh.to_numpy() + 1j * buses.b_sh.to_numpy()]).astype(complex)
    Y = coo_matrix(
        (vals, (rows, cols)),
        shape=(count_of_nodes, count_of_nodes),
        dtype=complex).tocsr()
    Y.sum_duplicates()
    Y.sort_indices()
    return Y

def make_model(*elements):
    """Creates a grid model from buses and branches.

    Parameters
    ----------
    elements: Bus | Branch | iterable
        elements of the grid, nested lists and tuples are flattened

    Returns
    -------
    Model"""
    flat = list(_flatten(elements))
    buses = pd.DataFrame(
        [e for e in flat if isinstance(e, Bus)], columns=_BUS_COLUMNS)
    branches = pd.DataFrame(
        [e for e in flat if isinstance(e, Branch)], columns=_BRANCH_COLUMNS)
    for name, df in (('bus', buses), ('branch', branches)):
        duplicated = df.id[df.id.duplicated()]
        if len(duplicated):
            raise ValueError(
                f'duplicate {name} ids: {sorted(set(duplicated))}')
    buses = buses.astype({
        col: float for col in ('V', 'angle', 'P', 'Q', 'g_sh', 'b_sh')})
    unknown_type = ~buses.type.isin(['slack', 'PV', 'PQ'])
    if unknown_type.any():
        raise ValueError(
            f'invalid bus types of {buses.id[unknown_type].tolist()}')
    slacks = buses.index[buses.type == 'slack']
    if len(buses) and len(slacks) != 1:
        raise ValueError(
            f'grid requires exactly one slack bus, found {len(slacks)}')
    bus_index = pd.Series(buses.index, index=buses.id)
    for side in 'AB':
        ids = branches[f'id_of_node_{side}']
        unknown = ~ids.isin(bus_index.index)
        if unknown.any():
            raise ValueError(
                f'branches {branches.id[unknown].tolist()} connect '
                f'unknown buses {ids[unknown].tolist()}')
        branches[f'index_of_node_{side}'] = (
            bus_index.reindex(ids).to_numpy().astype(np.int64))
    branches = branches.astype({
        col: float for col in ('r', 'x', 'g', 'b', 'ratio', 'shift')})
    y_ff, y_ft, y_tf, y_tt = calculate_branch_admittances(branches)
    branches['y_ff'] = y_ff
    branches['y_ft'] = y_ft
    branches['y_tf'] = y_tf
    branches['y_tt'] = y_tt
    count_of_nodes = len(buses)
    return Model(
        buses=buses,
        branches=branches,
        count_of_nodes=count_of_nodes,
        index_of_slack=int(slacks[0]) if len(slacks) else -1,
        Y=create_y(count_of_nodes, branches, buses))

def get_incident(model, index_of_bus):
    """Returns indices of buses coupled to the given bus by Y.

    The bus itself is included.

    Parameters
    ----------
    model: Model

    index_of_bus: int

    Returns
    -------
    numpy.array
        int"""
    Y = model.Y
    return Y.indices[Y.indptr[index_of_bus]:Y.indptr[index_of_bus+1]]

def get_bus_index(model, id_of_bus):
    """Returns the index of the bus with given id, raises ValueError."""
    hits = model.buses.index[model.buses.id == id_of_bus]
    if not len(hits):
        raise ValueError(f'unknown bus {id_of_bus!r}')
    return int(hits[0])

def get_branch_index(model, id_of_branch):
    """Returns the index of the branch with given id, raises ValueError."""
    hits = model.branches.index[model.branches.id == id_of_branch]
    if not len(hits):
        raise ValueError(f'unknown branch {id_of_branch!r}')
    return int(hits[0])

def get_start_voltages(model):
    """Magnitudes and angles of buses as given in the model.

    Returns
    -------
    tuple
        * numpy.array, float, angles
        * numpy.array, float, magnitudes"""
    return (
        model.buses.angle.to_numpy(dtype=float).copy(),
        model.buses.V.to_numpy(dtype=float).copy())
