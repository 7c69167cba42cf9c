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

Created on Fri Oct 20 14:48:53 2023

@author: pyprg

Electric data of buses and branches calculated from bus voltages.
"""
import numpy as np
import pandas as pd
from acsex.equations import get_injected_current, get_injected_power

#
# buses
#

def calculate_bus_results(model, /, Vnode):
    """Calculates electric values of buses.

    Parameters
    ----------
    model: acsex.model.Model
        data of the electric power network
    Vnode: numpy.array
        complex, vector of bus voltages

    Returns
    -------
    pandas.DataFrame (id)
        * .V_pu, float
        * .angle, float
        * .P_pu, float, injected active power
        * .Q_pu, float, injected reactive power
        * .Vcx_pu, complex
        * .Scx_pu, complex
        * .Icx_pu, complex, injected current"""
    Vnode = np.asarray(Vnode).reshape(-1)
    Iinj = get_injected_current(model.Y, Vnode)
    S = get_injected_power(Vnode, Iinj)
    df = pd.DataFrame({
        'id': model.buses.id.to_numpy(),
        'V_pu': np.abs(Vnode),
        'angle': np.angle(Vnode),
        'P_pu': S.real,
        'Q_pu': S.imag,
        'Vcx_pu': Vnode,
        'Scx_pu': S,
        'Icx_pu': Iinj})
    df.set_index('id', inplace=True)
    return df

#
# branches
#

def calculate_branch_results(model, /, Vnode):
    """Calculates electric values of branches.

    Currents and powers are flowing into the branch at the terminals.

    Parameters
    ----------
    model: acsex.model.Model
        data of the electric power network
    Vnode: numpy.array
        complex, vector of bus voltages

    Returns
    -------
    pandas.DataFrame (id)
        * .S0cx_pu, complex
        * .I0cx_pu, complex
        * .V0cx_pu, complex
        * .S1cx_pu, complex
        * .I1cx_pu, complex
        * .V1cx_pu, complex
        * .Slosscx_pu, complex
        * .P0_pu, float
        * .Q0_pu, float
        * .I0_pu, float
        * .V0_pu, float
        * .P1_pu, float
        * .Q1_pu, float
        * .I1_pu, float
        * .V1_pu, float
        * .Ploss_pu, float
        * .Qloss_pu, float"""
    Vnode = np.asarray(Vnode).reshape(-1)
    branches = model.branches
    V0 = Vnode[branches.index_of_node_A.to_numpy(dtype=np.int64)]
    V1 = Vnode[branches.index_of_node_B.to_numpy(dtype=np.int64)]
    I0 = branches.y_ff.to_numpy() * V0 + branches.y_ft.to_numpy() * V1
    I1 = branches.y_tf.to_numpy() * V0 + branches.y_tt.to_numpy() * V1
    S0 = V0 * I0.conjugate()
    S1 = V1 * I1.conjugate()
    Sloss = S0 + S1
    df = pd.DataFrame({
        'id': branches.id.to_numpy(),
        'S0cx_pu': S0,
        'I0cx_pu': I0,
        'V0cx_pu': V0,
        'S1cx_pu': S1,
        'I1cx_pu': I1,
        'V1cx_pu': V1,
        'Slosscx_pu': Sloss,
        'P0_pu': S0.real,
        'Q0_pu': S0.imag,
        'I0_pu': np.abs(I0),
        'V0_pu': np.abs(V0),
        'P1_pu': S1.real,
        'Q1_pu': S1.imag,
        'I1_pu': np.abs(I1),
        'V1_pu': np.abs(V1),
        'Ploss_pu': Sloss.real,
        'Qloss_pu': Sloss.imag})
    df.set_index('id', inplace=True)
    return df

def calculate_electric_data(model, /, Vnode):
    """Calculates and arranges electric data of buses and branches.

    Parameters
    ----------
    model: acsex.model.Model
        data of the electric power network
    Vnode: numpy.array
        complex, vector of bus voltages, e.g. estimated or result
        of power flow calculation

    Returns
    -------
    dict
        * 'buses', pandas.DataFrame
        * 'branches', pandas.DataFrame"""
    return {
        'buses': calculate_bus_results(model, Vnode),
        'branches': calculate_branch_results(model, Vnode)}
