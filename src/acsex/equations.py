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

Created on Mon Oct 16 11:27:55 2023

@author: pyprg

Measured quantities as functions of the state (voltage angles and
magnitudes of buses) and their partial derivatives.

All functions are vectorized. Derivatives of branch related quantities are
returned as numpy.array of shape (4,n) ordered

    0 - angle of bus at side A
    1 - angle of bus at side B
    2 - magnitude of bus at side A
    3 - magnitude of bus at side B

Complex derivatives are derivatives of real and imaginary part, the
quantity of interest is the real or imaginary part of the returned values.
"""
import numpy as np

def get_voltages(Va, Vm):
    """Calculates complex voltages and their unit phasors.

    Parameters
    ----------
    Va: numpy.array
        float, voltage angles
    Vm: numpy.array
        float, voltage magnitudes

    Returns
    -------
    tuple
        * numpy.array, complex, Vm * exp(j*Va)
        * numpy.array, complex, exp(j*Va)"""
    E = np.exp(1j * np.asarray(Va, dtype=float))
    return np.asarray(Vm, dtype=float) * E, E

def get_bus_voltage(V, E):
    """Complex bus voltage and derivatives (angle, magnitude).

    Parameters
    ----------
    V: numpy.array
        complex, bus voltages
    E: numpy.array
        complex, unit phasors of bus voltages

    Returns
    -------
    tuple
        * numpy.array, complex, V
        * numpy.array (shape 2,n), complex, dV/dVa, dV/dVm"""
    return V, np.vstack([1j * V, E])

def get_terminal_voltage(Vf, Vt, Ef, Et, at_B):
    """Voltage at the terminal of a branch and its derivatives."""
    zero = np.zeros(len(at_B), dtype=complex)
    Vterm = np.where(at_B, Vt, Vf)
    dVterm = np.vstack([
        np.where(at_B, zero, 1j * Vf),
        np.where(at_B, 1j * Vt, zero),
        np.where(at_B, zero, Ef),
        np.where(at_B, Et, zero)])
    return Vterm, dVterm

def get_branch_current(y_a, y_b, Vf, Vt, Ef, Et):
    """Current flowing into the branch at one terminal.

    ::

        I = y_a * Vf + y_b * Vt

    (y_a, y_b) is (y_ff, y_ft) for terminals at side A and (y_tf, y_tt)
    for terminals at side B.

    Parameters
    ----------
    y_a: numpy.array
        complex, admittance multiplied with voltage of side A
    y_b: numpy.array
        complex, admittance multiplied with voltage of side B
    Vf: numpy.array
        complex, voltage at side A
    Vt: numpy.array
        complex, voltage at side B
    Ef: numpy.array
        complex, unit phasor of voltage at side A
    Et: numpy.array
        complex, unit phasor of voltage at side B

    Returns
    -------
    tuple
        * numpy.array, complex, current
        * numpy.array (shape 4,n), complex, derivatives"""
    I = y_a * Vf + y_b * Vt
    dI = np.vstack([1j * y_a * Vf, 1j * y_b * Vt, y_a * Ef, y_b * Et])
    return I, dI

def get_current_magnitude(I, dI):
    """Magnitude of current and its derivatives.

    The derivatives are singular for zero current, they are
    returned as 0. in this case."""
    Iabs = np.abs(I)
    with np.errstate(divide='ignore', invalid='ignore'):
        dIabs = np.where(0. < Iabs, (I.conjugate() * dI).real / Iabs, 0.)
    return Iabs, dIabs

def get_current_magnitude_squared(I, dI):
    """Square of current magnitude and its derivatives."""
    return (I * I.conjugate()).real, 2. * (I.conjugate() * dI).real

def get_current_angle(I, dI):
    """Angle of current phasor and its derivatives.

    The angle is not defined for zero current, angle and derivatives
    are 0. in this case."""
    Isqr = (I * I.conjugate()).real
    with np.errstate(divide='ignore', invalid='ignore'):
        dpsi = np.where(0. < Isqr, (I.conjugate() * dI).imag / Isqr, 0.)
    return np.angle(I), dpsi

def get_branch_power(I, dI, Vterm, dVterm):
    """Complex power flowing into the branch at a terminal.

    ::

        S = Vterm * conj(I)

    Parameters
    ----------
    I: numpy.array
        complex, current into the branch at the terminal
    dI: numpy.array (shape 4,n)
        complex, derivatives of current
    Vterm: numpy.array
        complex, voltage at the terminal
    dVterm: numpy.array (shape 4,n)
        complex, derivatives of terminal voltage

    Returns
    -------
    tuple
        * numpy.array, complex, P + jQ
        * numpy.array (shape 4,n), complex, derivatives"""
    Ic = I.conjugate()
    return Vterm * Ic, dVterm * Ic + Vterm * dI.conjugate()

def get_injected_current(Y, V):
    """Currents injected into the buses, Y @ V."""
    return Y @ V

def get_injected_power(V, Iinj):
    """Complex power injected into the buses, V * conj(Y @ V)."""
    return V * Iinj.conjugate()

def get_injected_power_derivatives(y_ik, i, k, V, E, Iinj):
    """Derivatives of power injected into bus i.

    Derivatives are calculated for pairs (i, k) of the sparsity pattern
    of the nodal admittance matrix, one pair for each bus k coupled
    to bus i including i itself.

    ::

        dS_i/dVa_k = -j * V_i * conj(y_ik * V_k)  (+ j * V_i * conj(I_i))
        dS_i/dVm_k =      V_i * conj(y_ik * E_k)  (+ E_i * conj(I_i))

    terms in parentheses apply for k == i only

    Parameters
    ----------
    y_ik: numpy.array
        complex, element of nodal admittance matrix
    i: numpy.array
        int, index of bus of injection
    k: numpy.array
        int, index of coupled bus
    V: numpy.array
        complex, voltages of all buses
    E: numpy.array
        complex, unit phasors of all buses
    Iinj: numpy.array
        complex, injected currents of all buses, Y @ V

    Returns
    -------
    tuple
        * numpy.array, complex, dS/dVa_k
        * numpy.array, complex, dS/dVm_k"""
    Vi = V[i]
    is_diagonal = i == k
    Ic = Iinj[i].conjugate()
    dVa = -1j * Vi * (y_ik * V[k]).conjugate()
    dVm = Vi * (y_ik * E[k]).conjugate()
    dVa = dVa + np.where(is_diagonal, 1j * Vi * Ic, 0.)
    dVm = dVm + np.where(is_diagonal, E[i] * Ic, 0.)
    return dVa, dVm
