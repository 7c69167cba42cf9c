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

Created on Sun Oct 22 09:21:40 2023

@author: pyprg
"""
import unittest
import context # adds parent folder of acsex to search path
import numpy as np
from numpy.testing import assert_allclose, assert_array_almost_equal
import acsex.estim as estim
from acsex.errors import (
    ConvergenceFailure, CorrelationConfigurationError,
    InconsistentUpdateError, ObservabilityError)
from acsex.model import Bus, Branch, make_model
from acsex.measurement import Measurements, set_means_from_state
from acsex.powerflow import calculate_power_flow

def _ring():
    return make_model(
        Bus('n0', type='slack', V=1.02),
        Bus('n1', P=-.6, Q=-.25, b_sh=.05),
        Bus('n2', type='PV', V=1.01, P=.2),
        Branch('b01', 'n0', 'n1', r=.02, x=.06, b=.03),
        Branch('b12', 'n1', 'n2', r=.03, x=.09, b=.02),
        Branch('b02', 'n0', 'n2', r=.01, x=.05, b=.04, ratio=.98,
               shift=.03))

def _true_state(model):
    success, Vcx = calculate_power_flow(model, precision=1e-12)
    assert success
    return Vcx

def _full_measurements(
        model, Vcx, variance=1e-4, noise=False, seed=None, square=False):
    """Voltmeters, wattmeters and varmeters at all buses,
    wattmeters and varmeters at all terminals, one ammeter, one PMU."""
    m = Measurements(model)
    for bus in model.buses.id:
        m.add_voltmeter(f'V {bus}', bus=bus, mean=0., variance=variance)
        m.add_wattmeter(f'P {bus}', bus=bus, mean=0., variance=variance)
        m.add_varmeter(f'Q {bus}', bus=bus, mean=0., variance=variance)
    for branch in model.branches.id:
        for side in 'AB':
            m.add_wattmeter(
                f'P {branch} {side}', branch=branch, side=side, mean=0.,
                variance=variance)
            m.add_varmeter(
                f'Q {branch} {side}', branch=branch, side=side, mean=0.,
                variance=variance)
    m.add_ammeter(
        'I b01', branch='b01', mean=0., variance=variance, square=square)
    m.add_pmu(
        'pmu n0', bus='n0', magnitude=0., angle=0., polar=True,
        variance_magnitude=variance, variance_angle=variance)
    set_means_from_state(
        m, np.angle(Vcx), np.abs(Vcx), noise=noise, seed=seed)
    return m

class Calculate(unittest.TestCase):

    def test_true_state_normal(self):
        model = _ring()
        Vcx = _true_state(model)
        estimation = estim.build(model, _full_measurements(model, Vcx))
        count = estim.calculate(estimation, tolerance=1e-11)
        self.assertLessEqual(count, 10, 'few iterations')
        self.assertEqual(
            estimation.status, estim.Status.CONVERGED, 'converged')
        assert_allclose(
            estimation.Vm, np.abs(Vcx), rtol=0., atol=1e-10,
            err_msg='estimated magnitudes are true magnitudes')
        assert_allclose(
            estimation.Va, np.angle(Vcx), rtol=0., atol=1e-10,
            err_msg='estimated angles are true angles')

    def test_true_state_orthogonal(self):
        model = _ring()
        Vcx = _true_state(model)
        estimation = estim.build(
            model, _full_measurements(model, Vcx), 'orthogonal')
        estim.calculate(estimation, tolerance=1e-11)
        assert_allclose(
            estimation.Vm * np.exp(1j * estimation.Va), Vcx, rtol=0.,
            atol=1e-10, err_msg='estimated voltages are true voltages')

    def test_squared_ammeter(self):
        model = _ring()
        Vcx = _true_state(model)
        estimation = estim.build(
            model, _full_measurements(model, Vcx, square=True))
        estim.calculate(estimation, tolerance=1e-11)
        assert_allclose(
            estimation.Vm * np.exp(1j * estimation.Va), Vcx, rtol=0.,
            atol=1e-10, err_msg='estimated voltages are true voltages')

    def test_small_variances(self):
        model = _ring()
        Vcx = _true_state(model)
        measurements = _full_measurements(model, Vcx, variance=1e-8)
        for variant in estim.Variant.NORMAL, estim.Variant.ORTHOGONAL:
            estimation = estim.build(model, measurements, variant)
            estim.calculate(estimation, tolerance=1e-11)
            assert_allclose(
                estimation.Vm * np.exp(1j * estimation.Va), Vcx, rtol=0.,
                atol=1e-10,
                err_msg=f'{variant.value}: estimated voltages are true '
                'voltages')

    def test_different_variances(self):
        """accurate PMU, inaccurate meters"""
        model = _ring()
        Vcx = _true_state(model)
        measurements = _full_measurements(
            model, Vcx, variance=1e-4, noise=True, seed=5)
        states = []
        for variant in estim.Variant.NORMAL, estim.Variant.ORTHOGONAL:
            estimation = estim.build(model, measurements, variant)
            estim.update_measurement(
                estimation, 'pmu n0', magnitude=abs(Vcx[0]),
                variance_magnitude=1e-10, variance_angle=1e-10)
            estim.calculate(estimation, tolerance=1e-11)
            self.assertAlmostEqual(
                estimation.Vm[0], abs(Vcx[0]), 8,
                'magnitude of accurate PMU')
            states.append(estimation.Vm * np.exp(1j * estimation.Va))
        assert_allclose(
            states[0], states[1], rtol=0., atol=1e-8,
            err_msg='normal and orthogonal variants reach same state')

    def test_orthogonal_equals_normal(self):
        model = _ring()
        Vcx = _true_state(model)
        measurements = _full_measurements(model, Vcx, noise=True, seed=3)
        normal = estim.build(model, measurements, estim.Variant.NORMAL)
        orthogonal = estim.build(
            model, measurements, estim.Variant.ORTHOGONAL)
        estim.calculate(normal, tolerance=1e-11)
        estim.calculate(orthogonal, tolerance=1e-11)
        assert_array_almost_equal(
            normal.Vm, orthogonal.Vm, decimal=9,
            err_msg='same magnitudes')
        assert_array_almost_equal(
            normal.Va, orthogonal.Va, decimal=9, err_msg='same angles')
        self.assertAlmostEqual(
            normal.objective, orthogonal.objective, 6, 'same objective')

    def test_phasor_measurements(self):
        """rectangular PMUs at all buses, correlated and uncorrelated"""
        model = _ring()
        Vcx = _true_state(model)
        m = Measurements(model)
        m.add_pmu(bus='n0', magnitude=0., angle=0., correlated=True)
        m.add_pmu(bus='n1', magnitude=0., angle=0., correlated=True)
        m.add_pmu(bus='n2', magnitude=0., angle=0.)
        m.add_pmu(branch='b12', side='B', magnitude=0., angle=0.,
                  polar=True)
        set_means_from_state(m, np.angle(Vcx), np.abs(Vcx))
        estimation = estim.build(model, m)
        estim.calculate(estimation, tolerance=1e-11)
        assert_allclose(
            estimation.Vm * np.exp(1j * estimation.Va), Vcx, rtol=0.,
            atol=1e-10, err_msg='estimated voltages are true voltages')

    def test_start_from_solution(self):
        model = _ring()
        Vcx = _true_state(model)
        estimation = estim.build(
            model, _full_measurements(model, Vcx), Vinit=Vcx)
        self.assertEqual(
            estim.calculate(estimation), 1,
            'one iteration when starting from solution')

    def test_set_initial_point(self):
        model = _ring()
        Vcx = _true_state(model)
        estimation = estim.build(model, _full_measurements(model, Vcx))
        estim.calculate(estimation)
        estim.set_initial_point(estimation)
        self.assertEqual(
            estimation.status, estim.Status.INITIALIZED, 'initialized')
        assert_array_almost_equal(
            estimation.Vm, model.buses.V, decimal=15,
            err_msg='start values of model')

    def test_convergence_failure(self):
        model = _ring()
        Vcx = _true_state(model)
        estimation = estim.build(model, _full_measurements(model, Vcx))
        with self.assertRaises(ConvergenceFailure) as context:
            estim.calculate(estimation, tolerance=1e-14, max_iter=1)
        self.assertEqual(context.exception.iterations, 1, 'one iteration')
        self.assertLess(0., context.exception.increment, 'increment')
        self.assertEqual(
            estimation.status, estim.Status.MAX_ITERATIONS_EXCEEDED,
            'status is max iterations exceeded')

class Iterate_solve(unittest.TestCase):

    def test_iterate_does_not_change_state(self):
        model = _ring()
        Vcx = _true_state(model)
        estimation = estim.build(model, _full_measurements(model, Vcx))
        Vm = estimation.Vm.copy()
        max_increment = estim.iterate(estimation)
        assert_array_almost_equal(
            estimation.Vm, Vm, decimal=15, err_msg='state is unchanged')
        self.assertEqual(
            estimation.status, estim.Status.ITERATING, 'iterating')
        self.assertEqual(
            estim.solve(estimation), max_increment,
            'solve applies increment')
        self.assertAlmostEqual(
            estimation.Va[0], model.buses.angle[0], 15,
            'angle of slack is unchanged')
        self.assertIsNone(estimation.increment, 'no pending increment')

    def test_solve_iterates(self):
        model = _ring()
        Vcx = _true_state(model)
        estimation = estim.build(model, _full_measurements(model, Vcx))
        self.assertLess(0., estim.solve(estimation), 'increment')
        self.assertEqual(estimation.iterations, 1, 'one iteration')

    def test_iterate_lav(self):
        model = _ring()
        Vcx = _true_state(model)
        estimation = estim.build(
            model, _full_measurements(model, Vcx), estim.Variant.LAV)
        with self.assertRaises(ValueError):
            estim.iterate(estimation)

class Weighting(unittest.TestCase):

    def test_scaled_variances(self):
        """increment does not depend on a common factor of variances"""
        model = _ring()
        increments = []
        for variance in (1e-4, 2e-4):
            m = Measurements(model)
            m.add_voltmeter(bus='n1', mean=.98, variance=variance)
            m.add_wattmeter(bus='n1', mean=-.6, variance=variance)
            m.add_wattmeter(bus='n2', mean=.2, variance=variance)
            m.add_varmeter(bus='n1', mean=-.2, variance=variance)
            m.add_varmeter(bus='n2', mean=.1, variance=variance)
            m.add_pmu(
                bus='n0', magnitude=1., angle=0., polar=True,
                variance_magnitude=variance, variance_angle=variance)
            estimation = estim.build(model, m, Vinit=np.ones(3))
            estim.iterate(estimation)
            increments.append(estimation.increment)
        assert_array_almost_equal(
            increments[0], increments[1], decimal=12,
            err_msg='same increment')

class Correlation(unittest.TestCase):

    def test_orthogonal_correlated(self):
        model = _ring()
        Vcx = _true_state(model)
        m = _full_measurements(model, Vcx)
        m.add_pmu(bus='n1', magnitude=1., angle=0., correlated=True)
        with self.assertRaises(CorrelationConfigurationError):
            estim.build(model, m, estim.Variant.ORTHOGONAL)
        estimation = estim.build(model, m, estim.Variant.NORMAL)
        self.assertEqual(
            estimation.iterations, 0,
            'normal variant accepts correlated errors')

class Observability(unittest.TestCase):

    def _two_buses(self, status=1):
        model = make_model(
            Bus('n0', type='slack'),
            Bus('n1'),
            Branch('line', 'n0', 'n1', r=.01, x=.1))
        m = Measurements(model)
        m.add_voltmeter('V0', bus='n0', mean=1., variance=1e-4)
        m.add_wattmeter(
            'P1', bus='n1', mean=-.3, variance=1e-4, status=status)
        m.add_varmeter(
            'Q1', bus='n1', mean=-.1, variance=1e-4, status=status)
        return model, m

    def test_minimal(self):
        model, m = self._two_buses()
        estimation = estim.build(model, m)
        estim.calculate(estimation)
        self.assertAlmostEqual(
            estimation.Vm[0], 1., 8, 'magnitude of measured bus')

    def test_isolated(self):
        model, m = self._two_buses()
        estimation = estim.build(model, m)
        estim.update_measurement(estimation, 'P1', status=0)
        estim.update_measurement(estimation, 'Q1', status=0)
        with self.assertRaises(ObservabilityError):
            estim.calculate(estimation)

    def test_excluded(self):
        model, m = self._two_buses(status=-1)
        estimation = estim.build(model, m, 'orthogonal')
        with self.assertRaises(ObservabilityError):
            estim.iterate(estimation)

class Update_measurement(unittest.TestCase):

    def setUp(self):
        model = _ring()
        Vcx = _true_state(model)
        self.estimation = estim.build(model, _full_measurements(model, Vcx))

    def test_unknown_label(self):
        with self.assertRaises(InconsistentUpdateError):
            estim.update_measurement(self.estimation, 'V n9', status=0)

    def test_structure(self):
        with self.assertRaises(InconsistentUpdateError):
            estim.update_measurement(self.estimation, 'pmu n0', polar=False)
        with self.assertRaises(InconsistentUpdateError):
            estim.update_measurement(self.estimation, 'I b01', square=True)

    def test_invalid_values(self):
        with self.assertRaises(InconsistentUpdateError):
            estim.update_measurement(self.estimation, 'V n1', status=-1)
        with self.assertRaises(InconsistentUpdateError):
            estim.update_measurement(self.estimation, 'V n1', variance=0.)

    def test_registry(self):
        estim.update_measurement(self.estimation, 'V n1', mean=1.05)
        self.assertEqual(
            self.estimation.measurements.get('V n1')['mean'], 1.05,
            'registry is updated')

class Get_voltages(unittest.TestCase):

    def test_voltages(self):
        model = _ring()
        m = Measurements(model)
        m.add_voltmeter(bus='n1', mean=1.)
        estimation = estim.build(model, m)
        df = estim.get_voltages(estimation)
        self.assertEqual(df.index.tolist(), ['n0', 'n1', 'n2'], 'ids')
        self.assertAlmostEqual(df.V_pu['n0'], 1.02, 15, 'start value')

if __name__ == '__main__':
    unittest.main()
