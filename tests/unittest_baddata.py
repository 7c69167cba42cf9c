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

Created on Sun Oct 22 14:05:12 2023

@author: pyprg
"""
import unittest
import context # adds parent folder of acsex to search path
import numpy as np
import acsex.estim as estim
from acsex.baddata import calculate_normalized_residuals
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

def _measurements(model, Vcx, variance=1e-4):
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
        'I b01', branch='b01', mean=0., variance=variance, square=True)
    m.add_pmu(
        'pmu n0', bus='n0', magnitude=0., angle=0., polar=True,
        variance_magnitude=variance, variance_angle=variance)
    set_means_from_state(m, np.angle(Vcx), np.abs(Vcx))
    return m

class Test_residuals(unittest.TestCase):

    def setUp(self):
        self.model = _ring()
        success, self.Vcx = calculate_power_flow(
            self.model, precision=1e-12)
        self.assertTrue(success, 'power flow calculation succeeds')
        self.measurements = _measurements(self.model, self.Vcx)

    def test_consistent(self):
        estimation = estim.build(self.model, self.measurements)
        estim.calculate(estimation, tolerance=1e-11)
        result = estim.test_residuals(estimation)
        self.assertFalse(result.detected, 'no bad data')
        self.assertLess(
            result.max_normalized_residual, 1e-3,
            'normalized residuals are close to 0')

    def test_bad_voltmeter(self):
        mean = self.measurements.get('V n1')['mean']
        estimation = estim.build(self.model, self.measurements)
        estim.update_measurement(estimation, 'V n1', mean=mean + .1)
        estim.calculate(estimation, tolerance=1e-10)
        result = estim.test_residuals(estimation)
        self.assertTrue(result.detected, 'bad data detected')
        self.assertEqual(result.label, 'V n1', 'voltmeter at n1 is bad')
        self.assertLess(3., result.max_normalized_residual, 'exceeds 3')
        estim.update_measurement(estimation, 'V n1', status=0)
        estim.calculate(estimation, tolerance=1e-10)
        result = estim.test_residuals(estimation)
        self.assertFalse(result.detected, 'no more bad data')
        self.assertAlmostEqual(
            estimation.Vm[1], abs(self.Vcx[1]), 8,
            'true magnitude without bad voltmeter')

    def test_threshold(self):
        mean = self.measurements.get('P n1')['mean']
        estimation = estim.build(self.model, self.measurements)
        estim.update_measurement(estimation, 'P n1', mean=mean + .1)
        estim.calculate(estimation, tolerance=1e-10)
        result = estim.test_residuals(estimation)
        high = estim.test_residuals(
            estimation, threshold=result.max_normalized_residual + 1.)
        self.assertFalse(high.detected, 'below threshold')
        self.assertEqual(high.label, result.label, 'same label')

    def test_stateless(self):
        mean = self.measurements.get('V n2')['mean']
        estimation = estim.build(self.model, self.measurements)
        estim.update_measurement(estimation, 'V n2', mean=mean - .05)
        estim.calculate(estimation, tolerance=1e-10)
        first = calculate_normalized_residuals(
            self.model, estimation.jacobian, estimation.Va, estimation.Vm)
        second = calculate_normalized_residuals(
            self.model, estimation.jacobian, estimation.Va, estimation.Vm)
        np.testing.assert_array_equal(first, second, 'same result')
        self.assertEqual(
            self.measurements.get('V n2')['status'], 1,
            'test does not change status')

    def test_out_of_service_rows(self):
        estimation = estim.build(self.model, self.measurements)
        estim.update_measurement(estimation, 'Q n1', status=0)
        estim.calculate(estimation, tolerance=1e-10)
        normalized = calculate_normalized_residuals(
            self.model, estimation.jacobian, estimation.Va, estimation.Vm)
        row = estimation.jacobian.rows_of_label['Q n1'][0]
        self.assertEqual(normalized[row], 0., 'row out of service is 0')

    def test_lav(self):
        estimation = estim.build(
            self.model, self.measurements, estim.Variant.LAV)
        with self.assertRaises(ValueError):
            estim.test_residuals(estimation)

class Critical(unittest.TestCase):

    def test_critical_measurements(self):
        """exactly determined system, all measurements are critical"""
        model = make_model(
            Bus('n0', type='slack'),
            Bus('n1'),
            Branch('line', 'n0', 'n1', r=.01, x=.1))
        m = Measurements(model)
        m.add_voltmeter('V0', bus='n0', mean=1.02, variance=1e-4)
        m.add_wattmeter('P1', bus='n1', mean=-.3, variance=1e-4)
        m.add_varmeter('Q1', bus='n1', mean=-.1, variance=1e-4)
        estimation = estim.build(model, m)
        estim.calculate(estimation, tolerance=1e-11)
        result = estim.test_residuals(estimation)
        self.assertFalse(result.detected, 'no bad data')
        self.assertIsNone(result.label, 'no qualified row')
        self.assertEqual(result.index, -1, 'no index')

if __name__ == '__main__':
    unittest.main()
