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

Created on Mon Oct 23 15:12:06 2023

@author: pyprg
"""

import unittest
import context # adds parent folder of acsex to search path
import numpy as np
import pandas as pd
import acsex.result as rt
from acsex.model import Bus, Branch, make_model
from acsex.powerflow import calculate_power_flow
from numpy.testing import assert_array_equal, assert_array_almost_equal

class Calculate_electric_data(unittest.TestCase):

    def test_empty(self):
        model = make_model()
        res = rt.calculate_electric_data(model, np.zeros(0, dtype=complex))
        self.assertIsInstance(
            res['branches'],
            pd.DataFrame,
            'branches is a pandas.DataFrame')
        self.assertIsInstance(
            res['buses'],
            pd.DataFrame,
            'buses is a pandas.DataFrame')

    def test_slack(self):
        vslack = .994+.023j
        model = make_model(
            Bus('n_0', type='slack', V=abs(vslack), angle=np.angle(vslack)))
        res = rt.calculate_electric_data(model, np.array([vslack]))
        assert_array_equal(
            res['buses'].Vcx_pu.to_numpy(),
            np.array([vslack]),
            err_msg='calculate_electric_data shall return the slack voltage')
        self.assertAlmostEqual(
            res['buses'].P_pu['n_0'], 0., 12,
            'no injection into isolated bus')

    def test_line(self):
        """
        n_0-------line-------n_1
        slack     r=.01      P=-.3
                  x=.1       Q=-.1
        """
        model = make_model(
            Bus('n_0', type='slack'),
            Bus('n_1', P=-.3, Q=-.1),
            Branch('line', 'n_0', 'n_1', r=.01, x=.1))
        success, vcx = calculate_power_flow(model, precision=1e-12)
        self.assertTrue(success, 'power flow calculation succeeds')
        res = rt.calculate_electric_data(model, vcx)
        branches = res['branches']
        self.assertAlmostEqual(
            branches.I0cx_pu['line'], -branches.I1cx_pu['line'], 12,
            'current entering at A leaves at B')
        self.assertAlmostEqual(
            branches.Slosscx_pu['line'],
            branches.S0cx_pu['line'] + branches.S1cx_pu['line'], 12,
            'loss is sum of terminal powers')
        self.assertAlmostEqual(
            branches.Ploss_pu['line'],
            .01 * branches.I0_pu['line'] ** 2, 12,
            'active power loss is r * I**2')
        self.assertAlmostEqual(
            branches.P0_pu['line'], -res['buses'].P_pu['n_1'] +
            branches.Ploss_pu['line'], 10,
            'slack supplies load and loss')
        assert_array_almost_equal(
            res['buses'].P_pu.to_numpy(), [.3 + branches.Ploss_pu['line'],
            -.3], decimal=10,
            err_msg='injected active power')

    def test_charging(self):
        """line charging, current at open end is 0"""
        model = make_model(
            Bus('n_0', type='slack'),
            Bus('n_1'),
            Branch('line', 'n_0', 'n_1', r=.01, x=.1, b=.04))
        success, vcx = calculate_power_flow(model, precision=1e-12)
        self.assertTrue(success, 'power flow calculation succeeds')
        branches = rt.calculate_branch_results(model, vcx)
        self.assertAlmostEqual(
            branches.I1_pu['line'], 0., 10, 'no current at open end')
        self.assertLess(
            branches.Q0_pu['line'], 0., 'line delivers reactive power')

if __name__ == '__main__':
    unittest.main()
