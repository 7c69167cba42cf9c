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

Created on Mon Oct 16 14:50:31 2023

@author: pyprg

Registry of measurement devices: voltmeters, ammeters, wattmeters,
varmeters and PMUs.

Values are per unit, angles in rad. Locations are buses or terminals
of branches, side 'A' or 'B'.
"""
import numpy as np
import pandas as pd
from collections import namedtuple
from acsex.jacobian import (
    CATEGORIES, Code, create_jacobian, calculate_values)
from acsex.model import get_bus_index, get_branch_index

Meterconfig = namedtuple(
    'Meterconfig', 'variance status square', defaults=(False,))
Meterconfig.__doc__ = """Defaults of voltmeters, ammeters, wattmeters and
varmeters.

Parameters
----------
variance: float
    variance of measurement error
status: int
    1 in service, 0 out of service, -1 not included in model
square: bool
    ammeters only, squared current magnitude"""

Pmuconfig = namedtuple(
    'Pmuconfig',
    'variance_magnitude variance_angle status polar correlated square')
Pmuconfig.__doc__ = """Defaults of PMUs.

Parameters
----------
variance_magnitude: float
    variance of error of magnitude
variance_angle: float
    variance of error of angle
status: int
    1 in service, 0 out of service, -1 not included in model
polar: bool
    rows for magnitude and angle if True, real and imaginary part
    otherwise
correlated: bool
    rectangular only, errors of real and imaginary part are correlated
square: bool
    polar PMUs at branches only, squared current magnitude"""

Template = namedtuple(
    'Template', 'voltmeter ammeter wattmeter varmeter pmu')
Template.__doc__ = """Defaults of measurement devices per category."""

DEFAULT_TEMPLATE = Template(
    voltmeter=Meterconfig(variance=1e-2, status=1),
    ammeter=Meterconfig(variance=1e-2, status=1, square=False),
    wattmeter=Meterconfig(variance=1e-2, status=1),
    varmeter=Meterconfig(variance=1e-2, status=1),
    pmu=Pmuconfig(
        variance_magnitude=1e-5,
        variance_angle=1e-5,
        status=1,
        polar=False,
        correlated=False,
        square=False))

_COLUMNS = {
    'voltmeter': ['label', 'location', 'index', 'mean', 'variance', 'status'],
    'ammeter': [
        'label', 'location', 'index', 'mean', 'variance', 'status',
        'square'],
    'wattmeter': ['label', 'location', 'index', 'mean', 'variance', 'status'],
    'varmeter': ['label', 'location', 'index', 'mean', 'variance', 'status'],
    'pmu': [
        'label', 'location', 'index', 'magnitude', 'angle',
        'variance_magnitude', 'variance_angle', 'status_magnitude',
        'status_angle', 'polar', 'correlated', 'square']}

# fields of records changeable by 'update'
UPDATABLE = {
    'voltmeter': frozenset(['mean', 'variance', 'status']),
    'ammeter': frozenset(['mean', 'variance', 'status']),
    'wattmeter': frozenset(['mean', 'variance', 'status']),
    'varmeter': frozenset(['mean', 'variance', 'status']),
    'pmu': frozenset([
        'magnitude', 'angle', 'variance_magnitude', 'variance_angle',
        'status', 'status_magnitude', 'status_angle'])}

_VARIANCES = ('variance', 'variance_magnitude', 'variance_angle')
_STATUSES = ('status', 'status_magnitude', 'status_angle')

def _check_variance(label, name, value):
    if not 0. < value:
        raise ValueError(
            f'{name} of measurement {label!r} must be positive, got {value}')

def _check_status(label, name, value, allowed=(0, 1)):
    if value not in allowed:
        raise ValueError(
            f'{name} of measurement {label!r} must be one of {allowed}, '
            f'got {value}')

class Measurements:
    """Ordered registry of measurement devices of a grid.

    Devices are stored per category in insertion order. Each device
    has a unique label."""

    def __init__(self, model, template=DEFAULT_TEMPLATE):
        """
        Parameters
        ----------
        model: acsex.model.Model
            grid the devices are located in
        template: Template
            default values of devices"""
        self.model = model
        self.template = template
        self._records = {category: [] for category in CATEGORIES}
        self._positions = {}

    def __len__(self):
        return len(self._positions)

    def __contains__(self, label):
        return label in self._positions

    def _next_label(self, category):
        number = len(self._records[category]) + 1
        label = f'{category.capitalize()} {number}'
        while label in self._positions:
            number += 1
            label = f'{category.capitalize()} {number}'
        return label

    def _location(self, bus, branch, side, at_bus=True):
        if bus is not None:
            if branch is not None:
                raise ValueError('either bus or branch can be given')
            if not at_bus:
                raise ValueError('device must be located at a branch')
            return 'bus', get_bus_index(self.model, bus)
        if branch is None:
            raise ValueError('location is missing, give bus or branch')
        if side not in ('A', 'B'):
            raise ValueError(f"side must be 'A' or 'B', got {side!r}")
        return side, get_branch_index(self.model, branch)

    def _add(self, category, label, record):
        if label is None:
            label = self._next_label(category)
        elif label in self._positions:
            raise ValueError(f'measurement {label!r} exists already')
        record['label'] = label
        records = self._records[category]
        self._positions[label] = (category, len(records))
        records.append(record)
        return label

    def _add_meter(
            self, category, label, bus, branch, side, mean, variance,
            status, at_bus=True, square=None):
        config = getattr(self.template, category)
        variance = config.variance if variance is None else variance
        status = config.status if status is None else status
        _check_status(label, 'status', status, (-1, 0, 1))
        _check_variance(label, 'variance', variance)
        location, index = self._location(bus, branch, side, at_bus)
        if status == -1:
            return None
        record = dict(
            location=location,
            index=index,
            mean=float(mean),
            variance=float(variance),
            status=int(status))
        if category == 'ammeter':
            record['square'] = bool(
                config.square if square is None else square)
        return self._add(category, label, record)

    def add_voltmeter(
            self, label=None, *, bus, mean, variance=None, status=None):
        """Adds a voltmeter measuring the voltage magnitude of a bus.

        Parameters
        ----------
        label: str, optional
            unique label, generated if omitted
        bus: str
            id of bus
        mean: float
            measured value, pu
        variance: float, optional
            default from template
        status: 1 | 0 | -1, optional
            default from template, -1 does not add the device

        Returns
        -------
        str | None
            label, None if status is -1"""
        return self._add_meter(
            'voltmeter', label, bus, None, 'A', mean, variance, status)

    def add_ammeter(
            self, label=None, *, branch, side='A', mean, variance=None,
            status=None, square=None):
        """Adds an ammeter measuring the current magnitude at a branch
        terminal.

        Parameters
        ----------
        label: str, optional
            unique label, generated if omitted
        branch: str
            id of branch
        side: 'A' | 'B'
            terminal of branch
        mean: float
            measured value, pu
        variance: float, optional
            default from template
        status: 1 | 0 | -1, optional
            default from template, -1 does not add the device
        square: bool, optional
            squared current magnitude, default from template

        Returns
        -------
        str | None
            label, None if status is -1"""
        return self._add_meter(
            'ammeter', label, None, branch, side, mean, variance, status,
            at_bus=False, square=square)

    def add_wattmeter(
            self, label=None, *, bus=None, branch=None, side='A', mean,
            variance=None, status=None):
        """Adds a wattmeter measuring active power injected into a bus
        (bus given) or flowing into a branch (branch and side given)."""
        return self._add_meter(
            'wattmeter', label, bus, branch, side, mean, variance, status)

    def add_varmeter(
            self, label=None, *, bus=None, branch=None, side='A', mean,
            variance=None, status=None):
        """Adds a varmeter measuring reactive power injected into a bus
        (bus given) or flowing into a branch (branch and side given)."""
        return self._add_meter(
            'varmeter', label, bus, branch, side, mean, variance, status)

    def add_pmu(
            self, label=None, *, bus=None, branch=None, side='A', magnitude,
            angle, variance_magnitude=None, variance_angle=None, status=None,
            polar=None, correlated=None, square=None):
        """Adds a PMU measuring a voltage phasor of a bus (bus given) or
        the phasor of the current flowing into a branch (branch and side
        given).

        Parameters
        ----------
        label: str, optional
            unique label, generated if omitted
        bus: str, optional
            id of bus
        branch: str, optional
            id of branch
        side: 'A' | 'B'
            terminal of branch
        magnitude: float
            pu
        angle: float
            rad
        variance_magnitude: float, optional
            default from template
        variance_angle: float, optional
            default from template
        status: 1 | 0 | -1, optional
            status of magnitude and angle, default from template,
            -1 does not add the device
        polar: bool, optional
            default from template
        correlated: bool, optional
            default from template
        square: bool, optional
            default from template

        Returns
        -------
        str | None
            label, None if status is -1"""
        config = self.template.pmu
        pick = lambda value, default: default if value is None else value
        variance_magnitude = pick(
            variance_magnitude, config.variance_magnitude)
        variance_angle = pick(variance_angle, config.variance_angle)
        status = pick(status, config.status)
        _check_status(label, 'status', status, (-1, 0, 1))
        _check_variance(label, 'variance_magnitude', variance_magnitude)
        _check_variance(label, 'variance_angle', variance_angle)
        location, index = self._location(bus, branch, side)
        if status == -1:
            return None
        return self._add('pmu', label, dict(
            location=location,
            index=index,
            magnitude=float(magnitude),
            angle=float(angle),
            variance_magnitude=float(variance_magnitude),
            variance_angle=float(variance_angle),
            status_magnitude=int(status),
            status_angle=int(status),
            polar=bool(pick(polar, config.polar)),
            correlated=bool(pick(correlated, config.correlated)),
            square=bool(pick(square, config.square))))

    def category_of(self, label):
        """Returns the category of the device with the given label.

        Raises KeyError for unknown labels."""
        return self._positions[label][0]

    def get(self, label):
        """Returns a copy of the record of the device, raises KeyError."""
        category, position = self._positions[label]
        return dict(self._records[category][position])

    def get_frame(self, category):
        """Records of one category as pandas.DataFrame in insertion order.

        Parameters
        ----------
        category: 'voltmeter' | 'ammeter' | 'wattmeter' | 'varmeter' | 'pmu'

        Returns
        -------
        pandas.DataFrame"""
        return pd.DataFrame(
            self._records[category], columns=_COLUMNS[category])

    def get_record_frame(self, label):
        """Record of one device as pandas.DataFrame with a single row."""
        category = self.category_of(label)
        return pd.DataFrame([self.get(label)], columns=_COLUMNS[category])

    def update(self, label, **fields):
        """Changes mean, variance and status of a device.

        Parameters
        ----------
        label: str
            label of device
        fields:
            'mean', 'variance', 'status' for voltmeters, ammeters,
            wattmeters and varmeters; 'magnitude', 'angle',
            'variance_magnitude', 'variance_angle', 'status_magnitude',
            'status_angle' and 'status' (magnitude and angle) for PMUs"""
        category, position = self._positions[label]
        invalid = set(fields) - UPDATABLE[category]
        if invalid:
            raise ValueError(
                f'fields {sorted(invalid)} of {category} {label!r} '
                'cannot be updated')
        for name, value in fields.items():
            if name in _VARIANCES:
                _check_variance(label, name, value)
            elif name in _STATUSES:
                _check_status(label, name, value)
        record = self._records[category][position]
        for name, value in fields.items():
            if name == 'status' and category == 'pmu':
                record['status_magnitude'] = int(value)
                record['status_angle'] = int(value)
            elif name in _STATUSES:
                record[name] = int(value)
            else:
                record[name] = float(value)

#
# measurement generation
#

def _noise(rng, variance):
    return rng.normal(0., np.sqrt(variance))

def set_means_from_state(measurements, Va, Vm, *, noise=False, seed=None):
    """Sets the means of all devices to the values at the given state.

    Out-of-service devices are included.

    Parameters
    ----------
    measurements: Measurements
        registry, means are replaced
    Va: array_like
        float, voltage angles of buses
    Vm: array_like
        float, voltage magnitudes of buses
    noise: bool, optional
        adds normally distributed errors with the variances of the devices
    seed: int, optional
        seed of random number generator"""
    model = measurements.model
    jacobian = create_jacobian(model, measurements)
    values, _ = calculate_values(
        model, jacobian, np.asarray(Va, dtype=float),
        np.asarray(Vm, dtype=float))
    rng = np.random.default_rng(seed)
    for label, rows in jacobian.rows_of_label.items():
        category, position = measurements._positions[label]
        record = measurements._records[category][position]
        codes = jacobian.code[rows]
        measured = values[rows]
        if category == 'pmu':
            first, second = measured
            if record['polar']:
                magnitude = (
                    np.sqrt(first)
                    if codes[0] in (Code.ISQR_A, Code.ISQR_B) else first)
                angle = second
            else:
                magnitude = np.hypot(first, second)
                angle = np.arctan2(second, first)
            if noise:
                magnitude += _noise(rng, record['variance_magnitude'])
                angle += _noise(rng, record['variance_angle'])
            record['magnitude'] = float(magnitude)
            record['angle'] = float(angle)
        else:
            value = measured[0]
            if codes[0] in (Code.ISQR_A, Code.ISQR_B):
                value = np.sqrt(value)
            if noise:
                value += _noise(rng, record['variance'])
            record['mean'] = float(value)
