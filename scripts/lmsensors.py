#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
LMSensors — read-only view of the libsensors chip hierarchy.

Wraps the PySensors ctypes binding (``import sensors``) into three levels of
iterable objects: ``LMSensors`` -> ``Chip`` -> ``Feature`` -> ``SubFeature``.
Each sub-feature knows its quantity description, unit and current value.

Version: 0.2.0
"""

import os
import logging
import weakref
from typing import Any, Dict, Iterator, Optional

__version__ = "0.2.0"

logger = logging.getLogger(__name__)

# Feature kinds live in the high byte of a sub-feature type code
FEATURE_KINDS: Dict[int, str] = {
    0x00: 'in',
    0x01: 'fan',
    0x02: 'temp',
    0x03: 'power',
    0x04: 'energy',
    0x05: 'curr',
    0x06: 'humidity',
    0x10: 'vid',
    0x11: 'intrusion',
    0x18: 'beep_enable',
}

FEATURE_UNITS: Dict[str, str] = {
    'in': 'V',
    'fan': 'RPM',
    'temp': '°C',
    'power': 'W',
    'energy': 'J',
    'curr': 'A',
    'humidity': '%RH',
    'vid': 'V',
}

_VOLTAGE_QUANTITIES = (
    ['input', 'min', 'max', 'lcrit', 'crit', 'average', 'lowest', 'highest'],
    ['alarm', 'min_alarm', 'max_alarm', 'beep', 'lcrit_alarm', 'crit_alarm'],
)

# (measured quantities, 0x80 block of alarm/beep/fault flags) per feature kind,
# indexed by the low bits of the sub-feature type
QUANTITIES: Dict[str, tuple] = {
    'in': _VOLTAGE_QUANTITIES,
    'fan': (
        ['input', 'min', 'max'],
        ['alarm', 'fault', 'div', 'beep', 'pulses', 'min_alarm', 'max_alarm'],
    ),
    'temp': (
        ['input', 'max', 'max_hyst', 'min', 'crit', 'crit_hyst', 'lcrit',
         'emergency', 'emergency_hyst', 'lowest', 'highest', 'min_hyst',
         'lcrit_hyst'],
        ['alarm', 'max_alarm', 'min_alarm', 'crit_alarm', 'fault', 'type',
         'offset', 'beep', 'emergency_alarm', 'lcrit_alarm'],
    ),
    'power': (
        ['average', 'average_highest', 'average_lowest', 'input',
         'input_highest', 'input_lowest', 'cap', 'cap_hyst', 'max', 'crit',
         'min', 'lcrit'],
        ['average_interval', 'alarm', 'cap_alarm', 'max_alarm', 'crit_alarm',
         'min_alarm', 'lcrit_alarm'],
    ),
    'energy': (['input'], []),
    'curr': _VOLTAGE_QUANTITIES,
    'humidity': (['input'], []),
    'vid': (['input'], []),
    'intrusion': (['alarm', 'beep'], []),
    'beep_enable': (['enable'], []),
}

# Entries of the flag block that still carry a physical unit
FLAG_BLOCK_UNITS: Dict[tuple, str] = {
    ('temp', 'offset'): '°C',
    ('power', 'average_interval'): 's',
}

DEFAULT_CONFIG = '/dev/null'

# libsensors keeps its configuration in process-global state
_active_finalizer: Optional[weakref.finalize] = None


class LMSensorsError(RuntimeError):
    """Raised when libsensors refuses an operation."""


def _text(value: Any) -> Optional[str]:
    """Decode a value coming from the binding (bytes or str) to str."""
    if value is None:
        return None
    if isinstance(value, bytes):
        return value.decode('utf-8', 'replace')
    return str(value)


def _split_type(subfeature_type: int):
    kind = FEATURE_KINDS.get((subfeature_type >> 8) & 0xff)
    flag_block = bool(subfeature_type & 0x80)
    index = subfeature_type & 0x7f
    return kind, flag_block, index


def quantity_name(subfeature_type: int) -> str:
    """
    Describe what a sub-feature type measures, as ``"<kind> <quantity>"``.

    Examples: 0x0200 -> ``"temp input"``, 0x0001 -> ``"in min"``,
    0x0180 -> ``"fan alarm"``. Unknown codes give ``"unknown"``.
    """
    kind, flag_block, index = _split_type(subfeature_type)
    if kind is None:
        return 'unknown'
    measured, flags = QUANTITIES[kind]
    names = flags if flag_block else measured
    if index >= len(names):
        return 'unknown'
    return f'{kind} {names[index]}'


def quantity_unit(subfeature_type: int) -> str:
    """Unit of a sub-feature type, empty for flags and unknown codes."""
    kind, flag_block, index = _split_type(subfeature_type)
    if kind is None:
        return ''
    measured, flags = QUANTITIES[kind]
    if flag_block:
        if index >= len(flags):
            return ''
        return FLAG_BLOCK_UNITS.get((kind, flags[index]), '')
    if index >= len(measured):
        return ''
    return FEATURE_UNITS.get(kind, '')


def _load_backend():
    import sensors
    return sensors


def library_version(backend=None) -> str:
    """Version string of the loaded libsensors."""
    if backend is None:
        backend = _load_backend()
    return _text(backend.VERSION)


def _release(backend, config_path: str) -> None:
    logger.debug('cleanup config %s', config_path)
    backend.cleanup()


class LMSensors:
    """
    A libsensors configuration and the chips it detects.

    Iterating yields ``Chip`` objects in detection order. The library is
    released by ``close()``, on context-manager exit, or when the object
    is garbage collected.

    Args:
        config_path: libsensors configuration file; ``/dev/null`` selects
            the library's built-in defaults
        chip_pattern: optional chip-name wildcard, e.g. ``coretemp-*``
        backend: the PySensors module, or an object with the same API
    """

    def __init__(self, config_path: str = DEFAULT_CONFIG,
                 chip_pattern: Optional[str] = None, backend=None):
        global _active_finalizer

        if _active_finalizer is not None and _active_finalizer.alive:
            raise LMSensorsError('Config already initialized!')

        self.config_path = str(config_path)
        self.chip_pattern = chip_pattern
        self._backend = backend if backend is not None else _load_backend()
        self._chips: 'weakref.WeakValueDictionary[str, Chip]' = weakref.WeakValueDictionary()

        logger.debug('config file %s', self.config_path)
        # Fail with the OS error before libsensors sees the path
        with open(self.config_path, 'rb'):
            pass
        try:
            self._backend.init(os.fsencode(self.config_path))
        except self._backend.SensorsError as e:
            raise LMSensorsError(str(e)) from e

        self._finalizer = weakref.finalize(self, _release, self._backend, self.config_path)
        _active_finalizer = self._finalizer

    @property
    def closed(self) -> bool:
        return not self._finalizer.alive

    def close(self) -> None:
        """Release the libsensors configuration."""
        self._finalizer()

    def __enter__(self) -> 'LMSensors':
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _check_open(self) -> None:
        if self.closed:
            raise LMSensorsError(f'Config {self.config_path} already released')

    def __iter__(self) -> Iterator['Chip']:
        self._check_open()
        if self.chip_pattern is None:
            raw_chips = self._backend.iter_detected_chips()
        else:
            raw_chips = self._backend.iter_detected_chips(self.chip_pattern)
        for raw in raw_chips:
            name = self._chip_name(raw)
            chip = self._chips.get(name)
            if chip is not None:
                logger.debug('cached chip %s', name)
            else:
                chip = Chip(self, raw, name)
                logger.debug('chip %s', name)
                self._chips[name] = chip
            yield chip

    chips = __iter__

    def _chip_name(self, raw) -> str:
        try:
            return _text(str(raw))
        except self._backend.SensorsError as e:
            raise LMSensorsError(f'chip name: {e}') from e

    def __repr__(self) -> str:
        state = 'closed' if self.closed else 'open'
        return f'<LMSensors {self.config_path!r} {state}>'


class Chip:
    """A detected hardware-monitoring chip."""

    def __init__(self, sensors: LMSensors, raw, name: str):
        self.parent = sensors
        self.raw = raw
        self.name = name
        self._features: 'weakref.WeakValueDictionary[int, Feature]' = weakref.WeakValueDictionary()

    @property
    def backend(self):
        return self.parent._backend

    @property
    def prefix(self) -> Optional[str]:
        return _text(self.raw.prefix)

    @property
    def path(self) -> Optional[str]:
        return _text(self.raw.path)

    @property
    def adapter(self) -> Optional[str]:
        """Bus description, ``None`` when libsensors has none."""
        self.parent._check_open()
        try:
            adapter = self.raw.adapter_name
        except AttributeError:
            # the binding decodes a NULL adapter name for unresolvable buses
            logger.debug('no adapter name for %s', self.name)
            return None
        return _text(adapter) if adapter else None

    def __iter__(self) -> Iterator['Feature']:
        self.parent._check_open()
        for raw in self.raw:
            feature = self._features.get(raw.number)
            if feature is not None:
                logger.debug('cached feature %s', feature.name)
            else:
                feature = Feature(self, raw)
                logger.debug('feature %s of %s', feature.name, self.name)
                self._features[raw.number] = feature
            yield feature

    features = __iter__

    def __repr__(self) -> str:
        return f'<Chip {self.name}>'


class Feature:
    """A sensor channel of a chip, e.g. ``temp1``."""

    def __init__(self, chip: Chip, raw):
        self.parent = chip
        self.raw = raw
        self.name = _text(raw.name)
        self.number = raw.number
        self.type = raw.type
        self._subfeatures: 'weakref.WeakValueDictionary[int, SubFeature]' = weakref.WeakValueDictionary()

    @property
    def label(self) -> str:
        """Configured label; libsensors falls back to the feature name."""
        self.parent.parent._check_open()
        return _text(self.raw.label)

    def __iter__(self) -> Iterator['SubFeature']:
        chip = self.parent
        chip.parent._check_open()
        for raw in self.raw:
            subfeature = self._subfeatures.get(raw.number)
            if subfeature is not None:
                logger.debug('cached subfeature %s', subfeature.name)
            else:
                subfeature = SubFeature(self, raw)
                logger.debug('subfeature %s of %s', subfeature.name, self.name)
                self._subfeatures[raw.number] = subfeature
            yield subfeature

    subfeatures = __iter__

    def __repr__(self) -> str:
        return f'<Feature {self.name}>'


class SubFeature:
    """One reading or limit of a feature, e.g. ``temp1_input``."""

    def __init__(self, feature: Feature, raw):
        self.parent = feature
        self.raw = raw
        self.name = _text(raw.name)
        self.number = raw.number
        self.type = raw.type

    @property
    def label(self) -> str:
        return self.name

    @property
    def quantity(self) -> str:
        return quantity_name(self.type)

    @property
    def unit(self) -> str:
        return quantity_unit(self.type)

    @property
    def value(self) -> float:
        """Current value, read from the chip on every access."""
        chip = self.parent.parent
        chip.parent._check_open()
        try:
            return float(self.raw.get_value())
        except chip.backend.SensorsError as e:
            raise LMSensorsError(f'{chip.name} {self.name}: {e}') from e

    def __repr__(self) -> str:
        return f'<SubFeature {self.name} ({self.quantity})>'
