"""
In-memory stand-in for the PySensors module, passed to LMSensors(backend=...)
so the tests need neither libsensors nor sensor hardware.

Object shapes follow PySensors: chips iterate their features (setting
``feature.chip``), features iterate their sub-features, and a sub-feature
reads its own value with ``get_value()``.
"""

import fnmatch


class SensorsError(Exception):
    pass


class FakeChip:
    def __init__(self, name, adapter=None, path=None, features=(), adapter_fails=False):
        self.name = name
        self.prefix = name.split('-')[0].encode()
        self.path = path.encode() if path else None
        self.adapter = adapter
        self.adapter_fails = adapter_fails
        self.features = list(features)

    @property
    def adapter_name(self):
        if self.adapter_fails:
            # what the binding does when libsensors returns NULL
            return None.decode('utf-8')
        return self.adapter

    def __str__(self):
        if self.name is None:
            raise SensorsError('Wildcard found in chip name')
        return self.name

    def __iter__(self):
        for feature in self.features:
            feature.chip = self
            yield feature


class FakeFeature:
    def __init__(self, number, name, label=None, type=0, subfeatures=()):
        self.number = number
        self.name = name.encode()
        self._label = label if label is not None else name
        self.type = type
        self.subfeatures = list(subfeatures)
        self.chip = None

    @property
    def label(self):
        if self.chip is None:
            raise AttributeError('feature has no chip')
        return self._label

    def __iter__(self):
        return iter(self.subfeatures)


class FakeSubFeature:
    def __init__(self, number, name, type, value):
        self.number = number
        self.name = name.encode()
        self.type = type
        self.value = value

    def get_value(self):
        if isinstance(self.value, Exception):
            raise self.value
        return self.value


class FakeBackend:
    """Mimics the module-level API of PySensors."""

    SensorsError = SensorsError
    VERSION = '3.6.0'

    def __init__(self, chips=(), fail_init=False):
        self.chips = list(chips)
        self.fail_init = fail_init
        self.init_calls = []
        self.cleanup_calls = 0

    def init(self, filename=None):
        # handed to fopen() as a c_char_p
        if filename is not None and not isinstance(filename, bytes):
            raise TypeError(f'argument 1: wrong type {type(filename).__name__}')
        self.init_calls.append(filename)
        if self.fail_init:
            raise SensorsError('Parse error in configuration file')

    def cleanup(self):
        self.cleanup_calls += 1

    def iter_detected_chips(self, chip_name='*-*'):
        return iter([c for c in self.chips
                     if c.name is None or fnmatch.fnmatch(c.name, chip_name)])


def sample_backend(**kwargs):
    """Two chips: coretemp with a labelled temperature, an ISA superio chip."""
    coretemp = FakeChip(
        'coretemp-isa-0000',
        adapter='ISA adapter',
        path='/sys/class/hwmon/hwmon1',
        features=[
            FakeFeature(0, 'temp1', label='Package id 0', type=0x02, subfeatures=[
                FakeSubFeature(0, 'temp1_input', 0x200, 42.0),
                FakeSubFeature(1, 'temp1_max', 0x201, 80.0),
                FakeSubFeature(2, 'temp1_crit', 0x204, 100.0),
                FakeSubFeature(3, 'temp1_crit_alarm', 0x283, 0.0),
            ]),
        ],
    )
    superio = FakeChip(
        'nct6798-isa-0290',
        adapter=None,
        features=[
            FakeFeature(0, 'in0', type=0x00, subfeatures=[
                FakeSubFeature(4, 'in0_input', 0x000, 1.2),
                FakeSubFeature(5, 'in0_min', 0x001, 0.0),
            ]),
            FakeFeature(1, 'fan1', type=0x01, subfeatures=[
                FakeSubFeature(6, 'fan1_input', 0x100, 1100.0),
                FakeSubFeature(7, 'fan1_alarm', 0x180, 1.0),
            ]),
        ],
    )
    return FakeBackend([coretemp, superio], **kwargs)
