#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Sensors JSON — dump the libsensors chip hierarchy as one JSON document.

Output layout:
  {"<chip>": {"Adapter": ..., "<feature>": {"label": ..., "<subfeature>":
      {"quantity": ..., "unit": ..., "value": ...}}}}
"Adapter", "label" and "unit" are only written when present.

Version: 0.2.0
"""

import io
import sys
import json
import math
import re
import argparse
import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Any, List, Optional, TextIO

from lmsensors import DEFAULT_CONFIG, LMSensors, LMSensorsError, library_version

__version__ = "0.2.0"

logger = logging.getLogger(__name__)

_QUANTITY_PREFIX = re.compile(r'^.* ')


def reduce_quantity(description: str) -> str:
    """Keep only the last word of a quantity description ("temp input" -> "input")."""
    return _QUANTITY_PREFIX.sub('', description, count=1)


def _encode(value: Any) -> str:
    if isinstance(value, float) and not math.isfinite(value):
        return 'null'
    return json.dumps(value, ensure_ascii=False)


class JsonWriter:
    """
    Streaming JSON object writer.

    Keeps one "an entry was already written at this level" flag per open
    object, so separators never depend on which optional fields the caller
    chose to emit.
    """

    def __init__(self, stream: TextIO, indent: Optional[int] = None):
        self.stream = stream
        self.indent = indent
        self._levels: List[bool] = []
        self._complete = False

    @property
    def depth(self) -> int:
        return len(self._levels)

    def _newline(self, depth: int) -> None:
        if self.indent is not None:
            self.stream.write('\n' + ' ' * (self.indent * depth))

    def _begin_entry(self, key: Optional[str]) -> None:
        if not self._levels:
            if key is not None:
                raise ValueError(f'key {key!r} outside of an object')
            if self._complete:
                raise ValueError('document already complete')
            return
        if key is None:
            raise ValueError('object entries need a key')
        if self._levels[-1]:
            self.stream.write(',')
        self._levels[-1] = True
        self._newline(self.depth)
        self.stream.write(_encode(str(key)))
        self.stream.write(':' if self.indent is None else ': ')

    def begin_object(self, key: Optional[str] = None) -> None:
        self._begin_entry(key)
        self.stream.write('{')
        self._levels.append(False)

    def end_object(self) -> None:
        if not self._levels:
            raise ValueError('no open object')
        had_entries = self._levels.pop()
        if had_entries:
            self._newline(self.depth)
        self.stream.write('}')
        if not self._levels:
            self._complete = True

    def field(self, key: str, value: Any) -> None:
        self._begin_entry(key)
        self.stream.write(_encode(value))

    @contextmanager
    def nested(self, key: Optional[str] = None):
        """Write an object; it is closed only if the body completes."""
        self.begin_object(key)
        yield self
        self.end_object()

    def close(self) -> None:
        if self._levels:
            raise ValueError(f'{self.depth} object(s) left open')


def dump_sensors(sensors, stream: TextIO, indent: Optional[int] = None) -> None:
    """
    Write the chip -> feature -> sub-feature hierarchy of ``sensors`` to
    ``stream`` as a single JSON object.

    ``sensors`` is any iterable of chips shaped like ``lmsensors.Chip``.
    Errors from the hierarchy propagate; the document is then incomplete.
    """
    writer = JsonWriter(stream, indent)
    with writer.nested():
        for chip in sensors:
            with writer.nested(chip.name):
                adapter = chip.adapter
                if adapter is not None:
                    writer.field('Adapter', adapter)
                for feature in chip:
                    with writer.nested(feature.name):
                        label = feature.label
                        if label != feature.name:
                            writer.field('label', label)
                        for sub in feature:
                            with writer.nested(sub.label):
                                writer.field('quantity', reduce_quantity(sub.quantity))
                                unit = sub.unit
                                if unit:
                                    writer.field('unit', unit)
                                writer.field('value', float(sub.value))
    writer.close()


def dumps_sensors(sensors, indent: Optional[int] = None) -> str:
    """Same as dump_sensors, returned as a string."""
    buf = io.StringIO()
    dump_sensors(sensors, buf, indent=indent)
    return buf.getvalue()


def _format_value(value: float, unit: str) -> str:
    if unit == 'RPM':
        return f'{value:.0f} {unit}'
    if unit:
        return f'{value:+.1f} {unit}'
    return f'{value:g}'


def print_report(sensors, stream: Optional[TextIO] = None) -> None:
    """Print a human-readable listing similar to the `sensors` command."""
    out = stream if stream is not None else sys.stdout
    for chip in sensors:
        print(chip.name, file=out)
        adapter = chip.adapter
        if adapter is not None:
            print(f'Adapter: {adapter}', file=out)
        for feature in chip:
            reading = None
            limits = []
            alarms = []
            for sub in feature:
                quantity = reduce_quantity(sub.quantity)
                value = sub.value
                if quantity == 'input' and reading is None:
                    reading = _format_value(value, sub.unit)
                elif quantity.endswith('alarm') or quantity == 'fault':
                    if value:
                        alarms.append(quantity.upper())
                elif sub.unit:
                    limits.append(f'{quantity} = {_format_value(value, sub.unit)}')
            name = f"{feature.label}:"
            line = f"{name:<16}{reading or 'N/A':>12}"
            if limits:
                line += f"  ({', '.join(limits)})"
            if alarms:
                line += '  ' + ' '.join(alarms)
            print(line, file=out)
        print(file=out)


def to_json(sensors, path: Path, indent: Optional[int] = 2) -> bool:
    """Save the JSON document to a file"""
    text = dumps_sensors(sensors, indent=indent)
    try:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text + '\n', encoding='utf-8')
        return True
    except OSError as e:
        print(f"Error saving JSON: {e}", file=sys.stderr)
        return False


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point"""
    parser = argparse.ArgumentParser(
        prog='sensors-json',
        description=f'Sensors JSON v{__version__} - dump libsensors readings as JSON',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog='''
Examples:
  sensors-json
  sensors-json --indent 2
  sensors-json -c /etc/sensors3.conf --chip 'coretemp-*'
  sensors-json -o ./results/sensors.json
  sensors-json --report
        '''
    )
    parser.add_argument(
        '--version',
        action='store_true',
        help='Print program and libsensors versions and exit'
    )
    parser.add_argument(
        '-c', '--config',
        type=str,
        default=DEFAULT_CONFIG,
        help=f'libsensors configuration file (default: {DEFAULT_CONFIG}, library defaults)'
    )
    parser.add_argument(
        '--chip',
        type=str,
        default=None,
        help='Only dump chips matching this name pattern, e.g. coretemp-*'
    )
    parser.add_argument(
        '--indent',
        type=int,
        default=None,
        help='Pretty-print with this many spaces per level (default: compact)'
    )
    parser.add_argument(
        '-o', '--output',
        type=Path,
        default=None,
        help='Write the JSON document to this file instead of stdout'
    )
    parser.add_argument(
        '--report',
        action='store_true',
        help='Print a human-readable report instead of JSON'
    )
    parser.add_argument(
        '-v', '--verbose',
        action='store_true',
        help='Debug logging on stderr'
    )

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format='%(levelname)s %(name)s: %(message)s',
        stream=sys.stderr
    )

    try:
        if args.version:
            print(f'sensors-json {__version__} (libsensors {library_version()})')
            return 0

        with LMSensors(args.config, chip_pattern=args.chip) as sensors:
            if args.report:
                print_report(sensors)
                return 0

            if args.output:
                indent = args.indent if args.indent is not None else 2
                if not to_json(sensors, args.output, indent=indent):
                    print('Could not save JSON (permissions?)', file=sys.stderr)
                    return 1
                logger.debug('saved %s', args.output)
                print(f'Saved JSON to {args.output}')
                return 0

            dump_sensors(sensors, sys.stdout, indent=args.indent)
            sys.stdout.write('\n')
    except (LMSensorsError, OSError) as e:
        print(f'Error: {e}', file=sys.stderr)
        return 1

    return 0


if __name__ == '__main__':
    sys.exit(main())
