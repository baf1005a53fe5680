#!/usr/bin/env python3
"""
Tajima DST encoder (plus a small decoder used for verification).

Coordinates are written in 0.1 mm units relative to the centre of the
pattern's bounding box, with the Y axis pointing up as the format expects.
Each 3-byte record carries a balanced-ternary delta of at most 121 units
per axis; longer moves are split into jump records first.
"""

from __future__ import annotations

import enum
import logging
import math
from typing import Dict, List, Optional, Tuple, Union

from embroidery_model import Pattern, Stitch, StitchCommand, iter_export_stitches, validate_pattern

logger = logging.getLogger(__name__)

HEADER_SIZE = 512
MAX_DELTA = 121
UNITS_PER_MM = 10
TRIM_JUMPS: Tuple[Tuple[int, int], ...] = ((3, 3), (3, -6), (-6, 3))

# weight -> (byte index, bit for +weight, bit for -weight)
_X_BITS = {81: (2, 2, 3), 27: (1, 2, 3), 9: (0, 2, 3), 3: (1, 0, 1), 1: (0, 0, 1)}
_Y_BITS = {81: (2, 5, 4), 27: (1, 5, 4), 9: (0, 5, 4), 3: (1, 7, 6), 1: (0, 7, 6)}
_WEIGHTS = (81, 27, 9, 3, 1)

_MARKER_BITS = 0x03
_JUMP_BIT = 0x80
_COLOR_CHANGE_BYTE = 0xC3
_END_BYTE = 0xF3

_NUMERIC_FIELDS = ("ST", "CO", "+X", "-X", "+Y", "-Y", "AX", "AY", "MX", "MY")


class RecordKind(str, enum.Enum):
    STITCH = "stitch"
    JUMP = "jump"
    COLOR_CHANGE = "colorChange"
    END = "end"


def _ternary_digits(value: int) -> Dict[int, int]:
    digits: Dict[int, int] = {}
    for weight in _WEIGHTS:
        half = (weight - 1) // 2
        if value > half:
            digits[weight] = 1
            value -= weight
        elif value < -half:
            digits[weight] = -1
            value += weight
    return digits


def encode_record(dx: int, dy: int, kind: RecordKind = RecordKind.STITCH) -> bytes:
    """Pack one record. ``dx``/``dy`` are already in DST orientation."""
    if kind == RecordKind.COLOR_CHANGE:
        return bytes((0, 0, _COLOR_CHANGE_BYTE))
    if kind == RecordKind.END:
        return bytes((0, 0, _END_BYTE))
    if abs(dx) > MAX_DELTA or abs(dy) > MAX_DELTA:
        raise ValueError(f"Delta ({dx}, {dy}) exceeds +/-{MAX_DELTA} units")

    record = [0, 0, _MARKER_BITS]
    for table, value in ((_X_BITS, dx), (_Y_BITS, dy)):
        for weight, sign in _ternary_digits(int(value)).items():
            index, plus_bit, minus_bit = table[weight]
            record[index] |= 1 << (plus_bit if sign > 0 else minus_bit)
    if kind == RecordKind.JUMP:
        record[2] |= _JUMP_BIT
    return bytes(record)


def decode_record(data: bytes) -> Tuple[int, int, RecordKind]:
    b0, b1, b2 = data[0], data[1], data[2]
    if b2 & 0x40:
        if (b2 & 0x30) == 0x30:
            return 0, 0, RecordKind.END
        return 0, 0, RecordKind.COLOR_CHANGE

    record = (b0, b1, b2)
    dx = 0
    dy = 0
    for weight in _WEIGHTS:
        index, plus_bit, minus_bit = _X_BITS[weight]
        if record[index] & (1 << plus_bit):
            dx += weight
        if record[index] & (1 << minus_bit):
            dx -= weight
        index, plus_bit, minus_bit = _Y_BITS[weight]
        if record[index] & (1 << plus_bit):
            dy += weight
        if record[index] & (1 << minus_bit):
            dy -= weight
    kind = RecordKind.JUMP if b2 & _JUMP_BIT else RecordKind.STITCH
    return dx, dy, kind


def decode_records(data: bytes) -> List[Tuple[int, int, RecordKind]]:
    """Decode every record of a DST body (the header is skipped when present)."""
    if data[:3] == b"LA:" and len(data) >= HEADER_SIZE:
        data = data[HEADER_SIZE:]
    records = []
    for offset in range(0, len(data) - len(data) % 3, 3):
        records.append(decode_record(data[offset : offset + 3]))
    return records


def parse_header(data: bytes) -> Dict[str, Union[str, int]]:
    text = data[:HEADER_SIZE].split(b"\x1a", 1)[0].decode("latin-1")
    fields: Dict[str, Union[str, int]] = {}
    for line in text.split("\r"):
        if ":" not in line:
            continue
        key, value = line.split(":", 1)
        key = key.strip()
        if key in _NUMERIC_FIELDS:
            fields[key] = int(value.replace(" ", ""))
        elif key == "LA":
            fields[key] = value.rstrip()
        else:
            fields[key] = value
    return fields


def to_units(value_mm: float) -> int:
    """Millimetres to 0.1 mm units, rounding halves up."""
    return int(math.floor(value_mm * UNITS_PER_MM + 0.5))


class DstEncoder:
    """Stateful record writer tracking the needle position in DST units."""

    def __init__(self) -> None:
        self.data = bytearray()
        self.current_x = 0
        self.current_y = 0
        self.stitch_count = 0
        self.color_changes = 0

    def _emit(self, dx: int, dy: int, kind: RecordKind) -> None:
        self.data += encode_record(dx, dy, kind)
        self.current_x += dx
        self.current_y += dy
        self.stitch_count += 1

    def move(self, x: int, y: int, kind: RecordKind) -> None:
        dx = x - self.current_x
        dy = y - self.current_y
        while abs(dx) > MAX_DELTA or abs(dy) > MAX_DELTA:
            step_x = max(-MAX_DELTA, min(MAX_DELTA, dx))
            step_y = max(-MAX_DELTA, min(MAX_DELTA, dy))
            self._emit(step_x, step_y, RecordKind.JUMP)
            dx -= step_x
            dy -= step_y
        if dx or dy:
            self._emit(dx, dy, kind)

    def trim(self, x: int, y: int) -> None:
        self.move(x, y, RecordKind.JUMP)
        for dx, dy in TRIM_JUMPS:
            self._emit(dx, dy, RecordKind.JUMP)

    def color_change(self) -> None:
        self.data += encode_record(0, 0, RecordKind.COLOR_CHANGE)
        self.color_changes += 1

    def end(self) -> None:
        self.data += encode_record(0, 0, RecordKind.END)


def _centered_units(stitches: List[Stitch]) -> List[Tuple[int, int, Optional[StitchCommand]]]:
    xs = [stitch.x for stitch in stitches]
    ys = [stitch.y for stitch in stitches]
    center_x = (min(xs) + max(xs)) / 2.0
    center_y = (min(ys) + max(ys)) / 2.0
    return [(to_units(s.x - center_x), to_units(center_y - s.y), s.command) for s in stitches]


def _signed(value: int) -> str:
    return f"{'-' if value < 0 else '+'}{abs(value):5d}"


def build_header(
    title: str,
    stitch_count: int,
    color_changes: int,
    extents: Tuple[int, int, int, int],
    final_position: Tuple[int, int],
) -> bytes:
    """Fixed 512-byte ASCII header, EOF marker after the text, space padded."""
    min_x, min_y, max_x, max_y = extents
    label = title[:16].ljust(16)
    text = (
        f"LA:{label}\r"
        f"ST:{stitch_count:7d}\r"
        f"CO:{color_changes:3d}\r"
        f"+X:{max(0, max_x):5d}\r"
        f"-X:{abs(min(0, min_x)):5d}\r"
        f"+Y:{max(0, max_y):5d}\r"
        f"-Y:{abs(min(0, min_y)):5d}\r"
        f"AX:{_signed(final_position[0])}\r"
        f"AY:{_signed(final_position[1])}\r"
        f"MX:+{0:5d}\r"
        f"MY:+{0:5d}\r"
        "PD:******\r"
    )
    raw = text.encode("ascii", errors="replace") + b"\x1a"
    return raw.ljust(HEADER_SIZE, b" ")


def encode_dst(pattern: Pattern, title: str = "Untitled") -> bytes:
    """Serialize a pattern to DST bytes. The pattern is not modified."""
    validate_pattern(pattern)
    stitches = list(iter_export_stitches(pattern))
    encoder = DstEncoder()
    extents = (0, 0, 0, 0)

    if stitches:
        points = _centered_units(stitches)
        xs = [x for x, _y, _cmd in points]
        ys = [y for _x, y, _cmd in points]
        extents = (min(xs), min(ys), max(xs), max(ys))
        for index, (x, y, command) in enumerate(points):
            if command == StitchCommand.COLOR_CHANGE:
                encoder.color_change()
            elif command == StitchCommand.TRIM:
                encoder.trim(x, y)
            elif index == 0 or command == StitchCommand.JUMP:
                encoder.move(x, y, RecordKind.JUMP)
            else:
                encoder.move(x, y, RecordKind.STITCH)
    encoder.end()

    logger.debug(
        "DST: %d records, %d color changes, extents %s",
        encoder.stitch_count,
        encoder.color_changes,
        extents,
    )
    header = build_header(
        title,
        encoder.stitch_count,
        encoder.color_changes,
        extents,
        (encoder.current_x, encoder.current_y),
    )
    return header + bytes(encoder.data)
