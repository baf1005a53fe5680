#!/usr/bin/env python3
"""
Brother PES encoder (version 1, PEC payload only).

The file is the ``#PES0001`` signature and an offset to a PEC section; the
PEC section carries the label, the thread palette as indices into the
fixed PEC colour chart, the stitch block and one blank preview icon per
thread plus one for the whole design.

Coordinates are 0.1 mm units relative to the centre of the bounding box,
with the Y axis pointing down as in the source drawing. Stitches use the
2-byte short form when both deltas fit in 7 bits, otherwise the 4-byte
long form; jumps and trims are always long form with their flag set.
"""

from __future__ import annotations

import enum
import logging
from typing import Dict, List, Optional, Tuple, Union

from embroidery_dst import to_units
from embroidery_model import Color, Pattern, Stitch, StitchCommand, iter_export_stitches, validate_pattern

logger = logging.getLogger(__name__)

PES_SIGNATURE = b"#PES0001"
PEC_OFFSET = 22
PEC_LABEL_LENGTH = 16
PEC_PALETTE_PADDING = 463
ICON_WIDTH = 48
ICON_HEIGHT = 38
MAX_DELTA = 2047

_SHORT_MASK = 0x7F
_LONG_FLAG = 0x8000
_JUMP_FLAG = 0x1000
_TRIM_FLAG = 0x2000
_COLOR_CHANGE = b"\xfe\xb0"
_END_BYTE = 0xFF

PEC_COLORS: Tuple[int, ...] = (
    0x1A0A94, 0x0F75FF, 0x00934C, 0xBABDFE, 0xEC0000, 0xE4995A, 0xCC48AB, 0xFDC4FA,
    0xDD84CD, 0x6BD38A, 0xE4A945, 0xFFBD42, 0xFFE600, 0x6CD900, 0xC1A941, 0xB5AD97,
    0xBA9C5F, 0xFAF59E, 0x808080, 0x000000, 0x001CDF, 0xDF00B8, 0x626262, 0x69260D,
    0xFF0060, 0xBF8200, 0xF39178, 0xFF6805, 0xF0F0F0, 0xC832CD, 0xB0BF9B, 0x65BFEB,
    0xFFBA04, 0xFFF06C, 0xFECA15, 0xF38101, 0x37A923, 0x23465F, 0xA6A695, 0xCEBFA6,
    0x96AA02, 0xFFE3C6, 0xFF99D7, 0x007004, 0xEDCCFB, 0xC089D8, 0xE7D9B4, 0xE90E86,
    0xCF6829, 0x408615, 0xDB1797, 0xFFA704, 0xB9FFFF, 0x228927, 0xB612CD, 0x00AA00,
    0xFEA9DC, 0xFED510, 0x0097DF, 0xFFFF84, 0xCFE774, 0xFFC864, 0xFFC8C8, 0xFFC8C8,
)


class MoveKind(str, enum.Enum):
    STITCH = "stitch"
    JUMP = "jump"
    TRIM = "trim"


def nearest_pec_color(color: Color) -> int:
    """1-based index of the closest chart colour by squared RGB distance."""
    r, g, b = (int(c) for c in color[:3])
    best_index = 0
    best_distance = None
    for index, value in enumerate(PEC_COLORS):
        r0, g0, b0 = (value >> 16) & 0xFF, (value >> 8) & 0xFF, value & 0xFF
        dist = (r - r0) ** 2 + (g - g0) ** 2 + (b - b0) ** 2
        if best_distance is None or dist < best_distance:
            best_index, best_distance = index, dist
    return best_index + 1


def _long_form(value: int, flag: int = 0) -> bytes:
    word = (value & 0x0FFF) | _LONG_FLAG | flag
    return word.to_bytes(2, "big")


def encode_move(dx: int, dy: int, kind: MoveKind = MoveKind.STITCH) -> bytes:
    """Pack one relative move."""
    if abs(dx) > MAX_DELTA or abs(dy) > MAX_DELTA:
        raise ValueError(f"Delta ({dx}, {dy}) exceeds +/-{MAX_DELTA} units")
    if kind == MoveKind.STITCH and -64 < dx < 63 and -64 < dy < 63:
        return bytes((dx & _SHORT_MASK, dy & _SHORT_MASK))
    flag = {MoveKind.STITCH: 0, MoveKind.JUMP: _JUMP_FLAG, MoveKind.TRIM: _TRIM_FLAG}[kind]
    return _long_form(dx, flag) + _long_form(dy, flag)


class PecEncoder:
    """Stateful stitch block writer tracking the needle position in PEC units."""

    def __init__(self) -> None:
        self.data = bytearray()
        self.current_x = 0
        self.current_y = 0
        self.stitch_count = 0
        self.color_changes = 0

    def _emit(self, dx: int, dy: int, kind: MoveKind) -> None:
        self.data += encode_move(dx, dy, kind)
        self.current_x += dx
        self.current_y += dy
        self.stitch_count += 1

    def move(self, x: int, y: int, kind: MoveKind) -> None:
        dx = x - self.current_x
        dy = y - self.current_y
        while abs(dx) > MAX_DELTA or abs(dy) > MAX_DELTA:
            step_x = max(-MAX_DELTA, min(MAX_DELTA, dx))
            step_y = max(-MAX_DELTA, min(MAX_DELTA, dy))
            self._emit(step_x, step_y, MoveKind.JUMP)
            dx -= step_x
            dy -= step_y
        if dx or dy:
            self._emit(dx, dy, kind)

    def trim(self) -> None:
        self._emit(0, 0, MoveKind.TRIM)

    def color_change(self) -> None:
        # The trailing byte alternates between 2 and 1 on successive changes.
        self.data += _COLOR_CHANGE + bytes((2 if self.color_changes % 2 == 0 else 1,))
        self.color_changes += 1

    def end(self) -> None:
        self.data.append(_END_BYTE)


def blank_icon() -> bytes:
    """Monochrome 48x38 preview holding only a rounded frame."""
    stride = ICON_WIDTH // 8
    edge = bytes(stride)
    top = bytes((0xF0,) + (0xFF,) * (stride - 2) + (0x0F,))
    rows = [edge, top, bytes((0x08,) + bytes(stride - 2) + (0x10,)), bytes((0x04,) + bytes(stride - 2) + (0x20,))]
    side = bytes((0x02,) + bytes(stride - 2) + (0x40,))
    return b"".join(rows + [side] * (ICON_HEIGHT - 2 * len(rows)) + rows[::-1])


def build_pec_header(title: str, palette: List[int]) -> bytes:
    """Label, icon geometry and palette indices, padded to the fixed PEC header size."""
    label = title[:PEC_LABEL_LENGTH].ljust(PEC_LABEL_LENGTH)
    header = bytearray(f"LA:{label}\r".encode("ascii", errors="replace"))
    header += b" " * 12 + b"\xff\x00"
    header += bytes((ICON_WIDTH // 8, ICON_HEIGHT))
    header += b" " * 12
    header.append(len(palette) - 1)
    header += bytes(palette)
    header += b" " * (PEC_PALETTE_PADDING - len(palette))
    return bytes(header)


def build_stitch_block(width: int, height: int, body: bytes) -> bytes:
    """Wrap encoded stitches with the block length, design size and fixed fields."""
    fields = b"\x31\xff\xf0" + width.to_bytes(2, "little") + height.to_bytes(2, "little")
    fields += (0x1E0).to_bytes(2, "little") + (0x1B0).to_bytes(2, "little")
    length = 2 + 3 + len(fields) + len(body)
    return b"\x00\x00" + length.to_bytes(3, "little") + fields + body


def read_pec_header(data: bytes) -> Dict[str, Union[str, int, List[int]]]:
    """Decode the label and palette of a PES file written by :func:`encode_pes`."""
    offset = int.from_bytes(data[8:12], "little")
    pec = data[offset:]
    label = pec[3 : 3 + PEC_LABEL_LENGTH].decode("latin-1").rstrip()
    count = pec[48] + 1
    return {
        "signature": data[:8].decode("latin-1"),
        "LA": label,
        "colors": list(pec[49 : 49 + count]),
    }


def _centered_units(stitches: List[Stitch]) -> List[Tuple[int, int, Optional[StitchCommand]]]:
    xs = [stitch.x for stitch in stitches]
    ys = [stitch.y for stitch in stitches]
    center_x = (min(xs) + max(xs)) / 2.0
    center_y = (min(ys) + max(ys)) / 2.0
    return [(to_units(s.x - center_x), to_units(s.y - center_y), s.command) for s in stitches]


def _palette(pattern: Pattern) -> List[int]:
    colors = [thread.color for thread in pattern.threads if thread.stitch_count()]
    if not colors:
        colors = [pattern.threads[0].color if pattern.threads else (0, 0, 0)]
    return [nearest_pec_color(color) for color in colors]


def encode_pes(pattern: Pattern, title: str = "Untitled") -> bytes:
    """Serialize a pattern to PES bytes. The pattern is not modified."""
    validate_pattern(pattern)
    stitches = list(iter_export_stitches(pattern))
    encoder = PecEncoder()
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
                encoder.move(x, y, MoveKind.JUMP)
                encoder.trim()
            elif index == 0 or command == StitchCommand.JUMP:
                encoder.move(x, y, MoveKind.JUMP)
            else:
                encoder.move(x, y, MoveKind.STITCH)
    encoder.end()

    palette = _palette(pattern)
    logger.debug(
        "PES: %d moves, %d color changes, palette %s, extents %s",
        encoder.stitch_count,
        encoder.color_changes,
        palette,
        extents,
    )
    width = extents[2] - extents[0]
    height = extents[3] - extents[1]
    pec = build_pec_header(title, palette) + build_stitch_block(width, height, bytes(encoder.data))
    pec += blank_icon() * (len(palette) + 1)
    head = PES_SIGNATURE + PEC_OFFSET.to_bytes(4, "little")
    return head + bytes(PEC_OFFSET - len(head)) + pec
