#!/usr/bin/env python3
"""
G-code toolpath writer: each needle penetration becomes a tool-down /
tool-up pair so the pattern can be run on a pen plotter. Jumps are a single
tool-up move, and the home moves at both ends also lift the tool.
"""

from __future__ import annotations

import logging
from typing import List

from embroidery_model import Pattern, StitchCommand, iter_export_stitches, validate_pattern

logger = logging.getLogger(__name__)

Z_DOWN = 0.0
Z_UP = 1.0


def _fmt(value: float) -> str:
    return f"{value + 0.0:.3f}"


def _move(x: float, y: float, z: float) -> str:
    return f"G0 X{_fmt(x)} Y{_fmt(y)} Z{z:.1f}"


def generate_gcode(pattern: Pattern, title: str = "Untitled") -> str:
    validate_pattern(pattern)
    stitches = list(iter_export_stitches(pattern))
    sewn = [stitch for stitch in stitches if stitch.command is None]

    if stitches:
        xs = [stitch.x for stitch in stitches]
        ys = [stitch.y for stitch in stitches]
        min_x, max_x, min_y, max_y = min(xs), max(xs), min(ys), max(ys)
    else:
        min_x = max_x = min_y = max_y = 0.0

    lines: List[str] = [
        f"(TITLE:{title})",
        f"(EXTENTS_BOTTOM:{_fmt(min_y)})",
        f"(EXTENTS_RIGHT:{_fmt(max_x)})",
        f"(EXTENTS_TOP:{_fmt(max_y)})",
        f"(EXTENTS_LEFT:{_fmt(min_x)})",
        f"(EXTENTS_HEIGHT:{_fmt(max_y - min_y)})",
        f"(EXTENTS_WIDTH:{_fmt(max_x - min_x)})",
        "G90 (use absolute coordinates)",
        "G21 (coordinates will be specified in millimeters)",
        f"(STITCH_COUNT:{len(sewn)})",
        _move(0.0, 0.0, Z_UP),
    ]
    for stitch in stitches:
        if stitch.command == StitchCommand.TRIM:
            lines.append("(TRIM)")
        elif stitch.command == StitchCommand.COLOR_CHANGE:
            lines.append("(COLOR_CHANGE)")
        elif stitch.command == StitchCommand.JUMP:
            lines.append(_move(stitch.x, stitch.y, Z_UP))
        else:
            lines.append(_move(stitch.x, stitch.y, Z_DOWN))
            lines.append(_move(stitch.x, stitch.y, Z_UP))
    lines.append(_move(0.0, 0.0, Z_UP))
    lines.append("M30")

    logger.debug("G-code: %d stitches, %d lines", len(sewn), len(lines))
    return "\n".join(lines) + "\n"
