#!/usr/bin/env python3
"""
Export profiles and file writers for embroidery patterns.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple, Union

from embroidery_dst import encode_dst
from embroidery_gcode import generate_gcode
from embroidery_model import (
    Pattern,
    SewingRun,
    StitchCommand,
    UnsupportedFormatError,
    pattern_bounds,
    pattern_to_json,
    validate_pattern,
)
from embroidery_pes import encode_pes

logger = logging.getLogger(__name__)

SVG_MARGIN_MM = 5.0


class ExportProfile:
    """Holds metadata about every supported export format."""

    def __init__(
        self,
        title: str,
        extension: str,
        description: str,
        encoder: Callable[[Pattern, str], bytes],
        aliases: Tuple[str, ...] = (),
    ) -> None:
        self.title = title
        self.extension = extension
        self.description = description
        self.encoder = encoder
        self.aliases = aliases

    @property
    def extensions(self) -> List[str]:
        return [self.extension, *self.aliases]

    def write(self, pattern: Pattern, outfile: Path, title: str) -> None:
        outfile.write_bytes(self.encoder(pattern, title))


# Export writers -------------------------------------------------------------
def _encode_gcode(pattern: Pattern, title: str) -> bytes:
    return generate_gcode(pattern, title).encode("ascii", errors="replace")


def _encode_json(pattern: Pattern, title: str) -> bytes:
    return pattern_to_json(pattern, title=title).encode("utf-8")


def _fmt(value: float) -> str:
    text = f"{value:.3f}".rstrip("0").rstrip(".")
    if text == "-0":
        text = "0"
    return text


def render_svg(pattern: Pattern, title: str = "Untitled", show_stitches: bool = True) -> str:
    """Vector preview: one path per sewing run in its thread colour."""
    validate_pattern(pattern)
    min_x, min_y, max_x, max_y = pattern_bounds(pattern)
    left = min_x - SVG_MARGIN_MM
    top = min_y - SVG_MARGIN_MM
    width = (max_x - min_x) + 2 * SVG_MARGIN_MM
    height = (max_y - min_y) + 2 * SVG_MARGIN_MM

    lines: List[str] = [
        '<?xml version="1.0" encoding="UTF-8"?>',
        f'<svg xmlns="http://www.w3.org/2000/svg" width="{_fmt(width)}mm" height="{_fmt(height)}mm" '
        f'viewBox="{_fmt(left)} {_fmt(top)} {_fmt(width)} {_fmt(height)}">',
        f"<!-- TITLE: {title} -->",
        f"<!-- STITCH_COUNT: {sum(t.stitch_count() for t in pattern.threads)} -->",
    ]
    for index, thread in enumerate(pattern.threads):
        runs = [run for run in thread.sewing_runs() if run.stitches]
        if not runs:
            continue
        lines.append(f'<g id="thread-{index}">')
        for run in runs:
            lines.append(_run_path(run, thread.hex_color, thread.weight))
            if show_stitches:
                for stitch in run.stitches:
                    if stitch.command is None:
                        lines.append(f'<circle cx="{_fmt(stitch.x)}" cy="{_fmt(stitch.y)}" r="0.3" fill="#ff0000"/>')
        lines.append("</g>")
    lines.append("</svg>")
    return "\n".join(lines) + "\n"


def _run_path(run: SewingRun, color: str, weight: float) -> str:
    parts: List[str] = []
    for stitch in run.stitches:
        op = "M" if not parts or stitch.command == StitchCommand.JUMP else "L"
        parts.append(f"{op}{_fmt(stitch.x)},{_fmt(stitch.y)}")
    return (
        f'<path d="{" ".join(parts)}" fill="none" stroke="{color}" '
        f'stroke-width="{_fmt(max(weight, 0.1))}" stroke-linecap="round" stroke-linejoin="round"/>'
    )


def _encode_svg(pattern: Pattern, title: str) -> bytes:
    return render_svg(pattern, title).encode("utf-8")


EXPORT_PROFILES: Dict[str, ExportProfile] = {
    "DST": ExportProfile(
        title="Tajima DST",
        extension="dst",
        description="Binary machine embroidery file",
        encoder=encode_dst,
    ),
    "GCODE": ExportProfile(
        title="G-code",
        extension="gcode",
        description="Pen plotter toolpath (tool down/up per stitch)",
        encoder=_encode_gcode,
        aliases=("nc",),
    ),
    "JSON": ExportProfile(
        title="Stitch JSON",
        extension="json",
        description="Threads, runs and stitches with statistics",
        encoder=_encode_json,
    ),
    "PES": ExportProfile(
        title="Brother PES",
        extension="pes",
        description="Binary machine embroidery file (PES version 1 with PEC stitches)",
        encoder=encode_pes,
    ),
    "SVG": ExportProfile(
        title="SVG preview",
        extension="svg",
        description="Vector stitch preview",
        encoder=_encode_svg,
    ),
}


def profile_for_path(filename: Union[str, Path]) -> ExportProfile:
    suffix = Path(filename).suffix.lower().lstrip(".")
    for profile in EXPORT_PROFILES.values():
        if suffix in profile.extensions:
            return profile
    supported = ", ".join(sorted(ext for p in EXPORT_PROFILES.values() for ext in p.extensions))
    raise UnsupportedFormatError(f"Unsupported export format '.{suffix}' (supported: {supported})")


def export_pattern(pattern: Pattern, filename: Union[str, Path], title: str = "Untitled") -> Optional[Path]:
    """Write ``pattern`` using the profile matching the file extension.

    Returns the written path, or None when there is nothing to stitch.
    """
    profile = profile_for_path(filename)
    validate_pattern(pattern)
    if pattern.is_empty():
        logger.warning("No embroidery pattern to export to %s", filename)
        return None

    outfile = Path(filename)
    profile.write(pattern, outfile, title)
    logger.info("Exported %s (%s, %d stitches)", outfile, profile.title, pattern.stitch_count)
    return outfile
