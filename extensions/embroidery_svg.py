#!/usr/bin/env python3
"""
SVG input: flatten document shapes with inkex and replay them into an
EmbroideryRecorder in millimetres.
"""

from __future__ import annotations

import logging
import math
from pathlib import Path
from typing import Iterable, List, Optional, Tuple, Union

import inkex
from inkex import bezier, units
from inkex.elements import Circle, Ellipse, Line, PathElement, Polygon, Polyline, Rectangle
from inkex.paths import CubicSuperPath

from embroidery_geometry import Point
from embroidery_model import Color, hex_to_rgb
from embroidery_recorder import EmbroideryRecorder

logger = logging.getLogger(__name__)

SHAPE_TYPES = (PathElement, Rectangle, Circle, Ellipse, Line, Polyline, Polygon)

CLOSED_TYPES = (Rectangle, Circle, Ellipse, Polygon)

Subpath = Tuple[List[Point], bool]


def _closed_flags(path: inkex.Path) -> List[bool]:
    flags: List[bool] = []
    for segment in path:
        letter = segment.letter.upper()
        if letter == "M":
            flags.append(False)
        elif letter == "Z" and flags:
            flags[-1] = True
    return flags


def flatten_path_element(element: inkex.ShapeElement, tolerance: float = 0.5) -> List[Subpath]:
    """Flatten an element (transforms applied) into (points, closed) subpaths in user units."""
    transform = element.composed_transform()
    path = element.path.transform(transform)
    flags = _closed_flags(path)
    always_closed = isinstance(element, CLOSED_TYPES)
    csp: CubicSuperPath = path.to_superpath()
    bezier.cspsubdiv(csp, tolerance)

    subpaths: List[Subpath] = []
    for index, subpath in enumerate(csp):
        points = [(float(node[1][0]), float(node[1][1])) for node in subpath]
        if len(points) < 2:
            continue
        coincident = math.isclose(points[0][0], points[-1][0], abs_tol=1e-9) and math.isclose(
            points[0][1], points[-1][1], abs_tol=1e-9
        )
        if coincident:
            points = points[:-1]
        closed = always_closed or coincident or (index < len(flags) and flags[index])
        if len(points) < 2:
            continue
        subpaths.append((points, closed))
    return subpaths


def _parse_color(value: Optional[str]) -> Optional[Color]:
    if not value:
        return None
    text = str(value).strip()
    if text.lower() in ("none", "transparent") or text.startswith("url("):
        return None
    try:
        rgb = inkex.Color(text).to_rgb()
    except (KeyError, ValueError):
        return hex_to_rgb(text)
    return (int(rgb.red), int(rgb.green), int(rgb.blue))


def element_colors(element: inkex.BaseElement) -> Tuple[Optional[Color], Optional[Color]]:
    """Return (stroke, fill) colours declared on the element, None where unset or ``none``."""
    style = element.style
    stroke = style.get("stroke") or element.get("stroke")
    fill = style.get("fill") or element.get("fill")
    return _parse_color(stroke), _parse_color(fill)


def document_px_to_mm(svg: inkex.SvgDocumentElement) -> float:
    try:
        px_per_mm = svg.unittouu("1mm")
    except (ValueError, TypeError):
        px_per_mm = None
    if px_per_mm:
        return 1.0 / px_per_mm
    return units.convert_unit("1px", "mm")


def record_svg_paths(
    elements: Iterable[inkex.ShapeElement],
    recorder: EmbroideryRecorder,
    px_to_mm: float,
    tolerance: float = 0.5,
) -> int:
    """Replay shapes into ``recorder``; returns the number of subpaths recorded."""
    recorded = 0
    for element in elements:
        stroke, fill = element_colors(element)
        if stroke is None and fill is None:
            stroke = (0, 0, 0)
        for points, closed in flatten_path_element(element, tolerance):
            mm_points = [(x * px_to_mm, y * px_to_mm) for x, y in points]
            if stroke is None:
                recorder.no_stroke()
            else:
                recorder.stroke(*stroke)
            if closed and fill is not None:
                recorder.fill(*fill)
            else:
                recorder.no_fill()
            if closed:
                recorder.shape(mm_points, closed=True)
            else:
                recorder.polyline(mm_points)
            recorded += 1
        logger.debug("Recorded %s (stroke=%s, fill=%s)", element.get_id(), stroke, fill)
    return recorded


def document_shapes(svg: inkex.SvgDocumentElement) -> List[inkex.ShapeElement]:
    return list(svg.descendants().filter(*SHAPE_TYPES))


def document_size_mm(svg: inkex.SvgDocumentElement, px_to_mm: float) -> Tuple[float, float]:
    try:
        return (svg.viewbox_width * px_to_mm, svg.viewbox_height * px_to_mm)
    except (AttributeError, TypeError):
        return (0.0, 0.0)


def load_svg_document(path: Union[str, Path]) -> inkex.SvgDocumentElement:
    return inkex.load_svg(str(path)).getroot()


def record_svg_file(
    path: Union[str, Path],
    recorder: EmbroideryRecorder,
    tolerance: float = 0.5,
) -> int:
    """Record every shape of an SVG file into a fresh recording session."""
    svg = load_svg_document(path)
    px_to_mm = document_px_to_mm(svg)
    width, height = document_size_mm(svg, px_to_mm)
    recorder.begin_record(width, height)
    return record_svg_paths(document_shapes(svg), recorder, px_to_mm, tolerance)
