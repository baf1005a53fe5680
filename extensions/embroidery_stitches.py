#!/usr/bin/env python3
"""
Stroke stitch generators.

Every generator takes points in millimetres and returns the needle
positions for one run. The straight generator is the building block the
others (and the fill engine) reuse; noise is drawn from ``settings.rng`` so
a seeded generator reproduces the same output.
"""

from __future__ import annotations

import logging
import math
from typing import Callable, Dict, List, Sequence, Union

from embroidery_geometry import Point, distance, lerp, perpendicular
from embroidery_model import FillSettings, Stitch, StitchSettings, StrokeMode

logger = logging.getLogger(__name__)

AnySettings = Union[StitchSettings, FillSettings]

_EPSILON = 1e-9


def _step_length(settings: AnySettings) -> float:
    if settings.resample_noise <= 0:
        return settings.stitch_length
    jitter = (settings.rng.random() * 2.0 - 1.0) * settings.resample_noise
    return settings.stitch_length * (1.0 + jitter)


def finite_points(path: Sequence[Point]) -> List[Point]:
    """Copy of ``path`` without vertices that have NaN or infinite coordinates."""
    points: List[Point] = []
    for x, y in path:
        if not (math.isfinite(x) and math.isfinite(y)):
            logger.warning("Dropping path vertex with non-finite coordinates (%s, %s)", x, y)
            continue
        points.append((float(x), float(y)))
    return points


def straight_segment(start: Point, end: Point, settings: AnySettings) -> List[Point]:
    """Subdivide one segment into stitches no longer than ``stitch_length``.

    The start point always comes first. The exact end point is added when
    the leftover after the last full stitch is at least ``min_stitch_length``
    or when the segment was too short for any interior stitch.
    """
    length = distance(start, end)
    if length <= _EPSILON:
        return [start]
    if length < settings.min_stitch_length:
        return [start, end]

    points: List[Point] = [start]
    count = int(math.floor(length / settings.stitch_length))
    travelled = 0.0
    for _ in range(count):
        travelled += _step_length(settings)
        t = min(travelled / length, 1.0)
        points.append(lerp(start, end, t))
        if t >= 1.0:
            return points

    remainder = length - travelled
    if (remainder >= settings.min_stitch_length and remainder > _EPSILON) or count == 0:
        points.append(end)
    return points


def straight_path(path: Sequence[Point], settings: AnySettings) -> List[Point]:
    if not path:
        return []
    points: List[Point] = [tuple(path[0])]
    for start, end in zip(path, path[1:]):
        points.extend(straight_segment(tuple(start), tuple(end), settings)[1:])
    return points


def zigzag_segment(start: Point, end: Point, settings: StitchSettings) -> List[Point]:
    length = distance(start, end)
    if length <= _EPSILON:
        return [start]
    if length < settings.min_stitch_length:
        return straight_segment(start, end, settings)

    nx, ny = perpendicular(start, end)
    half = settings.stroke_weight / 2.0
    count = max(2, int(math.floor(length / settings.stitch_length)))

    points: List[Point] = []
    for i in range(count + 1):
        cx, cy = lerp(start, end, i / count)
        side = 1.0 if i % 2 == 0 else -1.0
        points.append((cx + nx * half * side, cy + ny * half * side))
    if count % 2 == 0:
        # Finish on the opposite side of the first stitch.
        points.append((end[0] - nx * half, end[1] - ny * half))
    return points


def zigzag_path(path: Sequence[Point], settings: StitchSettings) -> List[Point]:
    if len(path) < 2:
        return [tuple(pt) for pt in path]
    points: List[Point] = []
    for start, end in zip(path, path[1:]):
        points.extend(zigzag_segment(tuple(start), tuple(end), settings))
    return points


def _vertex_normals(path: Sequence[Point]) -> List[Point]:
    normals: List[Point] = []
    last = len(path) - 1
    for i in range(len(path)):
        if i == 0:
            normals.append(perpendicular(path[0], path[1]))
            continue
        if i == last:
            normals.append(perpendicular(path[i - 1], path[i]))
            continue
        before = perpendicular(path[i - 1], path[i])
        after = perpendicular(path[i], path[i + 1])
        ax = before[0] + after[0]
        ay = before[1] + after[1]
        size = math.hypot(ax, ay)
        normals.append((ax / size, ay / size) if size > _EPSILON else before)
    return normals


def offset_path(path: Sequence[Point], offset: float) -> List[Point]:
    """Shift a polyline sideways, mitering interior vertices."""
    normals = _vertex_normals(path)
    return [(pt[0] + n[0] * offset, pt[1] + n[1] * offset) for pt, n in zip(path, normals)]


def multiline_path(path: Sequence[Point], settings: StitchSettings) -> List[Point]:
    """Parallel straight lines spread across ``stroke_weight``.

    Lines alternate direction so each one starts near where the previous
    one ended.
    """
    if len(path) < 2:
        return [tuple(pt) for pt in path]
    width = settings.stroke_weight
    line_count = max(2, int(math.floor(width / settings.stitch_width)))

    points: List[Point] = []
    for index in range(line_count):
        offset = -width / 2.0 + width * index / (line_count - 1)
        line = offset_path(path, offset)
        if index % 2 == 1:
            line.reverse()
        points.extend(straight_path(line, settings))
    return points


def split_path_by_length(path: Sequence[Point], chunk_length: float) -> List[List[Point]]:
    """Cut a polyline into consecutive pieces of ``chunk_length`` (last one shorter)."""
    pts = [tuple(pt) for pt in path]
    if len(pts) < 2 or chunk_length <= 0:
        return [pts] if pts else []

    chunks: List[List[Point]] = []
    current: List[Point] = [pts[0]]
    room = chunk_length
    for start, end in zip(pts, pts[1:]):
        seg_start = start
        seg_len = distance(seg_start, end)
        while seg_len > room + _EPSILON:
            cut = lerp(seg_start, end, room / seg_len)
            current.append(cut)
            chunks.append(current)
            current = [cut]
            seg_start = cut
            seg_len = distance(seg_start, end)
            room = chunk_length
        current.append(end)
        room -= seg_len
        if room <= _EPSILON:
            chunks.append(current)
            current = [end]
            room = chunk_length
    if len(current) > 1:
        chunks.append(current)
    return chunks


def sashiko_path(path: Sequence[Point], settings: StitchSettings) -> List[Point]:
    """Alternate multi-line dashes with plain straight gaps of ``stitch_length`` each."""
    if len(path) < 2:
        return [tuple(pt) for pt in path]
    points: List[Point] = []
    for index, chunk in enumerate(split_path_by_length(path, settings.stitch_length)):
        if index % 2 == 0:
            points.extend(multiline_path(chunk, settings))
        else:
            points.extend(straight_path(chunk, settings))
    return points


PathGenerator = Callable[[Sequence[Point], StitchSettings], List[Point]]

GENERATORS: Dict[StrokeMode, PathGenerator] = {
    StrokeMode.STRAIGHT: straight_path,
    StrokeMode.ZIGZAG: zigzag_path,
    StrokeMode.LINES: multiline_path,
    StrokeMode.SASHIKO: sashiko_path,
}


def generate_points(path: Sequence[Point], settings: StitchSettings) -> List[Point]:
    generator = GENERATORS[settings.effective_mode]
    return generator(path, settings)


def generate_stitches(path: Sequence[Point], settings: StitchSettings) -> List[Stitch]:
    """Stitch a path using the settings' stroke mode (straight when weight is 0).

    Vertices with non-finite coordinates are dropped with a warning.
    """
    points = generate_points(finite_points(path), settings)
    logger.debug("%s generator produced %d stitches from %d points", settings.effective_mode.value, len(points), len(path))
    return [Stitch(x, y) for x, y in points]
