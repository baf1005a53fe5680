#!/usr/bin/env python3
"""
Tatami fill engine.

Rectangles take a direct row-by-row path. Arbitrary polygons are sliced by
parallel scan lines; the resulting row segments are grouped into connected
regions and chained nearest-first so travel between rows stays short.
"""

from __future__ import annotations

import logging
import math
from collections import deque
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from embroidery_geometry import (
    Point,
    dedupe_consecutive,
    distance,
    distance_to_segment,
    lerp,
    path_bounds,
    point_in_polygon,
    rotate_point,
    segment_intersection,
    strip_closing_point,
)
from embroidery_model import FillSettings, Stitch, StitchCommand
from embroidery_stitches import finite_points, straight_path

logger = logging.getLogger(__name__)

_EPSILON = 1e-9


@dataclass
class FillSegment:
    """One inside span of a scan line."""

    start: Point
    end: Point
    row: int

    @property
    def length(self) -> float:
        return distance(self.start, self.end)

    def reversed(self) -> "FillSegment":
        return FillSegment(self.end, self.start, self.row)


def _row_span(quad: Sequence[Point], row_y: float) -> Optional[Tuple[float, float]]:
    """Horizontal extent of a convex polygon at ``row_y``, None when the row misses it."""
    xs: List[float] = []
    count = len(quad)
    for i in range(count):
        (ax, ay), (bx, by) = quad[i], quad[(i + 1) % count]
        if row_y < min(ay, by) - _EPSILON or row_y > max(ay, by) + _EPSILON:
            continue
        if abs(by - ay) <= _EPSILON:
            xs.extend([ax, bx])
            continue
        t = min(max((row_y - ay) / (by - ay), 0.0), 1.0)
        xs.append(ax + (bx - ax) * t)
    if not xs:
        return None
    return min(xs), max(xs)


def tatami_rect(x: float, y: float, width: float, height: float, settings: FillSettings) -> List[Stitch]:
    """Boustrophedon rows over a rectangle anchored at (x, y).

    Rows are laid in fill-angle space and each one is clipped to the
    rotated rectangle, so every stitch stays on or inside its edges. The
    last row is clamped to the far edge so both edges are covered.
    """
    origin = (x, y)
    corners = [(x, y), (x + width, y), (x + width, y + height), (x, y + height)]
    rotated = [rotate_point(pt, -settings.angle, origin) for pt in corners]
    _, min_y, _, max_y = path_bounds(rotated)

    row_count = int(math.ceil((max_y - min_y) / settings.spacing))
    rows: List[Point] = []
    emitted = 0
    for row in range(row_count + 1):
        row_y = min(min_y + row * settings.spacing, max_y)
        span = _row_span(rotated, row_y)
        if span is None:
            continue
        left = rotate_point((span[0], row_y), settings.angle, origin)
        if span[1] - span[0] <= _EPSILON:
            # The row only touches a corner.
            rows.append(left)
            continue
        right = rotate_point((span[1], row_y), settings.angle, origin)
        rows.extend([left, right] if emitted % 2 == 0 else [right, left])
        emitted += 1

    points = straight_path(rows, settings)
    logger.debug("tatami_rect: %d rows, %d stitches", emitted, len(points))
    return [Stitch(px, py) for px, py in points]


def _scan_rows(polygon: Sequence[Point], settings: FillSettings) -> List[List[FillSegment]]:
    min_x, min_y, max_x, max_y = path_bounds(polygon)
    center = ((min_x + max_x) / 2.0, (min_y + max_y) / 2.0)
    diagonal = math.hypot(max_x - min_x, max_y - min_y)
    direction = (math.cos(settings.angle), math.sin(settings.angle))
    normal = (-direction[1], direction[0])
    reach = diagonal / 2.0 + settings.spacing

    rows: List[List[FillSegment]] = []
    row_count = int(math.floor(diagonal / settings.spacing)) + 1
    edge_count = len(polygon)
    for row in range(row_count):
        offset = -diagonal / 2.0 + row * settings.spacing
        base = (center[0] + normal[0] * offset, center[1] + normal[1] * offset)
        scan_start = (base[0] - direction[0] * reach, base[1] - direction[1] * reach)
        scan_end = (base[0] + direction[0] * reach, base[1] + direction[1] * reach)

        hits: List[Tuple[float, Point]] = []
        for i in range(edge_count):
            found = segment_intersection(scan_start, scan_end, polygon[i], polygon[(i + 1) % edge_count])
            if found is not None:
                point, along = found
                hits.append((along, point))
        hits.sort(key=lambda item: item[0])

        unique: List[Tuple[float, Point]] = []
        for along, point in hits:
            if unique and abs(along - unique[-1][0]) * 2 * reach <= _EPSILON:
                continue
            unique.append((along, point))

        segments: List[FillSegment] = []
        for (_, a), (_, b) in zip(unique, unique[1:]):
            if distance(a, b) <= _EPSILON:
                continue
            if point_in_polygon(lerp(a, b, 0.5), polygon):
                segments.append(FillSegment(a, b, row))
        if len(rows) % 2 == 1:
            segments = [seg.reversed() for seg in reversed(segments)]
        if segments:
            rows.append(segments)
    return rows


def _endpoint_gap(a: FillSegment, b: FillSegment) -> float:
    return min(
        distance(a.start, b.start),
        distance(a.start, b.end),
        distance(a.end, b.start),
        distance(a.end, b.end),
    )


def group_regions(segments: Sequence[FillSegment], threshold: float) -> List[List[FillSegment]]:
    """Partition segments into connected regions by endpoint proximity."""
    visited = [False] * len(segments)
    regions: List[List[FillSegment]] = []
    for seed in range(len(segments)):
        if visited[seed]:
            continue
        visited[seed] = True
        queue = deque([seed])
        region: List[FillSegment] = []
        while queue:
            current = queue.popleft()
            region.append(segments[current])
            for other in range(len(segments)):
                if not visited[other] and _endpoint_gap(segments[current], segments[other]) <= threshold:
                    visited[other] = True
                    queue.append(other)
        region.sort(key=lambda seg: seg.row)
        regions.append(region)
    return regions


def order_region(region: Sequence[FillSegment], position: Optional[Point]) -> List[FillSegment]:
    """Greedy nearest-neighbour chaining, flipping segments to enter at the closer end."""
    remaining = list(region)
    ordered: List[FillSegment] = []
    if position is None and remaining:
        first = remaining.pop(0)
        ordered.append(first)
        position = first.end
    while remaining:
        best_index = 0
        best_flip = False
        best_gap = math.inf
        for index, seg in enumerate(remaining):
            to_start = distance(position, seg.start)
            to_end = distance(position, seg.end)
            if to_start < best_gap:
                best_index, best_flip, best_gap = index, False, to_start
            if to_end < best_gap:
                best_index, best_flip, best_gap = index, True, to_end
        chosen = remaining.pop(best_index)
        if best_flip:
            chosen = chosen.reversed()
        ordered.append(chosen)
        position = chosen.end
    return ordered


def _nearest_region(regions: List[List[FillSegment]], position: Point) -> int:
    best = 0
    best_gap = math.inf
    for index, region in enumerate(regions):
        gap = min(min(distance(position, seg.start), distance(position, seg.end)) for seg in region)
        if gap < best_gap:
            best, best_gap = index, gap
    return best


def _connector_inside(a: Point, b: Point, polygon: Sequence[Point]) -> bool:
    """True when the straight hop a->b stays inside the polygon or runs along its outline."""
    count = len(polygon)
    for i in range(count):
        found = segment_intersection(a, b, polygon[i], polygon[(i + 1) % count])
        if found is not None and 1e-6 < found[1] < 1.0 - 1e-6:
            return False
    middle = lerp(a, b, 0.5)
    if point_in_polygon(middle, polygon):
        return True
    return any(distance_to_segment(middle, polygon[i], polygon[(i + 1) % count]) <= 1e-6 for i in range(count))


def _chains(region: Sequence[FillSegment], polygon: Sequence[Point]) -> List[List[Point]]:
    """Split an ordered region wherever the hop to the next row would leave the shape."""
    chains: List[List[Point]] = []
    current: List[Point] = []
    for seg in region:
        if current and not _connector_inside(current[-1], seg.start, polygon):
            chains.append(current)
            current = []
        current.extend([seg.start, seg.end])
    if current:
        chains.append(current)
    return [dedupe_consecutive(chain) for chain in chains]


def scan_fill(polygon: Sequence[Point], settings: FillSettings) -> List[Stitch]:
    """Fill an arbitrary simple polygon (concave shapes included).

    Each travel that cannot be sewn inside the shape starts with a jump
    stitch; when it is longer than ``jump_threshold`` a trim stitch at the
    previous needle position precedes it.
    """
    pts = strip_closing_point(dedupe_consecutive(finite_points(polygon)))
    if len(pts) < 3:
        logger.debug("scan_fill: polygon with %d points skipped", len(pts))
        return []

    rows = _scan_rows(pts, settings)
    segments = [seg for row in rows for seg in row]
    if not segments:
        return []
    pending = group_regions(segments, settings.region_threshold)
    logger.debug("scan_fill: %d segments in %d regions", len(segments), len(pending))

    stitches: List[Stitch] = []
    position: Optional[Point] = None
    while pending:
        index = 0 if position is None else _nearest_region(pending, position)
        region = order_region(pending.pop(index), position)

        for chain in _chains(region, pts):
            if position is not None and _connector_inside(position, chain[0], pts):
                chain = [position] + chain
                points = straight_path(chain, settings)[1:]
                jumped = False
            else:
                points = straight_path(chain, settings)
                jumped = position is not None
                if jumped and distance(position, chain[0]) > settings.jump_threshold:
                    stitches.append(Stitch(position[0], position[1], StitchCommand.TRIM))
            if not points:
                continue
            for i, (px, py) in enumerate(points):
                stitches.append(Stitch(px, py, StitchCommand.JUMP if jumped and i == 0 else None))
            position = points[-1]
    return stitches


def is_axis_rectangle(polygon: Sequence[Point]) -> bool:
    pts = strip_closing_point(polygon)
    if len(pts) != 4:
        return False
    xs = sorted({round(pt[0], 9) for pt in pts})
    ys = sorted({round(pt[1], 9) for pt in pts})
    if len(xs) != 2 or len(ys) != 2:
        return False
    corners = {(round(pt[0], 9), round(pt[1], 9)) for pt in pts}
    return corners == {(xs[0], ys[0]), (xs[1], ys[0]), (xs[1], ys[1]), (xs[0], ys[1])}


def fill_polygon(polygon: Sequence[Point], settings: FillSettings) -> List[Stitch]:
    """Pick the rectangle fast path for axis-aligned rectangles, scan fill otherwise."""
    if is_axis_rectangle(polygon):
        min_x, min_y, max_x, max_y = path_bounds(strip_closing_point(polygon))
        return tatami_rect(min_x, min_y, max_x - min_x, max_y - min_y, settings)
    return scan_fill(polygon, settings)
