#!/usr/bin/env python3
"""
Plane geometry helpers shared by the stitch generators, the fill engine
and the outline builders. Every coordinate is in millimetres.
"""

from __future__ import annotations

import math
from typing import List, Optional, Sequence, Tuple

Point = Tuple[float, float]
Bounds = Tuple[float, float, float, float]


def distance(a: Point, b: Point) -> float:
    return math.hypot(b[0] - a[0], b[1] - a[1])


def lerp(a: Point, b: Point, t: float) -> Point:
    return (a[0] + (b[0] - a[0]) * t, a[1] + (b[1] - a[1]) * t)


def perpendicular(a: Point, b: Point) -> Point:
    """Unit left-hand normal of the segment a->b, (0, 0) for a degenerate segment."""
    dx = b[0] - a[0]
    dy = b[1] - a[1]
    length = math.hypot(dx, dy)
    if length == 0:
        return (0.0, 0.0)
    return (-dy / length, dx / length)


def rotate_point(point: Point, angle: float, origin: Point = (0.0, 0.0)) -> Point:
    cos_a = math.cos(angle)
    sin_a = math.sin(angle)
    x = point[0] - origin[0]
    y = point[1] - origin[1]
    return (origin[0] + x * cos_a - y * sin_a, origin[1] + x * sin_a + y * cos_a)


def path_bounds(points: Sequence[Point]) -> Bounds:
    """Return (min_x, min_y, max_x, max_y); all zeros for an empty sequence."""
    if not points:
        return (0.0, 0.0, 0.0, 0.0)
    xs = [pt[0] for pt in points]
    ys = [pt[1] for pt in points]
    return (min(xs), min(ys), max(xs), max(ys))


def path_length(points: Sequence[Point]) -> float:
    return sum(distance(a, b) for a, b in zip(points, points[1:]))


def segment_intersection(a: Point, b: Point, c: Point, d: Point) -> Optional[Tuple[Point, float]]:
    """Intersection of segments a-b and c-d.

    Returns the point and its parameter along a-b, or None when the segments
    are parallel or do not overlap.
    """
    denom = (d[1] - c[1]) * (b[0] - a[0]) - (d[0] - c[0]) * (b[1] - a[1])
    if math.isclose(denom, 0.0, abs_tol=1e-12):
        return None
    ua = ((d[0] - c[0]) * (a[1] - c[1]) - (d[1] - c[1]) * (a[0] - c[0])) / denom
    ub = ((b[0] - a[0]) * (a[1] - c[1]) - (b[1] - a[1]) * (a[0] - c[0])) / denom
    if -1e-12 <= ua <= 1 + 1e-12 and -1e-12 <= ub <= 1 + 1e-12:
        return lerp(a, b, ua), ua
    return None


def point_in_polygon(point: Point, polygon: Sequence[Point]) -> bool:
    """Even-odd ray casting test."""
    x, y = point
    inside = False
    count = len(polygon)
    j = count - 1
    for i in range(count):
        xi, yi = polygon[i]
        xj, yj = polygon[j]
        if (yi > y) != (yj > y):
            cross_x = xi + (y - yi) * (xj - xi) / (yj - yi)
            if x < cross_x:
                inside = not inside
        j = i
    return inside


def distance_to_segment(point: Point, a: Point, b: Point) -> float:
    length = distance(a, b)
    if length == 0:
        return distance(point, a)
    t = ((point[0] - a[0]) * (b[0] - a[0]) + (point[1] - a[1]) * (b[1] - a[1])) / (length * length)
    t = max(0.0, min(1.0, t))
    return distance(point, lerp(a, b, t))


def signed_area(polygon: Sequence[Point]) -> float:
    """Shoelace area, positive for counter-clockwise order in a y-up frame."""
    total = 0.0
    count = len(polygon)
    for i in range(count):
        x1, y1 = polygon[i]
        x2, y2 = polygon[(i + 1) % count]
        total += x1 * y2 - x2 * y1
    return total / 2.0


def polygon_area(polygon: Sequence[Point]) -> float:
    if len(polygon) < 3:
        return 0.0
    return abs(signed_area(polygon))


def polygon_centroid(polygon: Sequence[Point]) -> Point:
    if len(polygon) < 3:
        return (0.0, 0.0)
    area = 0.0
    cx = 0.0
    cy = 0.0
    count = len(polygon)
    for i in range(count):
        x1, y1 = polygon[i]
        x2, y2 = polygon[(i + 1) % count]
        factor = x1 * y2 - x2 * y1
        area += factor
        cx += (x1 + x2) * factor
        cy += (y1 + y2) * factor
    if math.isclose(area, 0.0, abs_tol=1e-12):
        xs = [pt[0] for pt in polygon]
        ys = [pt[1] for pt in polygon]
        return (sum(xs) / count, sum(ys) / count)
    area /= 2.0
    return (cx / (6.0 * area), cy / (6.0 * area))


def strip_closing_point(polygon: Sequence[Point], tolerance: float = 1e-9) -> List[Point]:
    pts = list(polygon)
    if len(pts) > 1 and distance(pts[0], pts[-1]) <= tolerance:
        pts = pts[:-1]
    return pts


def dedupe_consecutive(points: Sequence[Point], tolerance: float = 1e-9) -> List[Point]:
    unique: List[Point] = []
    for pt in points:
        if unique and distance(unique[-1], pt) <= tolerance:
            continue
        unique.append(pt)
    return unique


def cross_product(o: Point, a: Point, b: Point) -> float:
    return (a[0] - o[0]) * (b[1] - o[1]) - (a[1] - o[1]) * (b[0] - o[0])


def convex_hull(points: Sequence[Point]) -> List[Point]:
    """Graham scan over the unique points, starting from the lowest one."""
    seen = set()
    unique: List[Point] = []
    for pt in points:
        key = (round(pt[0] * 1000), round(pt[1] * 1000))
        if key in seen:
            continue
        seen.add(key)
        unique.append((float(pt[0]), float(pt[1])))
    if len(unique) < 3:
        return unique

    pivot = min(unique, key=lambda pt: (pt[1], pt[0]))
    rest = [pt for pt in unique if pt != pivot]
    rest.sort(
        key=lambda pt: (
            math.atan2(pt[1] - pivot[1], pt[0] - pivot[0]),
            (pt[0] - pivot[0]) ** 2 + (pt[1] - pivot[1]) ** 2,
        )
    )

    hull = [pivot]
    for pt in rest:
        while len(hull) > 1 and cross_product(hull[-2], hull[-1], pt) <= 0:
            hull.pop()
        hull.append(pt)
    return hull


def offset_corner(prev: Point, curr: Point, nxt: Point, offset: float) -> Point:
    """Mitered offset of ``curr`` along the left normals of prev->curr and curr->nxt."""
    v1 = (curr[0] - prev[0], curr[1] - prev[1])
    v2 = (nxt[0] - curr[0], nxt[1] - curr[1])
    len1 = math.hypot(*v1)
    len2 = math.hypot(*v2)

    if len1 < 0.1 or len2 < 0.1:
        avg = ((v1[0] + v2[0]) / 2.0, (v1[1] + v2[1]) / 2.0)
        avg_len = math.hypot(*avg)
        if avg_len == 0:
            return curr
        return (curr[0] - avg[1] / avg_len * offset, curr[1] + avg[0] / avg_len * offset)

    perp1 = (-v1[1] / len1 * offset, v1[0] / len1 * offset)
    perp2 = (-v2[1] / len2 * offset, v2[0] / len2 * offset)
    averaged = (curr[0] + (perp1[0] + perp2[0]) / 2.0, curr[1] + (perp1[1] + perp2[1]) / 2.0)

    l1_start = (prev[0] + perp1[0], prev[1] + perp1[1])
    l1_end = (curr[0] + perp1[0], curr[1] + perp1[1])
    l2_start = (curr[0] + perp2[0], curr[1] + perp2[1])
    l2_end = (nxt[0] + perp2[0], nxt[1] + perp2[1])

    denom = (l1_start[0] - l1_end[0]) * (l2_start[1] - l2_end[1]) - (l1_start[1] - l1_end[1]) * (
        l2_start[0] - l2_end[0]
    )
    if abs(denom) < 1e-10:
        return averaged

    t = (
        (l1_start[0] - l2_start[0]) * (l2_start[1] - l2_end[1])
        - (l1_start[1] - l2_start[1]) * (l2_start[0] - l2_end[0])
    ) / denom
    corner = lerp(l1_start, l1_end, t)

    if distance(corner, curr) > abs(offset) * 10:
        return averaged
    return corner


def expand_polygon(polygon: Sequence[Point], offset: float) -> List[Point]:
    """Grow a simple polygon outward by ``offset`` (negative shrinks it)."""
    pts = strip_closing_point(polygon)
    if len(pts) < 3:
        return list(pts)
    # Left normals point inward for counter-clockwise rings.
    signed_offset = -offset if signed_area(pts) > 0 else offset
    count = len(pts)
    return [offset_corner(pts[i - 1], pts[i], pts[(i + 1) % count], signed_offset) for i in range(count)]


def _close(points: List[Point]) -> List[Point]:
    if points:
        points.append(points[0])
    return points


def bounding_box_outline(points: Sequence[Point], offset: float, corner_radius: float = 0.0) -> List[Point]:
    min_x, min_y, max_x, max_y = path_bounds(points)
    x = min_x - offset
    y = min_y - offset
    w = (max_x - min_x) + 2 * offset
    h = (max_y - min_y) + 2 * offset

    if corner_radius <= 0:
        return _close([(x, y), (x + w, y), (x + w, y + h), (x, y + h)])

    radius = min(corner_radius, min(w, h) / 2.0)
    corners = [
        ((x + radius, y + radius), math.pi),
        ((x + w - radius, y + radius), math.pi * 1.5),
        ((x + w - radius, y + h - radius), 0.0),
        ((x + radius, y + h - radius), math.pi * 0.5),
    ]
    arc_segments = 8
    outline: List[Point] = []
    for (cx, cy), start_angle in corners:
        for i in range(arc_segments + 1):
            angle = start_angle + (i / arc_segments) * (math.pi / 2.0)
            outline.append((cx + math.cos(angle) * radius, cy + math.sin(angle) * radius))
    return _close(outline)


def convex_hull_outline(points: Sequence[Point], offset: float) -> List[Point]:
    hull = convex_hull(points)
    if len(hull) < 3:
        return bounding_box_outline(points, offset)
    return _close(expand_polygon(hull, offset))


def scaled_outline(points: Sequence[Point], offset: float) -> List[Point]:
    if not points:
        return []
    count = len(points)
    cx = sum(pt[0] for pt in points) / count
    cy = sum(pt[1] for pt in points) / count
    mean_distance = sum(math.hypot(pt[0] - cx, pt[1] - cy) for pt in points) / count
    scale = (mean_distance + offset) / mean_distance if mean_distance > 0 else 1.0 + offset

    scaled = [(cx + (pt[0] - cx) * scale, cy + (pt[1] - cy) * scale) for pt in points]
    if len(scaled) > 2 and distance(scaled[0], scaled[-1]) > 0.1:
        scaled.append(scaled[0])
    return scaled
