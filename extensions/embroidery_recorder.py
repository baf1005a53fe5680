#!/usr/bin/env python3
"""
Recording session that turns drawing calls into a stitch Pattern.

The recorder owns the pattern under construction together with the current
stroke/fill state; callers hold a reference to it instead of relying on
module globals.
"""

from __future__ import annotations

import logging
import math
from dataclasses import replace
from typing import List, Optional, Sequence

from embroidery_fill import fill_polygon, scan_fill, tatami_rect
from embroidery_geometry import (
    Point,
    bounding_box_outline,
    convex_hull_outline,
    distance,
    scaled_outline,
)
from embroidery_model import (
    Color,
    EmbroideryError,
    FillSettings,
    Pattern,
    SettingsError,
    SewingRun,
    Stitch,
    StitchCommand,
    StitchSettings,
    StrokeMode,
    TrimRun,
    split_control_stitches,
)
from embroidery_stitches import generate_stitches, straight_path

logger = logging.getLogger(__name__)

OUTLINE_TYPES = ("convex", "bounding", "scale")


class EmbroideryRecorder:
    def __init__(
        self,
        stitch_settings: Optional[StitchSettings] = None,
        fill_settings: Optional[FillSettings] = None,
    ) -> None:
        self.stitch_settings = stitch_settings or StitchSettings()
        self.fill_settings = fill_settings or FillSettings()
        self.pattern: Optional[Pattern] = None
        self.stroke_color: Optional[Color] = (0, 0, 0)
        self.fill_color: Optional[Color] = None
        self.current_thread = 0
        self.position: Optional[Point] = None
        self._fill_count = 0

    # Session ---------------------------------------------------------------
    @property
    def recording(self) -> bool:
        return self.pattern is not None

    def begin_record(self, width: float = 0.0, height: float = 0.0) -> Pattern:
        self.pattern = Pattern.new(width, height)
        self.current_thread = 0
        self.position = None
        self._fill_count = 0
        logger.debug("Recording started (%.1f x %.1f mm)", width, height)
        return self.pattern

    def end_record(self) -> Pattern:
        pattern = self._require_pattern()
        self.pattern = None
        logger.debug("Recording finished: %d threads, %d stitches", len(pattern.threads), pattern.stitch_count)
        return pattern

    def _require_pattern(self) -> Pattern:
        if self.pattern is None:
            raise EmbroideryError("No recording in progress; call begin_record() first")
        return self.pattern

    # Drawing state -----------------------------------------------------------
    def stroke(self, r: int, g: int, b: int) -> None:
        self.stroke_color = (int(r), int(g), int(b))

    def no_stroke(self) -> None:
        self.stroke_color = None

    def fill(self, r: int, g: int, b: int) -> None:
        self.fill_color = (int(r), int(g), int(b))

    def no_fill(self) -> None:
        self.fill_color = None

    def stroke_weight(self, weight: float) -> None:
        self.stitch_settings = replace(self.stitch_settings, stroke_weight=max(0.0, float(weight)))

    def set_stroke_mode(self, mode: str) -> None:
        try:
            parsed = StrokeMode.parse(mode)
        except SettingsError as exc:
            logger.warning("%s; keeping %s", exc, self.stitch_settings.stroke_mode.value)
            return
        self.stitch_settings = replace(self.stitch_settings, stroke_mode=parsed)

    def set_stitch(self, min_length: float, desired_length: float, noise: float = 0.0) -> None:
        desired = max(0.1, float(desired_length))
        minimum = min(max(0.0, float(min_length)), desired)
        self.stitch_settings = replace(
            self.stitch_settings,
            stitch_length=desired,
            min_stitch_length=minimum,
            resample_noise=min(1.0, max(0.0, float(noise))),
        )

    # Threads -----------------------------------------------------------------
    def _select_thread(self, color: Color) -> int:
        pattern = self._require_pattern()
        index = pattern.find_thread(color)
        if index is None:
            weight = self.stitch_settings.stroke_weight or 0.2
            index = pattern.add_thread(color, weight)
        if index != self.current_thread:
            self._trim_current()
            self.current_thread = index
        return index

    def _trim_current(self) -> bool:
        pattern = self._require_pattern()
        if not 0 <= self.current_thread < len(pattern.threads):
            return False
        thread = pattern.threads[self.current_thread]
        if not thread.runs or not isinstance(thread.runs[-1], SewingRun) or not thread.runs[-1].stitches:
            return False
        last = thread.runs[-1].stitches[-1]
        pattern.add_run(self.current_thread, TrimRun(last.x, last.y))
        return True

    def trim_thread(self) -> None:
        if not self._trim_current():
            logger.warning("trim_thread(): nothing sewn on thread %d yet", self.current_thread)

    def _add_stitches(self, stitches: List[Stitch], color: Color) -> None:
        if not stitches:
            return
        pattern = self._require_pattern()
        index = self._select_thread(color)
        first = stitches[0]
        if (
            self.position is not None
            and first.command is None
            and distance(self.position, first.point) > self.stitch_settings.jump_threshold
        ):
            stitches = [Stitch(first.x, first.y, StitchCommand.JUMP)] + list(stitches[1:])
        for run in split_control_stitches(stitches):
            pattern.add_run(index, run)
        sewn = [stitch for stitch in stitches if stitch.command != StitchCommand.TRIM]
        if sewn:
            self.position = sewn[-1].point

    def _stroke_path(self, path: Sequence[Point]) -> None:
        if self.stroke_color is None or len(path) < 2:
            return
        self._add_stitches(generate_stitches(path, self.stitch_settings), self.stroke_color)

    def _next_fill_settings(self) -> FillSettings:
        settings = self.fill_settings
        if settings.alternate_angle and self._fill_count % 2 == 1:
            settings = replace(settings, angle=settings.angle + math.pi / 2.0)
        self._fill_count += 1
        return settings

    def _finite_args(self, name: str, *values: float) -> bool:
        if all(math.isfinite(value) for value in values):
            return True
        logger.warning("%s(): ignoring non-finite arguments %s", name, values)
        return False

    # Primitives --------------------------------------------------------------
    def line(self, x1: float, y1: float, x2: float, y2: float) -> None:
        self._require_pattern()
        self._stroke_path([(x1, y1), (x2, y2)])

    def polyline(self, points: Sequence[Point], closed: bool = False) -> None:
        self._require_pattern()
        path = [(float(x), float(y)) for x, y in points]
        if closed and path and path[0] != path[-1]:
            path.append(path[0])
        self._stroke_path(path)

    def rect(self, x: float, y: float, w: float, h: float) -> None:
        self._require_pattern()
        if not self._finite_args("rect", x, y, w, h):
            return
        if self.fill_color is not None and w > 0 and h > 0:
            self._add_stitches(tatami_rect(x, y, w, h, self._next_fill_settings()), self.fill_color)
        self._stroke_path([(x, y), (x + w, y), (x + w, y + h), (x, y + h), (x, y)])

    def ellipse(self, x: float, y: float, w: float, h: float) -> None:
        """Ellipse centred on (x, y) with diameters w and h."""
        self._require_pattern()
        if not self._finite_args("ellipse", x, y, w, h):
            return
        rx = w / 2.0
        ry = h / 2.0
        circumference = math.pi * math.sqrt((w * w + h * h) / 2.0)
        count = max(8, int(math.ceil(circumference / self.stitch_settings.stitch_length)))
        outline = [
            (x + rx * math.cos(2.0 * math.pi * i / count), y + ry * math.sin(2.0 * math.pi * i / count))
            for i in range(count)
        ]
        if self.fill_color is not None and w > 0 and h > 0:
            self._add_stitches(scan_fill(outline, self._next_fill_settings()), self.fill_color)
        self._stroke_path(outline + [outline[0]])

    def point(self, x: float, y: float) -> None:
        self._require_pattern()
        if not self._finite_args("point", x, y):
            return
        if self.stroke_color is not None:
            self._add_stitches([Stitch(float(x), float(y))], self.stroke_color)

    def shape(self, vertices: Sequence[Point], closed: bool = False) -> None:
        self._require_pattern()
        path = [(float(x), float(y)) for x, y in vertices]
        if closed and self.fill_color is not None and len(path) >= 3:
            self._add_stitches(fill_polygon(path, self._next_fill_settings()), self.fill_color)
        if closed and path and path[0] != path[-1]:
            path.append(path[0])
        self._stroke_path(path)

    def outline(
        self,
        offset: float = 2.0,
        outline_type: str = "convex",
        corner_radius: float = 0.0,
        thread_index: Optional[int] = None,
    ) -> List[Point]:
        """Stitch an outline around everything recorded so far and return its points."""
        pattern = self._require_pattern()
        points = pattern.all_points()
        if not points:
            logger.warning("outline(): no stitches recorded yet")
            return []
        if thread_index is None:
            thread_index = self.current_thread
        if not 0 <= thread_index < len(pattern.threads):
            logger.warning("outline(): invalid thread index %s", thread_index)
            return []

        if outline_type == "bounding":
            shape = bounding_box_outline(points, offset, corner_radius)
        elif outline_type == "scale":
            shape = scaled_outline(points, offset)
        else:
            if outline_type != "convex":
                logger.warning("outline(): unknown outline type %r, using convex", outline_type)
            shape = convex_hull_outline(points, offset)

        stitched = straight_path(shape, self.stitch_settings)
        self._add_stitches([Stitch(px, py) for px, py in stitched], pattern.threads[thread_index].color)
        return shape
