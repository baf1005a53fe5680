#!/usr/bin/env python3
"""
In-memory stitch pattern model: stitches, runs, threads, the pattern root
and the settings consumed by the generators and the fill engine.
"""

from __future__ import annotations

import enum
import json
import logging
import math
import random
from dataclasses import dataclass, field, fields, replace
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple, Type, TypeVar, Union

from embroidery_geometry import Point, distance

logger = logging.getLogger(__name__)

FORMAT_NAME = "embroidery-stitch-export"
FORMAT_VERSION = "1.0"


class EmbroideryError(Exception):
    """Base class for every error raised by the embroidery modules."""


class PatternFormatError(EmbroideryError, ValueError):
    """The pattern structure is malformed (missing threads, runs or stitches)."""


class UnsupportedFormatError(EmbroideryError, ValueError):
    """No exporter is registered for the requested file type."""


class SettingsError(EmbroideryError, ValueError):
    """Stitch or fill settings violate their invariants."""


class StitchCommand(str, enum.Enum):
    JUMP = "jump"
    TRIM = "trim"
    COLOR_CHANGE = "colorChange"


class StrokeMode(str, enum.Enum):
    STRAIGHT = "straight"
    ZIGZAG = "zigzag"
    LINES = "lines"
    SASHIKO = "sashiko"

    @classmethod
    def parse(cls, value: Union[str, "StrokeMode"]) -> "StrokeMode":
        if isinstance(value, cls):
            return value
        text = str(value).strip().lower()
        if text == "multiline":
            return cls.LINES
        try:
            return cls(text)
        except ValueError:
            raise SettingsError(f"Unknown stroke mode: {value!r}") from None


@dataclass
class Stitch:
    """One needle position; ``command`` is None for a normal penetration."""

    x: float
    y: float
    command: Optional[StitchCommand] = None

    @property
    def point(self) -> Point:
        return (self.x, self.y)

    @property
    def is_jump(self) -> bool:
        return self.command == StitchCommand.JUMP

    def is_finite(self) -> bool:
        return math.isfinite(self.x) and math.isfinite(self.y)


@dataclass
class SewingRun:
    """Uninterrupted pass of normal and jump stitches."""

    stitches: List[Stitch] = field(default_factory=list)
    kind = "sewing"

    def __len__(self) -> int:
        return len(self.stitches)


@dataclass
class TrimRun:
    """Cut the thread at (x, y)."""

    x: float
    y: float
    kind = "trim"

    @property
    def stitches(self) -> List[Stitch]:
        return [Stitch(self.x, self.y, StitchCommand.TRIM)]

    def __len__(self) -> int:
        return 1


@dataclass
class ColorChangeRun:
    """Stop for a thread change at (x, y)."""

    x: float
    y: float
    kind = "colorChange"

    @property
    def stitches(self) -> List[Stitch]:
        return [Stitch(self.x, self.y, StitchCommand.COLOR_CHANGE)]

    def __len__(self) -> int:
        return 1


Run = Union[SewingRun, TrimRun, ColorChangeRun]
Color = Tuple[int, int, int]


@dataclass
class Thread:
    color: Color = (0, 0, 0)
    weight: float = 0.2
    runs: List[Run] = field(default_factory=list)

    @property
    def hex_color(self) -> str:
        return rgb_to_hex(self.color)

    def sewing_runs(self) -> List[SewingRun]:
        return [run for run in self.runs if isinstance(run, SewingRun)]

    def stitch_count(self) -> int:
        return sum(len(run) for run in self.sewing_runs())

    def last_stitch(self) -> Optional[Stitch]:
        for run in reversed(self.runs):
            if isinstance(run, SewingRun) and run.stitches:
                return run.stitches[-1]
        return None


@dataclass
class Pattern:
    """Root aggregate built by a recording session and read by the encoders."""

    width: float = 0.0
    height: float = 0.0
    threads: List[Thread] = field(default_factory=list)
    stitch_count: int = 0

    @classmethod
    def new(cls, width: float = 0.0, height: float = 0.0) -> "Pattern":
        return cls(width=width, height=height, threads=[Thread()])

    def find_thread(self, color: Color) -> Optional[int]:
        # Linear scan keeps thread creation order stable for export.
        for index, thread in enumerate(self.threads):
            if tuple(thread.color) == tuple(color):
                return index
        return None

    def add_thread(self, color: Color, weight: float = 0.2) -> int:
        self.threads.append(Thread(color=tuple(color), weight=weight))
        return len(self.threads) - 1

    def add_run(self, thread_index: int, run: Run) -> None:
        self.threads[thread_index].runs.append(run)
        if isinstance(run, SewingRun):
            self.stitch_count += len(run.stitches)

    def is_empty(self) -> bool:
        return not any(thread.stitch_count() for thread in self.threads)

    def all_points(self) -> List[Point]:
        return [stitch.point for thread in self.threads for run in thread.sewing_runs() for stitch in run.stitches]


def rgb_to_hex(color: Sequence[float]) -> str:
    r, g, b = (int(round(max(0, min(255, c)))) for c in color[:3])
    return f"#{r:02x}{g:02x}{b:02x}"


def hex_to_rgb(value: str) -> Optional[Color]:
    text = value.strip().lstrip("#")
    if len(text) == 3:
        text = "".join(ch * 2 for ch in text)
    if len(text) != 6:
        return None
    try:
        return (int(text[0:2], 16), int(text[2:4], 16), int(text[4:6], 16))
    except ValueError:
        return None


def validate_pattern(pattern: Any) -> None:
    """Reject pattern objects whose thread or run containers are missing."""
    threads = getattr(pattern, "threads", None)
    if not isinstance(threads, list):
        raise PatternFormatError("Invalid pattern: threads list is required")
    for index, thread in enumerate(threads):
        runs = getattr(thread, "runs", None)
        if not isinstance(runs, list):
            raise PatternFormatError(f"Thread {index}: missing or invalid runs list")
        for run_index, run in enumerate(runs):
            if not isinstance(run, (SewingRun, TrimRun, ColorChangeRun)):
                raise PatternFormatError(f"Thread {index}, run {run_index}: unknown run type {type(run).__name__}")


def iter_export_stitches(pattern: Pattern) -> Iterator[Stitch]:
    """Flatten a pattern into the stitch stream seen by the encoders.

    Threads after the first sewn thread are separated by a color change at
    the current needle position. Non-finite stitches are dropped with a
    warning.
    """
    validate_pattern(pattern)
    sewn_threads = 0
    last: Optional[Stitch] = None
    for thread_index, thread in enumerate(pattern.threads):
        if not thread.stitch_count():
            continue
        if sewn_threads and last is not None:
            yield Stitch(last.x, last.y, StitchCommand.COLOR_CHANGE)
        sewn_threads += 1
        for run_index, run in enumerate(thread.runs):
            for stitch in run.stitches:
                if not stitch.is_finite():
                    logger.warning(
                        "Dropping stitch with non-finite coordinates (%s, %s) in thread %d run %d",
                        stitch.x,
                        stitch.y,
                        thread_index,
                        run_index,
                    )
                    continue
                if stitch.command in (StitchCommand.TRIM, StitchCommand.COLOR_CHANGE) and last is None:
                    continue
                yield stitch
                last = stitch


# Settings -------------------------------------------------------------------
@dataclass
class StitchSettings:
    stitch_length: float = 3.0
    min_stitch_length: float = 1.0
    resample_noise: float = 0.0
    stroke_weight: float = 0.0
    stroke_mode: StrokeMode = StrokeMode.STRAIGHT
    jump_threshold: float = 10.0
    stitch_width: float = 0.2
    rng: random.Random = field(default_factory=random.Random, repr=False, compare=False)

    def __post_init__(self) -> None:
        self.stroke_mode = StrokeMode.parse(self.stroke_mode)
        if self.stitch_length <= 0:
            raise SettingsError(f"stitch_length must be positive, got {self.stitch_length}")
        if self.min_stitch_length < 0 or self.min_stitch_length > self.stitch_length:
            raise SettingsError(
                f"min_stitch_length must be within [0, stitch_length], got {self.min_stitch_length}"
            )
        if not 0.0 <= self.resample_noise <= 1.0:
            raise SettingsError(f"resample_noise must be within [0, 1], got {self.resample_noise}")
        if self.stroke_weight < 0:
            raise SettingsError(f"stroke_weight must not be negative, got {self.stroke_weight}")
        if self.stitch_width <= 0:
            raise SettingsError(f"stitch_width must be positive, got {self.stitch_width}")

    @property
    def effective_mode(self) -> StrokeMode:
        return StrokeMode.STRAIGHT if self.stroke_weight <= 0 else self.stroke_mode

    def with_seed(self, seed: int) -> "StitchSettings":
        return replace(self, rng=random.Random(seed))


@dataclass
class FillSettings:
    stitch_length: float = 3.0
    spacing: float = 3.0
    min_stitch_length: float = 0.5
    resample_noise: float = 0.0
    angle: float = 0.0
    tie_distance: float = 15.0
    alternate_angle: bool = False
    jump_threshold: float = 10.0
    region_distance_factor: float = 3.0
    rng: random.Random = field(default_factory=random.Random, repr=False, compare=False)

    def __post_init__(self) -> None:
        if self.stitch_length <= 0:
            raise SettingsError(f"stitch_length must be positive, got {self.stitch_length}")
        if self.spacing <= 0:
            raise SettingsError(f"spacing must be positive, got {self.spacing}")
        if self.min_stitch_length < 0 or self.min_stitch_length > self.stitch_length:
            raise SettingsError(
                f"min_stitch_length must be within [0, stitch_length], got {self.min_stitch_length}"
            )
        if not 0.0 <= self.resample_noise <= 1.0:
            raise SettingsError(f"resample_noise must be within [0, 1], got {self.resample_noise}")
        if self.region_distance_factor <= 0:
            raise SettingsError("region_distance_factor must be positive")

    @property
    def region_threshold(self) -> float:
        return self.spacing * self.region_distance_factor

    def with_seed(self, seed: int) -> "FillSettings":
        return replace(self, rng=random.Random(seed))


SettingsT = TypeVar("SettingsT", StitchSettings, FillSettings)


def _snake_case(name: str) -> str:
    out = []
    for ch in name:
        if ch.isupper():
            out.append("_")
            out.append(ch.lower())
        else:
            out.append(ch)
    return "".join(out)


def settings_from_mapping(cls: Type[SettingsT], mapping: Mapping[str, Any], seed: Optional[int] = None) -> SettingsT:
    """Build settings from a plain mapping accepting camelCase or snake_case keys."""
    known = {f.name for f in fields(cls) if f.name != "rng"}
    kwargs: Dict[str, Any] = {}
    for key, value in mapping.items():
        name = _snake_case(key)
        if name == "seed":
            seed = int(value)
            continue
        if name not in known:
            logger.warning("Ignoring unknown %s option %r", cls.__name__, key)
            continue
        kwargs[name] = value
    try:
        settings = cls(**kwargs)
    except TypeError as exc:
        raise SettingsError(str(exc)) from exc
    if seed is not None:
        settings = settings.with_seed(seed)
    return settings


# Serialization ----------------------------------------------------------------
def _round(value: float, precision: int) -> float:
    return round(value, precision)


def _run_distance(run: Run) -> float:
    if not isinstance(run, SewingRun):
        return 0.0
    pts = [stitch.point for stitch in run.stitches]
    return sum(distance(a, b) for a, b in zip(pts, pts[1:]))


def pattern_bounds(pattern: Pattern) -> Tuple[float, float, float, float]:
    points = [pt for pt in pattern.all_points() if math.isfinite(pt[0]) and math.isfinite(pt[1])]
    if not points:
        return (0.0, 0.0, 0.0, 0.0)
    xs = [pt[0] for pt in points]
    ys = [pt[1] for pt in points]
    return (min(xs), min(ys), max(xs), max(ys))


def pattern_to_dict(pattern: Pattern, title: str = "Untitled Pattern", precision: int = 2) -> Dict[str, Any]:
    validate_pattern(pattern)
    min_x, min_y, max_x, max_y = pattern_bounds(pattern)
    threads: List[Dict[str, Any]] = []
    total_runs = 0
    total_distance = 0.0
    sewing_runs = 0
    palette: List[str] = []
    for thread_index, thread in enumerate(pattern.threads):
        runs: List[Dict[str, Any]] = []
        thread_distance = 0.0
        for run_index, run in enumerate(thread.runs):
            run_distance = _run_distance(run)
            thread_distance += run_distance
            stitches = []
            for stitch in run.stitches:
                item: Dict[str, Any] = {"x": _round(stitch.x, precision), "y": _round(stitch.y, precision)}
                if stitch.command is not None:
                    item["command"] = stitch.command.value
                stitches.append(item)
            runs.append(
                {
                    "id": run_index,
                    "kind": run.kind,
                    "stitches": stitches,
                    "statistics": {"stitchCount": len(run), "distance": _round(run_distance, precision)},
                }
            )
            if isinstance(run, SewingRun):
                sewing_runs += 1
        total_runs += len(thread.runs)
        total_distance += thread_distance
        if thread.hex_color not in palette:
            palette.append(thread.hex_color)
        r, g, b = thread.color
        threads.append(
            {
                "id": thread_index,
                "color": {"r": int(r), "g": int(g), "b": int(b), "hex": thread.hex_color},
                "weight": thread.weight,
                "runs": runs,
                "statistics": {
                    "totalStitches": thread.stitch_count(),
                    "totalRuns": len(thread.runs),
                    "totalDistance": _round(thread_distance, precision),
                },
            }
        )

    total_stitches = sum(thread.stitch_count() for thread in pattern.threads)
    segments = total_stitches - sewing_runs
    return {
        "format": FORMAT_NAME,
        "version": FORMAT_VERSION,
        "title": title,
        "width": pattern.width,
        "height": pattern.height,
        "metadata": {
            "totalThreads": len(pattern.threads),
            "totalStitches": total_stitches,
            "totalRuns": total_runs,
            "units": "mm",
        },
        "bounds": {
            "minX": _round(min_x, precision),
            "minY": _round(min_y, precision),
            "maxX": _round(max_x, precision),
            "maxY": _round(max_y, precision),
            "width": _round(max_x - min_x, precision),
            "height": _round(max_y - min_y, precision),
        },
        "threads": threads,
        "statistics": {
            "totalDistance": _round(total_distance, precision),
            "averageStitchLength": _round(total_distance / segments, precision) if segments > 0 else 0.0,
            "colorPalette": palette,
        },
    }


def pattern_to_json(pattern: Pattern, title: str = "Untitled Pattern", precision: int = 2, compact: bool = False) -> str:
    data = pattern_to_dict(pattern, title=title, precision=precision)
    if compact:
        return json.dumps(data, separators=(",", ":"))
    return json.dumps(data, indent=2)


def _parse_color(raw: Any) -> Color:
    if isinstance(raw, Mapping):
        if all(key in raw for key in ("r", "g", "b")):
            return (int(raw["r"]), int(raw["g"]), int(raw["b"]))
        if "hex" in raw:
            parsed = hex_to_rgb(str(raw["hex"]))
            if parsed is not None:
                return parsed
    if isinstance(raw, str):
        parsed = hex_to_rgb(raw)
        if parsed is not None:
            return parsed
    if isinstance(raw, Sequence) and len(raw) >= 3:
        return (int(raw[0]), int(raw[1]), int(raw[2]))
    return (0, 0, 0)


def _parse_stitch(raw: Any, where: str) -> Stitch:
    if not isinstance(raw, Mapping):
        raise PatternFormatError(f"{where}: stitch must be an object")
    x = raw.get("x")
    y = raw.get("y")
    if isinstance(x, bool) or isinstance(y, bool) or not isinstance(x, (int, float)) or not isinstance(y, (int, float)):
        raise PatternFormatError(f"{where}: invalid coordinates")
    command = raw.get("command")
    try:
        parsed = StitchCommand(command) if command else None
    except ValueError:
        raise PatternFormatError(f"{where}: unknown command {command!r}") from None
    return Stitch(float(x), float(y), parsed)


def pattern_from_dict(data: Mapping[str, Any]) -> Pattern:
    """Rebuild a pattern from ``pattern_to_dict`` output, validating its shape."""
    if not isinstance(data, Mapping):
        raise PatternFormatError("Root must be an object")
    if data.get("format") not in (None, FORMAT_NAME):
        logger.warning("Pattern format %r may not be compatible", data.get("format"))
    raw_threads = data.get("threads")
    if not isinstance(raw_threads, list):
        raise PatternFormatError("Missing or invalid threads array")

    pattern = Pattern(width=float(data.get("width", 0.0) or 0.0), height=float(data.get("height", 0.0) or 0.0))
    for thread_index, raw_thread in enumerate(raw_threads):
        if not isinstance(raw_thread, Mapping) or not isinstance(raw_thread.get("runs"), list):
            raise PatternFormatError(f"Thread {thread_index}: missing or invalid runs array")
        index = pattern.add_thread(_parse_color(raw_thread.get("color")), float(raw_thread.get("weight", 0.2)))
        for run_index, raw_run in enumerate(raw_thread["runs"]):
            where = f"Thread {thread_index}, run {run_index}"
            if not isinstance(raw_run, Mapping) or not isinstance(raw_run.get("stitches"), list):
                raise PatternFormatError(f"{where}: missing or invalid stitches array")
            stitches = [_parse_stitch(raw, where) for raw in raw_run["stitches"]]
            kind = raw_run.get("kind", "sewing")
            if kind == "trim" or (len(stitches) == 1 and stitches[0].command == StitchCommand.TRIM):
                pattern.add_run(index, TrimRun(stitches[0].x, stitches[0].y))
            elif kind == "colorChange" or (len(stitches) == 1 and stitches[0].command == StitchCommand.COLOR_CHANGE):
                pattern.add_run(index, ColorChangeRun(stitches[0].x, stitches[0].y))
            else:
                pattern.add_run(index, SewingRun(stitches))
    return pattern


def pattern_from_json(text: str) -> Pattern:
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise PatternFormatError(f"Invalid pattern JSON: {exc}") from exc
    return pattern_from_dict(data)


def split_control_stitches(stitches: Iterable[Stitch]) -> List[Run]:
    """Group a generator's stitch list into sewing runs and singleton control runs."""
    runs: List[Run] = []
    current: List[Stitch] = []
    for stitch in stitches:
        if stitch.command == StitchCommand.TRIM:
            if current:
                runs.append(SewingRun(current))
                current = []
            runs.append(TrimRun(stitch.x, stitch.y))
        elif stitch.command == StitchCommand.COLOR_CHANGE:
            if current:
                runs.append(SewingRun(current))
                current = []
            runs.append(ColorChangeRun(stitch.x, stitch.y))
        else:
            current.append(stitch)
    if current:
        runs.append(SewingRun(current))
    return runs
