#!/usr/bin/env python3
"""
Command line export: turn an SVG drawing, a JSON drawing job or a saved
stitch JSON file into DST, PES, G-code, JSON or an SVG preview.

Job files look like::

    {
      "settings": {"stitchLength": 3, "strokeMode": "zigzag", "strokeWeight": 2},
      "fill_settings": {"spacing": 2, "angle": 0.5},
      "width": 100, "height": 100,
      "shapes": [
        {"type": "rect", "x": 10, "y": 10, "w": 50, "h": 30, "fill": [255, 0, 0]},
        {"type": "polyline", "points": [[0, 0], [40, 20]], "stroke": "#0000ff"}
      ]
    }
"""

from __future__ import annotations

import argparse
import json
import logging
import math
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence

from embroidery_core import EXPORT_PROFILES, export_pattern, profile_for_path
from embroidery_logging import setup_logging
from embroidery_model import (
    EmbroideryError,
    FillSettings,
    Pattern,
    PatternFormatError,
    StitchSettings,
    hex_to_rgb,
    pattern_from_dict,
    settings_from_mapping,
)
from embroidery_recorder import EmbroideryRecorder

logger = logging.getLogger(__name__)


def _color(value: Any) -> Optional[tuple]:
    if value is None or value is False:
        return None
    if isinstance(value, str):
        parsed = hex_to_rgb(value)
        if parsed is None:
            raise PatternFormatError(f"Invalid colour {value!r}")
        return parsed
    if isinstance(value, Sequence) and len(value) >= 3:
        return (int(value[0]), int(value[1]), int(value[2]))
    raise PatternFormatError(f"Invalid colour {value!r}")


def _points(shape: Mapping[str, Any]) -> List[tuple]:
    raw = shape.get("points")
    if not isinstance(raw, list):
        raise PatternFormatError(f"Shape {shape.get('type')!r} needs a points list")
    return [(float(x), float(y)) for x, y in raw]


def replay_shape(recorder: EmbroideryRecorder, shape: Mapping[str, Any]) -> None:
    kind = str(shape.get("type", "")).lower()
    if "stroke" in shape:
        stroke = _color(shape["stroke"])
        if stroke is None:
            recorder.no_stroke()
        else:
            recorder.stroke(*stroke)
    if "fill" in shape:
        fill = _color(shape["fill"])
        if fill is None:
            recorder.no_fill()
        else:
            recorder.fill(*fill)
    if "strokeWeight" in shape:
        recorder.stroke_weight(float(shape["strokeWeight"]))
    if "strokeMode" in shape:
        recorder.set_stroke_mode(shape["strokeMode"])

    if kind == "line":
        recorder.line(float(shape["x1"]), float(shape["y1"]), float(shape["x2"]), float(shape["y2"]))
    elif kind == "polyline":
        recorder.polyline(_points(shape), closed=bool(shape.get("closed", False)))
    elif kind == "rect":
        recorder.rect(float(shape["x"]), float(shape["y"]), float(shape["w"]), float(shape["h"]))
    elif kind == "ellipse":
        recorder.ellipse(float(shape["x"]), float(shape["y"]), float(shape["w"]), float(shape["h"]))
    elif kind == "point":
        recorder.point(float(shape["x"]), float(shape["y"]))
    elif kind == "shape":
        recorder.shape(_points(shape), closed=bool(shape.get("closed", True)))
    elif kind == "trim":
        recorder.trim_thread()
    elif kind == "outline":
        recorder.outline(
            offset=float(shape.get("offset", 2.0)),
            outline_type=str(shape.get("outlineType", "convex")),
            corner_radius=float(shape.get("cornerRadius", 0.0)),
            thread_index=shape.get("threadIndex"),
        )
    else:
        raise PatternFormatError(f"Unknown shape type {shape.get('type')!r}")


def record_job(job: Mapping[str, Any], recorder: EmbroideryRecorder) -> Pattern:
    shapes = job.get("shapes")
    if not isinstance(shapes, list):
        raise PatternFormatError("Job file needs a shapes array")
    recorder.begin_record(float(job.get("width", 0.0)), float(job.get("height", 0.0)))
    for index, shape in enumerate(shapes):
        if not isinstance(shape, Mapping):
            raise PatternFormatError(f"Shape {index}: must be an object")
        try:
            replay_shape(recorder, shape)
        except EmbroideryError:
            raise
        except (KeyError, TypeError, ValueError) as exc:
            raise PatternFormatError(f"Shape {index}: invalid or missing value ({exc})") from exc
    return recorder.end_record()


def _overrides(args: argparse.Namespace) -> Dict[str, Dict[str, Any]]:
    stitch = {
        "stitch_length": args.stitch_length,
        "min_stitch_length": args.min_stitch_length,
        "resample_noise": args.noise,
        "stroke_weight": args.stroke_weight,
        "stroke_mode": args.stroke_mode,
    }
    fill = {
        "spacing": args.fill_spacing,
        "angle": math.radians(args.fill_angle) if args.fill_angle is not None else None,
    }
    return {
        "stitch": {key: value for key, value in stitch.items() if value is not None},
        "fill": {key: value for key, value in fill.items() if value is not None},
    }


def build_recorder(args: argparse.Namespace, job: Optional[Mapping[str, Any]] = None) -> EmbroideryRecorder:
    job = job or {}
    overrides = _overrides(args)
    stitch_options = dict(job.get("settings") or {})
    stitch_options.update(overrides["stitch"])
    fill_options = dict(job.get("fill_settings") or {})
    fill_options.update(overrides["fill"])
    stitch_settings = settings_from_mapping(StitchSettings, stitch_options, seed=args.seed)
    fill_settings = settings_from_mapping(FillSettings, fill_options, seed=args.seed)
    return EmbroideryRecorder(stitch_settings, fill_settings)


def load_pattern(args: argparse.Namespace) -> Pattern:
    suffix = args.input.suffix.lower()
    if suffix == ".svg":
        from embroidery_svg import record_svg_file

        recorder = build_recorder(args)
        count = record_svg_file(args.input, recorder, tolerance=args.tolerance)
        logger.info("Recorded %d subpaths from %s", count, args.input)
        return recorder.end_record()

    try:
        payload = json.loads(args.input.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise PatternFormatError(f"{args.input}: invalid JSON ({exc})") from exc
    if isinstance(payload, Mapping) and "threads" in payload:
        return pattern_from_dict(payload)
    if not isinstance(payload, Mapping):
        raise PatternFormatError(f"{args.input}: root must be an object")
    return record_job(payload, build_recorder(args, payload))


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    formats = ", ".join(f".{ext}" for profile in EXPORT_PROFILES.values() for ext in profile.extensions)
    parser = argparse.ArgumentParser(description=f"Export embroidery stitches ({formats}).")
    parser.add_argument("input", type=Path, help="SVG drawing, JSON job or stitch JSON file.")
    parser.add_argument("output", type=Path, help="Output file; the extension selects the format.")
    parser.add_argument("--title", default=None, help="Pattern title (defaults to the output name).")
    parser.add_argument("--stitch-length", type=float, default=None, help="Stitch length in mm.")
    parser.add_argument("--min-stitch-length", type=float, default=None, help="Minimum stitch length in mm.")
    parser.add_argument("--noise", type=float, default=None, help="Stitch length noise (0-1).")
    parser.add_argument("--stroke-weight", type=float, default=None, help="Stroke width in mm.")
    parser.add_argument(
        "--stroke-mode",
        choices=["straight", "zigzag", "lines", "sashiko"],
        default=None,
        help="Stroke stitch style.",
    )
    parser.add_argument("--fill-spacing", type=float, default=None, help="Fill row spacing in mm.")
    parser.add_argument("--fill-angle", type=float, default=None, help="Fill angle in degrees.")
    parser.add_argument("--seed", type=int, default=None, help="Seed for stitch length noise.")
    parser.add_argument("--tolerance", type=float, default=0.5, help="Curve flattening tolerance (SVG units).")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging.")
    parser.add_argument("--log-file", default=None, help="Also write the log to this file.")
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    setup_logging(logging.DEBUG if args.verbose else logging.INFO, args.log_file)

    try:
        profile_for_path(args.output)
        pattern = load_pattern(args)
        written = export_pattern(pattern, args.output, title=args.title or args.output.stem)
    except EmbroideryError as exc:
        logger.error("%s", exc)
        return 2
    except OSError as exc:
        logger.error("Export failed: %s", exc)
        return 1

    if written is None:
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
