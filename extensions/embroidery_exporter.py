#!/usr/bin/env python3
"""
Inkscape output extension: stitch every shape of the document and save it
as Tajima DST, Brother PES or G-code.
"""

from __future__ import annotations

import logging
import math
import sys

import inkex
from inkex.localization import inkex_gettext as _

from embroidery_core import EXPORT_PROFILES
from embroidery_logging import setup_logging
from embroidery_model import EmbroideryError, FillSettings, Pattern, StitchSettings, settings_from_mapping
from embroidery_recorder import EmbroideryRecorder
from embroidery_svg import document_px_to_mm, document_shapes, document_size_mm, record_svg_paths

logger = logging.getLogger(__name__)


class EmbroideryOutputExtension(inkex.OutputExtension):
    """Entry point for Inkscape."""

    def add_arguments(self, pars) -> None:
        pars.add_argument("--format", default="DST", help="Export profile key (DST, PES or GCODE)")
        pars.add_argument("--title", default="", help="Pattern title written to the file header")
        pars.add_argument("--stitch_length", type=float, default=3.0)
        pars.add_argument("--min_stitch_length", type=float, default=1.0)
        pars.add_argument("--noise", type=float, default=0.0)
        pars.add_argument("--stroke_weight", type=float, default=0.0)
        pars.add_argument("--stroke_mode", default="straight")
        pars.add_argument("--fill_spacing", type=float, default=3.0)
        pars.add_argument("--fill_angle", type=float, default=0.0, help="Fill angle in degrees")
        pars.add_argument("--alternate_angle", type=inkex.Boolean, default=False)
        pars.add_argument("--tolerance", type=float, default=0.5)
        pars.add_argument("--verbose", type=inkex.Boolean, default=False)
        pars.add_argument("--notebook", default="stroke")

    def build_recorder(self) -> EmbroideryRecorder:
        opts = self.options
        stitch_settings = settings_from_mapping(
            StitchSettings,
            {
                "stitch_length": opts.stitch_length,
                "min_stitch_length": min(opts.min_stitch_length, opts.stitch_length),
                "resample_noise": opts.noise,
                "stroke_weight": opts.stroke_weight,
                "stroke_mode": opts.stroke_mode,
            },
        )
        fill_settings = settings_from_mapping(
            FillSettings,
            {
                "spacing": opts.fill_spacing,
                "angle": math.radians(opts.fill_angle),
                "alternate_angle": opts.alternate_angle,
            },
        )
        return EmbroideryRecorder(stitch_settings, fill_settings)

    def record_document(self) -> Pattern:
        px_to_mm = document_px_to_mm(self.svg)
        recorder = self.build_recorder()
        recorder.begin_record(*document_size_mm(self.svg, px_to_mm))
        count = record_svg_paths(document_shapes(self.svg), recorder, px_to_mm, self.options.tolerance)
        logger.info("Recorded %d subpaths", count)
        return recorder.end_record()

    def save(self, stream) -> None:  # pragma: no cover - Inkscape runtime
        setup_logging(logging.DEBUG if self.options.verbose else logging.WARNING, stream=sys.stderr)
        profile = EXPORT_PROFILES.get(str(self.options.format).upper())
        if profile is None:
            raise inkex.AbortExtension(_("Unsupported export format: {}").format(self.options.format))

        try:
            pattern = self.record_document()
        except EmbroideryError as exc:
            raise inkex.AbortExtension(str(exc))
        if pattern.is_empty():
            raise inkex.AbortExtension(_("No stitchable shapes were found."))

        title = self.options.title or getattr(self.svg, "name", None) or "Untitled"
        stream.write(profile.encoder(pattern, title))


if __name__ == "__main__":  # pragma: no cover
    EmbroideryOutputExtension().run()
