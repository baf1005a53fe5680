import math
import unittest
from pathlib import Path

import sys

ROOT = Path(__file__).resolve().parents[1]
EXT_DIR = ROOT / "extensions"
if str(EXT_DIR) not in sys.path:
    sys.path.insert(0, str(EXT_DIR))

from embroidery_model import (  # noqa: E402
    EmbroideryError,
    FillSettings,
    SewingRun,
    StitchCommand,
    StrokeMode,
    TrimRun,
)
from embroidery_recorder import EmbroideryRecorder  # noqa: E402


class SessionTests(unittest.TestCase):
    def test_drawing_requires_recording(self) -> None:
        recorder = EmbroideryRecorder()
        self.assertFalse(recorder.recording)
        with self.assertRaises(EmbroideryError):
            recorder.line(0.0, 0.0, 10.0, 0.0)
        with self.assertRaises(EmbroideryError):
            recorder.end_record()

    def test_begin_and_end(self) -> None:
        recorder = EmbroideryRecorder()
        pattern = recorder.begin_record(100.0, 50.0)
        self.assertTrue(recorder.recording)
        recorder.line(0.0, 0.0, 30.0, 0.0)
        finished = recorder.end_record()
        self.assertIs(finished, pattern)
        self.assertFalse(recorder.recording)
        self.assertEqual((finished.width, finished.height), (100.0, 50.0))
        self.assertEqual(finished.stitch_count, 11)


class ThreadTests(unittest.TestCase):
    def setUp(self) -> None:
        self.recorder = EmbroideryRecorder()
        self.pattern = self.recorder.begin_record(100.0, 100.0)

    def test_color_switch_trims_and_jumps(self) -> None:
        self.recorder.line(0.0, 0.0, 10.0, 0.0)
        self.recorder.stroke(255, 0, 0)
        self.recorder.line(50.0, 50.0, 60.0, 50.0)

        self.assertEqual(len(self.pattern.threads), 2)
        black, red = self.pattern.threads
        self.assertIsInstance(black.runs[-1], TrimRun)
        self.assertEqual((black.runs[-1].x, black.runs[-1].y), (10.0, 0.0))
        self.assertEqual(red.color, (255, 0, 0))
        self.assertEqual(red.runs[0].stitches[0].command, StitchCommand.JUMP)

    def test_existing_thread_is_reused(self) -> None:
        self.recorder.line(0.0, 0.0, 10.0, 0.0)
        self.recorder.stroke(255, 0, 0)
        self.recorder.line(10.0, 0.0, 10.0, 5.0)
        self.recorder.stroke(0, 0, 0)
        self.recorder.line(10.0, 5.0, 0.0, 5.0)
        self.assertEqual(len(self.pattern.threads), 2)
        self.assertIsInstance(self.pattern.threads[1].runs[-1], TrimRun)
        self.assertEqual(len(self.pattern.threads[0].sewing_runs()), 2)

    def test_short_hop_is_not_a_jump(self) -> None:
        self.recorder.line(0.0, 0.0, 10.0, 0.0)
        self.recorder.line(12.0, 0.0, 20.0, 0.0)
        second = self.pattern.threads[0].runs[-1]
        self.assertIsNone(second.stitches[0].command)

    def test_trim_thread(self) -> None:
        with self.assertLogs("embroidery_recorder", level="WARNING"):
            self.recorder.trim_thread()
        self.recorder.line(0.0, 0.0, 10.0, 0.0)
        self.recorder.trim_thread()
        self.assertIsInstance(self.pattern.threads[0].runs[-1], TrimRun)

    def test_new_thread_takes_stroke_weight(self) -> None:
        self.recorder.stroke_weight(2.0)
        self.recorder.stroke(0, 0, 255)
        self.recorder.line(0.0, 0.0, 10.0, 0.0)
        self.assertEqual(self.pattern.threads[1].weight, 2.0)


class StateTests(unittest.TestCase):
    def setUp(self) -> None:
        self.recorder = EmbroideryRecorder()
        self.recorder.begin_record()

    def test_set_stitch_clamps(self) -> None:
        self.recorder.set_stitch(5.0, 0.01, 3.0)
        settings = self.recorder.stitch_settings
        self.assertEqual(settings.stitch_length, 0.1)
        self.assertEqual(settings.min_stitch_length, 0.1)
        self.assertEqual(settings.resample_noise, 1.0)

    def test_invalid_stroke_mode_keeps_previous(self) -> None:
        self.recorder.set_stroke_mode("zigzag")
        with self.assertLogs("embroidery_recorder", level="WARNING"):
            self.recorder.set_stroke_mode("satin")
        self.assertEqual(self.recorder.stitch_settings.stroke_mode, StrokeMode.ZIGZAG)

    def test_no_stroke_records_nothing(self) -> None:
        self.recorder.no_stroke()
        self.recorder.line(0.0, 0.0, 10.0, 0.0)
        self.recorder.point(1.0, 1.0)
        self.assertTrue(self.recorder.pattern.is_empty())


class PrimitiveTests(unittest.TestCase):
    def setUp(self) -> None:
        self.recorder = EmbroideryRecorder(fill_settings=FillSettings(spacing=2.0))
        self.pattern = self.recorder.begin_record()

    def test_filled_rect_stays_inside(self) -> None:
        self.recorder.no_stroke()
        self.recorder.fill(0, 0, 255)
        self.recorder.rect(0.0, 0.0, 20.0, 10.0)
        thread = self.pattern.threads[1]
        self.assertEqual(thread.color, (0, 0, 255))
        points = [stitch.point for run in thread.sewing_runs() for stitch in run.stitches]
        self.assertTrue(points)
        for x, y in points:
            self.assertTrue(-1e-9 <= x <= 20.0 + 1e-9 and -1e-9 <= y <= 10.0 + 1e-9)

    def test_rect_outline_is_closed(self) -> None:
        self.recorder.rect(0.0, 0.0, 20.0, 10.0)
        stitches = self.pattern.threads[0].runs[0].stitches
        self.assertEqual(stitches[0].point, (0.0, 0.0))
        self.assertEqual(stitches[-1].point, (0.0, 0.0))

    def test_ellipse_is_centred(self) -> None:
        self.recorder.ellipse(50.0, 50.0, 20.0, 10.0)
        points = self.pattern.all_points()
        self.assertGreaterEqual(len(points), 8)
        for x, y in points:
            self.assertLessEqual(abs(x - 50.0), 10.0 + 1e-9)
            self.assertLessEqual(abs(y - 50.0), 5.0 + 1e-9)

    def test_filled_shape(self) -> None:
        self.recorder.fill(255, 255, 0)
        self.recorder.shape([(0.0, 0.0), (30.0, 0.0), (15.0, 20.0)], closed=True)
        self.assertEqual(len(self.pattern.threads), 2)
        self.assertGreater(self.pattern.threads[1].stitch_count(), 0)
        outline = self.pattern.threads[0].runs[-1].stitches
        self.assertEqual(outline[-1].point, (0.0, 0.0))

    def test_alternate_angle_rotates_every_other_fill(self) -> None:
        recorder = EmbroideryRecorder(fill_settings=FillSettings(spacing=2.0, alternate_angle=True))
        pattern = recorder.begin_record()
        recorder.no_stroke()
        recorder.fill(0, 0, 255)
        headings = []
        for x in (0.0, 40.0):
            recorder.rect(x, 0.0, 20.0, 10.0)
            stitches = pattern.threads[1].runs[-1].stitches
            headings.append(math.degrees(math.atan2(stitches[1].y - stitches[0].y, stitches[1].x - stitches[0].x)))
        self.assertAlmostEqual(headings[0], 0.0, places=6)
        self.assertAlmostEqual(headings[1], 90.0, places=6)

    def test_outline_around_recorded_stitches(self) -> None:
        self.recorder.line(0.0, 0.0, 10.0, 0.0)
        self.recorder.line(10.0, 0.0, 10.0, 10.0)
        shape = self.recorder.outline(offset=2.0, outline_type="bounding")
        self.assertEqual(shape[0], shape[-1])
        self.assertEqual(shape[0], (-2.0, -2.0))
        last_run = self.pattern.threads[0].runs[-1]
        self.assertIsInstance(last_run, SewingRun)
        self.assertEqual(last_run.stitches[-1].point, (-2.0, -2.0))

    def test_polyline_skips_non_finite_vertex(self) -> None:
        with self.assertLogs("embroidery_stitches", level="WARNING"):
            self.recorder.polyline([(0.0, 0.0), (float("nan"), 5.0), (10.0, 0.0)])
        stitches = self.pattern.threads[0].runs[-1].stitches
        self.assertTrue(all(math.isfinite(s.x) and math.isfinite(s.y) for s in stitches))
        self.assertEqual(stitches[0].point, (0.0, 0.0))
        self.assertEqual(stitches[-1].point, (10.0, 0.0))

    def test_non_finite_primitives_are_ignored(self) -> None:
        self.recorder.fill(255, 0, 0)
        with self.assertLogs("embroidery_recorder", level="WARNING"):
            self.recorder.rect(float("nan"), 0.0, 10.0, 10.0)
            self.recorder.ellipse(0.0, 0.0, float("inf"), 10.0)
            self.recorder.point(0.0, float("nan"))
        self.assertTrue(self.pattern.is_empty())

    def test_filled_shape_skips_non_finite_vertex(self) -> None:
        self.recorder.no_stroke()
        self.recorder.fill(255, 0, 0)
        with self.assertLogs("embroidery_stitches", level="WARNING"):
            self.recorder.shape([(0.0, 0.0), (20.0, 0.0), (float("nan"), 1.0), (20.0, 20.0)], closed=True)
        points = self.pattern.all_points()
        self.assertTrue(points)
        self.assertTrue(all(math.isfinite(x) and math.isfinite(y) for x, y in points))

    def test_outline_without_stitches(self) -> None:
        with self.assertLogs("embroidery_recorder", level="WARNING"):
            self.assertEqual(self.recorder.outline(), [])


if __name__ == "__main__":
    unittest.main()
