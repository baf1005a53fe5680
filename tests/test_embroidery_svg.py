import tempfile
import unittest
from pathlib import Path

import sys

ROOT = Path(__file__).resolve().parents[1]
EXT_DIR = ROOT / "extensions"
if str(EXT_DIR) not in sys.path:
    sys.path.insert(0, str(EXT_DIR))

from inkex.elements import PathElement  # noqa: E402

import embroidery_svg as esvg  # noqa: E402
from embroidery_recorder import EmbroideryRecorder  # noqa: E402

DOCUMENT = """<?xml version="1.0" encoding="UTF-8"?>
<svg xmlns="http://www.w3.org/2000/svg" width="100mm" height="80mm" viewBox="0 0 100 80">
  <rect id="patch" x="10" y="10" width="30" height="20" style="fill:#00ff00;stroke:none"/>
  <path id="seam" d="M 0 50 L 60 50" style="fill:none;stroke:#ff0000"/>
</svg>
"""


class FlattenTests(unittest.TestCase):
    def test_closed_path(self) -> None:
        element = PathElement.new(path="M 0 0 L 10 0 L 10 10 Z")
        subpaths = esvg.flatten_path_element(element)
        self.assertEqual(len(subpaths), 1)
        points, closed = subpaths[0]
        self.assertTrue(closed)
        self.assertEqual(len(points), 3)
        self.assertAlmostEqual(points[1][0], 10.0)

    def test_open_path(self) -> None:
        element = PathElement.new(path="M 0 0 L 5 5")
        points, closed = esvg.flatten_path_element(element)[0]
        self.assertFalse(closed)
        self.assertEqual(len(points), 2)

    def test_colors_from_style(self) -> None:
        element = PathElement.new(path="M 0 0 L 5 5")
        element.set("style", "stroke:#ff8000;fill:none")
        self.assertEqual(esvg.element_colors(element), ((255, 128, 0), None))


class RecordSvgTests(unittest.TestCase):
    def test_record_document_in_millimetres(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            source = Path(tmp) / "drawing.svg"
            source.write_text(DOCUMENT, encoding="utf-8")
            recorder = EmbroideryRecorder()
            count = esvg.record_svg_file(source, recorder)
            pattern = recorder.end_record()

        self.assertEqual(count, 2)
        self.assertAlmostEqual(pattern.width, 100.0, places=3)
        self.assertAlmostEqual(pattern.height, 80.0, places=3)
        colors = [thread.color for thread in pattern.threads]
        self.assertEqual(colors, [(0, 0, 0), (0, 255, 0), (255, 0, 0)])
        self.assertEqual(pattern.threads[0].stitch_count(), 0)

        green_points = [s.point for run in pattern.threads[1].sewing_runs() for s in run.stitches]
        self.assertTrue(green_points)
        for x, y in green_points:
            self.assertTrue(10.0 - 1e-6 <= x <= 40.0 + 1e-6)
            self.assertTrue(10.0 - 1e-6 <= y <= 30.0 + 1e-6)

        red_points = [s.point for run in pattern.threads[2].sewing_runs() for s in run.stitches]
        self.assertAlmostEqual(max(x for x, _ in red_points), 60.0, places=3)


if __name__ == "__main__":
    unittest.main()
