import json
import tempfile
import unittest
from pathlib import Path

import sys

ROOT = Path(__file__).resolve().parents[1]
EXT_DIR = ROOT / "extensions"
if str(EXT_DIR) not in sys.path:
    sys.path.insert(0, str(EXT_DIR))

import embroidery_core as core  # noqa: E402
from embroidery_dst import HEADER_SIZE, parse_header  # noqa: E402
from embroidery_model import Pattern, SewingRun, Stitch, UnsupportedFormatError  # noqa: E402
from embroidery_pes import read_pec_header  # noqa: E402


def _pattern() -> Pattern:
    pattern = Pattern.new(40.0, 20.0)
    index = pattern.add_thread((0, 128, 0))
    pattern.add_run(index, SewingRun([Stitch(0.0, 0.0), Stitch(10.0, 0.0), Stitch(10.0, 10.0)]))
    return pattern


class ProfileTests(unittest.TestCase):
    def test_profiles_by_extension(self) -> None:
        self.assertIs(core.profile_for_path("out.dst"), core.EXPORT_PROFILES["DST"])
        self.assertIs(core.profile_for_path("OUT.GCODE"), core.EXPORT_PROFILES["GCODE"])
        self.assertIs(core.profile_for_path("job.nc"), core.EXPORT_PROFILES["GCODE"])
        self.assertIs(core.profile_for_path("p.json"), core.EXPORT_PROFILES["JSON"])
        self.assertIs(core.profile_for_path("p.svg"), core.EXPORT_PROFILES["SVG"])
        self.assertIs(core.profile_for_path("p.PES"), core.EXPORT_PROFILES["PES"])

    def test_unknown_extension(self) -> None:
        with self.assertRaises(UnsupportedFormatError):
            core.profile_for_path("design.exp")


class ExportTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.tmp_path = Path(self._tmp.name)

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_export_dst(self) -> None:
        written = core.export_pattern(_pattern(), self.tmp_path / "out.dst", title="square")
        self.assertEqual(written, self.tmp_path / "out.dst")
        data = written.read_bytes()
        self.assertGreater(len(data), HEADER_SIZE)
        self.assertEqual(parse_header(data)["LA"], "square")
        self.assertEqual(data[-3:], bytes((0x00, 0x00, 0xF3)))

    def test_export_pes(self) -> None:
        written = core.export_pattern(_pattern(), self.tmp_path / "out.pes", title="square")
        data = written.read_bytes()
        self.assertTrue(data.startswith(b"#PES0001"))
        fields = read_pec_header(data)
        self.assertEqual(fields["LA"], "square")
        self.assertEqual(len(fields["colors"]), 1)

    def test_export_gcode_alias(self) -> None:
        written = core.export_pattern(_pattern(), self.tmp_path / "out.nc")
        text = written.read_text()
        self.assertIn("G21", text)
        self.assertTrue(text.rstrip().endswith("M30"))

    def test_export_json(self) -> None:
        written = core.export_pattern(_pattern(), self.tmp_path / "out.json", title="demo")
        data = json.loads(written.read_text(encoding="utf-8"))
        self.assertEqual(data["title"], "demo")
        self.assertEqual(data["metadata"]["totalStitches"], 3)

    def test_export_svg(self) -> None:
        written = core.export_pattern(_pattern(), self.tmp_path / "out.svg")
        text = written.read_text(encoding="utf-8")
        self.assertIn("<path", text)
        self.assertIn('stroke="#008000"', text)
        self.assertIn('<g id="thread-1">', text)
        self.assertNotIn('<g id="thread-0">', text)

    def test_unsupported_format_writes_nothing(self) -> None:
        target = self.tmp_path / "out.exp"
        with self.assertRaises(UnsupportedFormatError):
            core.export_pattern(_pattern(), target)
        self.assertFalse(target.exists())

    def test_empty_pattern_is_skipped(self) -> None:
        target = self.tmp_path / "empty.dst"
        with self.assertLogs("embroidery_core", level="WARNING") as captured:
            result = core.export_pattern(Pattern.new(), target)
        self.assertIsNone(result)
        self.assertFalse(target.exists())
        self.assertIn("No embroidery pattern to export", captured.output[0])


class SvgPreviewTests(unittest.TestCase):
    def test_jump_starts_new_subpath(self) -> None:
        pattern = _pattern()
        pattern.threads[1].runs[0].stitches[2].command = core.StitchCommand.JUMP
        svg = core.render_svg(pattern)
        self.assertIn('d="M0,0 L10,0 M10,10"', svg)

    def test_stitch_markers_optional(self) -> None:
        self.assertIn('r="0.3"', core.render_svg(_pattern()))
        self.assertNotIn("<circle", core.render_svg(_pattern(), show_stitches=False))

    def test_viewbox_includes_margin(self) -> None:
        svg = core.render_svg(_pattern())
        self.assertIn('viewBox="-5 -5 20 20"', svg)


if __name__ == "__main__":
    unittest.main()
