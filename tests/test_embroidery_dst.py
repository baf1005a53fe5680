import math
import tempfile
import unittest
from pathlib import Path

import sys

import pyembroidery
from pyembroidery.EmbConstant import COMMAND_MASK, STITCH

ROOT = Path(__file__).resolve().parents[1]
EXT_DIR = ROOT / "extensions"
if str(EXT_DIR) not in sys.path:
    sys.path.insert(0, str(EXT_DIR))

import embroidery_dst as dst  # noqa: E402
from embroidery_model import (  # noqa: E402
    Pattern,
    PatternFormatError,
    SewingRun,
    Stitch,
    Thread,
    TrimRun,
)


def _pattern(*runs, color=(0, 0, 0)) -> Pattern:
    pattern = Pattern(threads=[Thread(color=color)])
    for run in runs:
        pattern.add_run(0, run)
    return pattern


class RecordEncodingTests(unittest.TestCase):
    def test_zero_delta_sets_marker_bits(self) -> None:
        self.assertEqual(dst.encode_record(0, 0), bytes((0x00, 0x00, 0x03)))

    def test_unit_deltas(self) -> None:
        self.assertEqual(dst.encode_record(1, 0), bytes((0x01, 0x00, 0x03)))
        self.assertEqual(dst.encode_record(-1, 0), bytes((0x02, 0x00, 0x03)))
        self.assertEqual(dst.encode_record(0, 1), bytes((0x80, 0x00, 0x03)))
        self.assertEqual(dst.encode_record(0, -1), bytes((0x40, 0x00, 0x03)))

    def test_maximum_delta(self) -> None:
        self.assertEqual(dst.encode_record(121, 0), bytes((0x05, 0x05, 0x07)))
        self.assertEqual(dst.encode_record(0, -121), bytes((0x50, 0x50, 0x13)))

    def test_jump_and_control_records(self) -> None:
        self.assertEqual(dst.encode_record(0, 0, dst.RecordKind.JUMP)[2], 0x83)
        self.assertEqual(dst.encode_record(5, 5, dst.RecordKind.COLOR_CHANGE), bytes((0, 0, 0xC3)))
        self.assertEqual(dst.encode_record(0, 0, dst.RecordKind.END), bytes((0, 0, 0xF3)))

    def test_out_of_range_delta_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            dst.encode_record(122, 0)

    def test_every_representable_delta_decodes_exactly(self) -> None:
        for value in range(-dst.MAX_DELTA, dst.MAX_DELTA + 1):
            dx, dy, kind = dst.decode_record(dst.encode_record(value, -value, dst.RecordKind.JUMP))
            self.assertEqual((dx, dy, kind), (value, -value, dst.RecordKind.JUMP))

    def test_decode_control_records(self) -> None:
        self.assertEqual(dst.decode_record(bytes((0, 0, 0xC3))), (0, 0, dst.RecordKind.COLOR_CHANGE))
        self.assertEqual(dst.decode_record(bytes((0, 0, 0xF3))), (0, 0, dst.RecordKind.END))


class EncoderStateTests(unittest.TestCase):
    def test_long_move_splits_into_jumps(self) -> None:
        encoder = dst.DstEncoder()
        encoder.move(150, 0, dst.RecordKind.STITCH)
        records = dst.decode_records(bytes(encoder.data))
        self.assertEqual(records, [(121, 0, dst.RecordKind.JUMP), (29, 0, dst.RecordKind.STITCH)])

    def test_split_count_and_sum(self) -> None:
        for target in (121, 242, 243, 500, -500, 1000):
            encoder = dst.DstEncoder()
            encoder.move(target, 0, dst.RecordKind.STITCH)
            records = dst.decode_records(bytes(encoder.data))
            self.assertEqual(len(records), math.ceil(abs(target) / 121))
            self.assertEqual(sum(dx for dx, _, _ in records), target)
            self.assertTrue(all(abs(dx) <= 121 for dx, _, _ in records))

    def test_zero_move_emits_nothing(self) -> None:
        encoder = dst.DstEncoder()
        encoder.move(0, 0, dst.RecordKind.STITCH)
        self.assertEqual(len(encoder.data), 0)

    def test_trim_returns_to_position(self) -> None:
        encoder = dst.DstEncoder()
        encoder.move(40, -20, dst.RecordKind.STITCH)
        encoder.trim(40, -20)
        records = dst.decode_records(bytes(encoder.data))
        trim_records = records[-3:]
        self.assertEqual([(dx, dy) for dx, dy, _ in trim_records], [(3, 3), (3, -6), (-6, 3)])
        self.assertTrue(all(kind == dst.RecordKind.JUMP for _, _, kind in trim_records))
        self.assertEqual(sum(dx for dx, _, _ in trim_records), 0)
        self.assertEqual(sum(dy for _, dy, _ in trim_records), 0)
        self.assertEqual((encoder.current_x, encoder.current_y), (40, -20))

    def test_to_units_rounds_half_up(self) -> None:
        self.assertEqual(dst.to_units(0.25), 3)
        self.assertEqual(dst.to_units(-0.25), -2)
        self.assertEqual(dst.to_units(12.0), 120)


class DstFileTests(unittest.TestCase):
    def test_header_layout(self) -> None:
        header = dst.build_header("sample", 12, 1, (-50, -20, 50, 20), (7, -3))
        self.assertEqual(len(header), dst.HEADER_SIZE)
        text = header.split(b"\x1a")[0].decode("ascii")
        self.assertTrue(text.startswith("LA:" + "sample".ljust(16) + "\r"))
        self.assertIn("ST:" + "12".rjust(7) + "\r", text)
        self.assertIn("CO:  1\r", text)
        self.assertIn("AX:+    7\r", text)
        self.assertIn("AY:-    3\r", text)
        self.assertTrue(text.endswith("PD:******\r"))
        self.assertTrue(header.rstrip(b" ").endswith(b"\x1a"))

    def test_encode_centres_on_bounding_box(self) -> None:
        data = dst.encode_dst(_pattern(SewingRun([Stitch(0.0, 0.0), Stitch(10.0, 0.0)])), "line")
        self.assertEqual(len(data), dst.HEADER_SIZE + 3 * 3)
        fields = dst.parse_header(data)
        self.assertEqual(fields["LA"], "line")
        self.assertEqual(fields["ST"], 2)
        self.assertEqual(fields["CO"], 0)
        self.assertEqual(fields["+X"], 50)
        self.assertEqual(fields["-X"], 50)
        self.assertEqual(fields["AX"], 50)
        records = dst.decode_records(data)
        self.assertEqual(records[0], (-50, 0, dst.RecordKind.JUMP))
        self.assertEqual(records[1], (100, 0, dst.RecordKind.STITCH))
        self.assertEqual(records[-1], (0, 0, dst.RecordKind.END))

    def test_y_axis_points_up(self) -> None:
        data = dst.encode_dst(_pattern(SewingRun([Stitch(0.0, 0.0), Stitch(0.0, 10.0)])))
        records = dst.decode_records(data)
        self.assertEqual(records[0], (0, 50, dst.RecordKind.JUMP))
        self.assertEqual(records[1], (0, -100, dst.RecordKind.STITCH))

    def test_trim_and_color_change(self) -> None:
        pattern = _pattern(
            SewingRun([Stitch(0.0, 0.0), Stitch(5.0, 0.0)]),
            TrimRun(5.0, 0.0),
        )
        index = pattern.add_thread((255, 0, 0))
        pattern.add_run(index, SewingRun([Stitch(5.0, 5.0), Stitch(10.0, 5.0)]))
        data = dst.encode_dst(pattern)
        records = dst.decode_records(data)
        kinds = [kind for _, _, kind in records]
        self.assertEqual(kinds.count(dst.RecordKind.COLOR_CHANGE), 1)
        self.assertEqual(dst.parse_header(data)["CO"], 1)
        deltas = [(dx, dy) for dx, dy, _ in records]
        start = deltas.index((3, 3))
        self.assertEqual(deltas[start : start + 3], [(3, 3), (3, -6), (-6, 3)])
        self.assertEqual(dst.parse_header(data)["ST"], len(records) - 2)

    def test_non_finite_stitch_is_dropped(self) -> None:
        pattern = _pattern(SewingRun([Stitch(0.0, 0.0), Stitch(float("nan"), 1.0), Stitch(10.0, 0.0)]))
        with self.assertLogs("embroidery_model", level="WARNING"):
            data = dst.encode_dst(pattern)
        self.assertEqual(dst.parse_header(data)["ST"], 2)

    def test_malformed_pattern_is_rejected(self) -> None:
        with self.assertRaises(PatternFormatError):
            dst.encode_dst(Pattern(threads=None))  # type: ignore[arg-type]

    def test_output_reads_back_with_pyembroidery(self) -> None:
        pattern = _pattern(SewingRun([Stitch(0.0, 0.0), Stitch(10.0, 0.0), Stitch(10.0, 10.0)]))
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "corner.dst"
            path.write_bytes(dst.encode_dst(pattern, "corner"))
            emb = pyembroidery.read_dst(str(path))
        sewn = [(x, y) for x, y, cmd in emb.stitches if (cmd & COMMAND_MASK) == STITCH]
        self.assertEqual(sewn, [(50, -50), (50, 50)])

    def test_encoding_does_not_mutate_pattern(self) -> None:
        run = SewingRun([Stitch(1.0, 2.0), Stitch(3.0, 4.0)])
        pattern = _pattern(run)
        dst.encode_dst(pattern)
        self.assertEqual(run.stitches, [Stitch(1.0, 2.0), Stitch(3.0, 4.0)])


if __name__ == "__main__":
    unittest.main()
