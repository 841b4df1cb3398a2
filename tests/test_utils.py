from datetime import UTC, datetime
from pathlib import Path
from tempfile import TemporaryDirectory
import unittest

from simworker.utils import parse_start_at, seconds_until, tail_lines


class UtilsTest(unittest.TestCase):
    def test_parse_start_at(self) -> None:
        self.assertEqual(
            parse_start_at("2026-03-01T12:00:00Z"),
            datetime(2026, 3, 1, 12, 0, tzinfo=UTC),
        )
        self.assertEqual(parse_start_at("2026-03-01T12:00:00").tzinfo, UTC)
        with self.assertRaises(ValueError):
            parse_start_at("tomorrow")

    def test_seconds_until_never_negative(self) -> None:
        now = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)
        self.assertEqual(seconds_until(datetime(2026, 3, 1, 12, 0, 30, tzinfo=UTC), now), 30)
        self.assertEqual(seconds_until(datetime(2026, 3, 1, 11, 0, tzinfo=UTC), now), 0)

    def test_tail_lines(self) -> None:
        with TemporaryDirectory() as temp_dir:
            path = Path(temp_dir) / "_stdout.txt"
            self.assertEqual(tail_lines(path, 3), "")
            path.write_text("".join(f"line {i}\n" for i in range(10)), encoding="utf-8")
            self.assertEqual(tail_lines(path, 2), "line 8\nline 9\n")


if __name__ == "__main__":
    unittest.main()
