import timer_fakes  # noqa: F401
import os
import tempfile
import unittest
from pathlib import Path
from unittest import mock


class TestFormatHms(unittest.TestCase):

    def test_formats_hours_minutes_seconds(self):
        from st.util import format_hms
        self.assertEqual(format_hms(0), "00:00:00")
        self.assertEqual(format_hms(59), "00:00:59")
        self.assertEqual(format_hms(3725), "01:02:05")
        self.assertEqual(format_hms(100 * 3600), "100:00:00")

    def test_truncates_fraction_and_clamps_negative(self):
        from st.util import format_hms
        self.assertEqual(format_hms(3725.9), "01:02:05")
        self.assertEqual(format_hms(-4), "00:00:00")


class TestParseHms(unittest.TestCase):

    def test_accepts_all_three_shapes(self):
        from st.util import parse_hms
        self.assertEqual(parse_hms("01:30:00"), 5400)
        self.assertEqual(parse_hms("45:00"), 2700)
        self.assertEqual(parse_hms(" 90 "), 90)

    def test_rejects_garbage(self):
        from st.util import parse_hms
        for text in ("", "abc", "1:2:3:4", "-5", "10:-1"):
            with self.subTest(text=text):
                self.assertIsNone(parse_hms(text))


class TestPaths(unittest.TestCase):

    def test_explicit_home_wins(self):
        from st.common.setup import resolve_data_root
        with mock.patch.dict(os.environ, {"STUDYTRACKER_HOME": "/tmp/st-home", "APPDATA": "/tmp/appdata"}):
            self.assertEqual(resolve_data_root(), Path("/tmp/st-home"))

    def test_appdata_then_home_dotfolder(self):
        from st.common.setup import resolve_data_root
        with mock.patch.dict(os.environ, {"APPDATA": "/tmp/appdata"}):
            os.environ.pop("STUDYTRACKER_HOME", None)
            self.assertEqual(resolve_data_root(), Path("/tmp/appdata") / "StudyTracker")
        with mock.patch.dict(os.environ, {}):
            os.environ.pop("STUDYTRACKER_HOME", None)
            os.environ.pop("APPDATA", None)
            self.assertEqual(resolve_data_root(), Path.home() / ".studytracker")

    def test_build_creates_data_folders(self):
        from st.common.setup import ProjectPaths
        with tempfile.TemporaryDirectory() as tmp:
            paths = ProjectPaths.build(Path(tmp) / "data")
            for folder in (paths.logs, paths.current, paths.snapshots):
                self.assertTrue(folder.is_dir())
            self.assertEqual(paths.state_file, paths.current / "state.json")


if __name__ == "__main__":
    unittest.main()
