"""
Tests for the cropping stage: naming, skip-list, idempotence, workers and
cancellation.
"""

from __future__ import annotations

import io
import threading
import unittest

from PIL import Image

from helpers_cli import (
    LEFT_COLOR,
    RIGHT_COLOR,
    color_close,
    workspace_temp_dir,
    write_stereo_image,
)

from vr_pdf.config import RunConfig
from vr_pdf.manifest import ManifestRecorder
from vr_pdf.pipeline import crop_source_images
from vr_pdf.utils import PreconditionError, UserError


def _recorder() -> ManifestRecorder:
    return ManifestRecorder(command="test", console_stream=io.StringIO())


def _config(**overrides) -> RunConfig:
    values = {"full_width": 200, "full_height": 100}
    values.update(overrides)
    return RunConfig(**values)


class CropStageTests(unittest.TestCase):
    def test_even_page_left_odd_page_right(self) -> None:
        with workspace_temp_dir("pipeline") as tmp:
            source_dir = tmp / "source"
            source_dir.mkdir()
            write_stereo_image(source_dir / "scan-12-13.png", 200, 100)

            report = crop_source_images(_config(), source_dir, tmp / "cropped", _recorder())

            self.assertTrue(report.ok)
            self.assertEqual(sorted(p.name for p in (tmp / "cropped").iterdir()), ["12.jpg", "13.jpg"])
            with Image.open(tmp / "cropped" / "12.jpg") as left:
                self.assertEqual(left.size, (100, 100))
                self.assertTrue(color_close(left.getpixel((50, 50)), LEFT_COLOR))
            with Image.open(tmp / "cropped" / "13.jpg") as right:
                self.assertTrue(color_close(right.getpixel((50, 50)), RIGHT_COLOR))

    def test_odd_first_token_and_padding(self) -> None:
        with workspace_temp_dir("pipeline") as tmp:
            source_dir = tmp / "source"
            source_dir.mkdir()
            write_stereo_image(source_dir / "book-7-8.png", 200, 100)

            crop_source_images(_config(), source_dir, tmp / "cropped", _recorder())

            with Image.open(tmp / "cropped" / "08.jpg") as left:
                self.assertTrue(color_close(left.getpixel((50, 50)), LEFT_COLOR))
            with Image.open(tmp / "cropped" / "07.jpg") as right:
                self.assertTrue(color_close(right.getpixel((50, 50)), RIGHT_COLOR))

    def test_file_without_page_range_is_skipped(self) -> None:
        with workspace_temp_dir("pipeline") as tmp:
            source_dir = tmp / "source"
            source_dir.mkdir()
            write_stereo_image(source_dir / "cover.png", 200, 100)
            write_stereo_image(source_dir / "scan-2-3.png", 200, 100)
            write_stereo_image(source_dir / "scan-4-5.png", 200, 100)

            report = crop_source_images(_config(), source_dir, tmp / "cropped", _recorder())

            self.assertEqual(report.files_total, 3)
            self.assertEqual(report.processed, 3)
            self.assertEqual([item.name for item in report.skipped], ["cover.png"])
            self.assertIn("No page range", report.skipped[0].reason)
            self.assertEqual(
                sorted(p.name for p in (tmp / "cropped").iterdir()),
                ["02.jpg", "03.jpg", "04.jpg", "05.jpg"],
            )

    def test_unreadable_and_undersized_sources_are_skipped(self) -> None:
        with workspace_temp_dir("pipeline") as tmp:
            source_dir = tmp / "source"
            source_dir.mkdir()
            (source_dir / "broken-2-3.png").write_bytes(b"not an image")
            write_stereo_image(source_dir / "small-4-5.png", 100, 100)
            write_stereo_image(source_dir / "good-6-7.png", 200, 100)

            report = crop_source_images(_config(), source_dir, tmp / "cropped", _recorder())

            self.assertEqual(
                sorted(item.name for item in report.skipped),
                ["broken-2-3.png", "small-4-5.png"],
            )
            self.assertEqual(
                sorted(p.name for p in (tmp / "cropped").iterdir()), ["06.jpg", "07.jpg"]
            )

    def test_non_matching_extensions_are_ignored(self) -> None:
        with workspace_temp_dir("pipeline") as tmp:
            source_dir = tmp / "source"
            source_dir.mkdir()
            write_stereo_image(source_dir / "scan-2-3.png", 200, 100)
            (source_dir / "notes-4-5.txt").write_text("hello", encoding="utf-8")

            report = crop_source_images(_config(), source_dir, tmp / "cropped", _recorder())

            self.assertEqual(report.files_total, 1)
            self.assertTrue(report.ok)

    def test_duplicate_page_names_skip_later_file(self) -> None:
        with workspace_temp_dir("pipeline") as tmp:
            source_dir = tmp / "source"
            source_dir.mkdir()
            write_stereo_image(source_dir / "a-2-3.png", 200, 100)
            write_stereo_image(source_dir / "b-3-2.png", 200, 100)

            report = crop_source_images(_config(), source_dir, tmp / "cropped", _recorder())

            self.assertEqual([item.name for item in report.skipped], ["b-3-2.png"])
            self.assertIn("Duplicate page name", report.skipped[0].reason)

    def test_same_parity_pair_logs_warning(self) -> None:
        with workspace_temp_dir("pipeline") as tmp:
            source_dir = tmp / "source"
            source_dir.mkdir()
            write_stereo_image(source_dir / "odd-2-4.png", 200, 100)
            recorder = _recorder()

            report = crop_source_images(_config(), source_dir, tmp / "cropped", recorder)

            self.assertTrue(report.ok)
            warnings = [entry["message"] for entry in recorder.logs if entry["level"] == "warning"]
            self.assertTrue(any("not an even/odd pair" in message for message in warnings))
            self.assertEqual(
                sorted(p.name for p in (tmp / "cropped").iterdir()), ["02.jpg", "04.jpg"]
            )

    def test_progress_counts_source_files(self) -> None:
        with workspace_temp_dir("pipeline") as tmp:
            source_dir = tmp / "source"
            source_dir.mkdir()
            write_stereo_image(source_dir / "cover.png", 200, 100)
            write_stereo_image(source_dir / "scan-2-3.png", 200, 100)
            recorder = _recorder()

            crop_source_images(_config(), source_dir, tmp / "cropped", recorder)

            messages = [entry["message"] for entry in recorder.logs]
            self.assertTrue(any(message.endswith("(2/2)") for message in messages))
            self.assertFalse(any("(3/2)" in message or "(4/2)" in message for message in messages))

    def test_rerun_overwrites_with_identical_bytes(self) -> None:
        with workspace_temp_dir("pipeline") as tmp:
            source_dir = tmp / "source"
            source_dir.mkdir()
            write_stereo_image(source_dir / "scan-2-3.png", 200, 100)
            write_stereo_image(source_dir / "scan-4-5.png", 200, 100)
            cropped = tmp / "cropped"

            crop_source_images(_config(), source_dir, cropped, _recorder())
            first = {p.name: p.read_bytes() for p in cropped.iterdir()}
            crop_source_images(_config(), source_dir, cropped, _recorder())
            second = {p.name: p.read_bytes() for p in cropped.iterdir()}

            self.assertEqual(first, second)
            self.assertEqual(len(second), 4)

    def test_worker_pool_matches_sequential_output(self) -> None:
        with workspace_temp_dir("pipeline") as tmp:
            source_dir = tmp / "source"
            source_dir.mkdir()
            for low in range(0, 16, 2):
                write_stereo_image(source_dir / f"scan-{low}-{low + 1}.png", 200, 100)

            crop_source_images(_config(), source_dir, tmp / "seq", _recorder())
            report = crop_source_images(_config(workers=4), source_dir, tmp / "par", _recorder())

            self.assertEqual(report.processed, 8)
            self.assertEqual(len(report.crops), 16)
            sequential = {p.name: p.read_bytes() for p in (tmp / "seq").iterdir()}
            parallel = {p.name: p.read_bytes() for p in (tmp / "par").iterdir()}
            self.assertEqual(sequential, parallel)

    def test_cancel_stops_before_writing(self) -> None:
        with workspace_temp_dir("pipeline") as tmp:
            source_dir = tmp / "source"
            source_dir.mkdir()
            write_stereo_image(source_dir / "scan-2-3.png", 200, 100)
            cancel = threading.Event()
            cancel.set()

            report = crop_source_images(_config(), source_dir, tmp / "cropped", _recorder(), cancel)

            self.assertTrue(report.cancelled)
            self.assertFalse(report.ok)
            self.assertEqual(list((tmp / "cropped").iterdir()), [])

    def test_creates_missing_cropped_directory(self) -> None:
        with workspace_temp_dir("pipeline") as tmp:
            source_dir = tmp / "source"
            source_dir.mkdir()
            write_stereo_image(source_dir / "scan-2-3.png", 200, 100)

            crop_source_images(_config(), source_dir, tmp / "deep" / "cropped", _recorder())

            self.assertTrue((tmp / "deep" / "cropped" / "02.jpg").exists())

    def test_uncreatable_cropped_directory_is_fatal(self) -> None:
        with workspace_temp_dir("pipeline") as tmp:
            source_dir = tmp / "source"
            source_dir.mkdir()
            (tmp / "blocker").write_text("file", encoding="utf-8")

            with self.assertRaises(PreconditionError):
                crop_source_images(_config(), source_dir, tmp / "blocker" / "cropped", _recorder())

    def test_missing_source_directory(self) -> None:
        with workspace_temp_dir("pipeline") as tmp:
            with self.assertRaises(UserError):
                crop_source_images(_config(), tmp / "nope", tmp / "cropped", _recorder())


if __name__ == "__main__":
    unittest.main()
