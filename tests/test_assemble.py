"""
Tests for PDF assembly: page sizes, page order policies, metadata and the
no-partial-output guarantees.
"""

from __future__ import annotations

import io
import os
import threading
import unittest

import fitz  # PyMuPDF
from PIL import Image

from helpers_cli import workspace_temp_dir

from vr_pdf.assemble import assemble_pdf, collect_cropped_images
from vr_pdf.config import RunConfig
from vr_pdf.manifest import ManifestRecorder
from vr_pdf.utils import AssemblyError, RunCancelled


def _recorder() -> ManifestRecorder:
    return ManifestRecorder(command="test", console_stream=io.StringIO())


def _page_sizes(pdf_path) -> list:
    with fitz.open(pdf_path) as doc:
        return [(round(page.rect.width), round(page.rect.height)) for page in doc]


class AssemblePdfTests(unittest.TestCase):
    def test_pages_match_image_sizes_in_listing_order(self) -> None:
        with workspace_temp_dir("assemble") as tmp:
            cropped = tmp / "cropped"
            cropped.mkdir()
            sizes = {"a.jpg": (100, 50), "b.jpg": (200, 150), "c.jpg": (80, 80)}
            for name, size in sizes.items():
                Image.new("RGB", size, color=(120, 60, 30)).save(cropped / name)
            out_pdf = tmp / "out.pdf"

            result = assemble_pdf(RunConfig(), cropped, out_pdf, _recorder())

            listing = [name for name in os.listdir(cropped) if name.endswith(".jpg")]
            self.assertEqual(result.page_count, 3)
            self.assertEqual(result.path, out_pdf)
            self.assertEqual(_page_sizes(out_pdf), [sizes[name] for name in listing])

    def test_numeric_order_sorts_by_page_number(self) -> None:
        with workspace_temp_dir("assemble") as tmp:
            cropped = tmp / "cropped"
            cropped.mkdir()
            Image.new("RGB", (30, 10)).save(cropped / "10.jpg")
            Image.new("RGB", (10, 10)).save(cropped / "02.jpg")
            Image.new("RGB", (20, 10)).save(cropped / "03.jpg")
            out_pdf = tmp / "out.pdf"

            assemble_pdf(RunConfig(page_order="numeric"), cropped, out_pdf, _recorder())

            self.assertEqual(_page_sizes(out_pdf), [(10, 10), (20, 10), (30, 10)])

    def test_only_configured_format_is_used(self) -> None:
        with workspace_temp_dir("assemble") as tmp:
            cropped = tmp / "cropped"
            cropped.mkdir()
            Image.new("RGB", (10, 10)).save(cropped / "02.png")
            Image.new("RGB", (10, 10)).save(cropped / "03.jpg")
            (cropped / "manifest.json").write_text("{}", encoding="utf-8")

            images = collect_cropped_images(cropped, ".png", "numeric")

            self.assertEqual([path.name for path in images], ["02.png"])

    def test_title_metadata(self) -> None:
        with workspace_temp_dir("assemble") as tmp:
            cropped = tmp / "cropped"
            cropped.mkdir()
            Image.new("RGB", (10, 10)).save(cropped / "02.jpg")
            out_pdf = tmp / "out.pdf"

            assemble_pdf(RunConfig(title="My Book"), cropped, out_pdf, _recorder())

            with fitz.open(out_pdf) as doc:
                self.assertEqual(doc.metadata["title"], "My Book")

    def test_existing_output_is_replaced(self) -> None:
        with workspace_temp_dir("assemble") as tmp:
            cropped = tmp / "cropped"
            cropped.mkdir()
            Image.new("RGB", (10, 10)).save(cropped / "02.jpg")
            out_pdf = tmp / "out.pdf"
            out_pdf.write_bytes(b"old")

            assemble_pdf(RunConfig(), cropped, out_pdf, _recorder())

            self.assertEqual(_page_sizes(out_pdf), [(10, 10)])

    def test_cancel_discards_partial_document(self) -> None:
        with workspace_temp_dir("assemble") as tmp:
            cropped = tmp / "cropped"
            cropped.mkdir()
            Image.new("RGB", (10, 10)).save(cropped / "02.jpg")
            out_pdf = tmp / "out.pdf"
            cancel = threading.Event()
            cancel.set()

            with self.assertRaises(RunCancelled):
                assemble_pdf(RunConfig(), cropped, out_pdf, _recorder(), cancel)

            self.assertEqual(sorted(p.name for p in tmp.iterdir()), ["cropped"])

    def test_unwritable_output_location_is_fatal(self) -> None:
        with workspace_temp_dir("assemble") as tmp:
            cropped = tmp / "cropped"
            cropped.mkdir()
            Image.new("RGB", (10, 10)).save(cropped / "02.jpg")
            (tmp / "blocker").write_text("file", encoding="utf-8")

            with self.assertRaises(AssemblyError):
                assemble_pdf(RunConfig(), cropped, tmp / "blocker" / "out.pdf", _recorder())

    def test_corrupt_crop_leaves_no_output(self) -> None:
        with workspace_temp_dir("assemble") as tmp:
            cropped = tmp / "cropped"
            cropped.mkdir()
            Image.new("RGB", (10, 10)).save(cropped / "02.jpg")
            (cropped / "03.jpg").write_bytes(b"garbage")
            out_pdf = tmp / "out.pdf"

            with self.assertRaises(AssemblyError):
                assemble_pdf(RunConfig(page_order="numeric"), cropped, out_pdf, _recorder())

            self.assertFalse(out_pdf.exists())
            self.assertEqual(sorted(p.name for p in tmp.iterdir()), ["cropped"])

    def test_empty_directory_is_an_error(self) -> None:
        with workspace_temp_dir("assemble") as tmp:
            cropped = tmp / "cropped"
            cropped.mkdir()
            with self.assertRaises(AssemblyError):
                assemble_pdf(RunConfig(), cropped, tmp / "out.pdf", _recorder())


if __name__ == "__main__":
    unittest.main()
