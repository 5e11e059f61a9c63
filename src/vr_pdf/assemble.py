"""
Build the output PDF from a folder of cropped eye images.

Each image becomes one page whose box equals the image's pixel size. The
document is saved to a hidden sibling file and moved into place only after
the save completes, so an interrupted run never leaves a PDF that looks
finished.
"""

from __future__ import annotations

from dataclasses import dataclass
import os
from pathlib import Path
import threading
from typing import List, Optional

import fitz  # PyMuPDF
from PIL import Image

from .config import RunConfig
from .manifest import ManifestRecorder
from .pages import page_sort_key
from .utils import (
    AssemblyError,
    PreconditionError,
    RunCancelled,
    ensure_dir,
    ensure_dir_exists,
    ensure_file_path,
)


@dataclass(frozen=True)
class AssembledPdf:
    path: Path
    page_count: int


def collect_cropped_images(cropped_dir: Path, suffix: str, page_order: str) -> List[Path]:
    """
    List crop files in the order they become pages.

    "listing" keeps the directory's own enumeration order; "numeric" sorts
    by the page number in the file stem.
    """

    suffix = suffix.lower()
    images = [
        cropped_dir / name
        for name in os.listdir(cropped_dir)
        if name.lower().endswith(suffix) and (cropped_dir / name).is_file()
    ]
    if page_order == "numeric":
        images.sort(key=lambda path: page_sort_key(path.stem))
    return images


def _partial_path(output_pdf: Path) -> Path:
    return output_pdf.with_name(f".{output_pdf.name}.partial")


def assemble_pdf(
    config: RunConfig,
    cropped_dir: Path,
    output_pdf: Path,
    recorder: ManifestRecorder,
    cancel: Optional[threading.Event] = None,
) -> AssembledPdf:
    """
    Append every cropped image as a page and write output_pdf.

    Cancellation discards the partial document: nothing is written.
    """

    ensure_dir_exists(cropped_dir, "Cropped image directory")
    ensure_file_path(output_pdf, "Output PDF")
    try:
        ensure_dir(output_pdf.parent)
    except PreconditionError as exc:
        raise AssemblyError(f"Cannot write output PDF {output_pdf}: {exc}") from exc

    images = collect_cropped_images(cropped_dir, config.image_suffix, config.page_order)
    if not images:
        raise AssemblyError(
            f"No *{config.image_suffix} images in {cropped_dir}; nothing to put in {output_pdf}."
        )

    recorder.log(
        f"Assembling {len(images)} page(s) into {output_pdf} (order={config.page_order})."
    )

    partial = _partial_path(output_pdf)
    try:
        with fitz.open() as doc:
            for position, image_path in enumerate(images, start=1):
                if cancel is not None and cancel.is_set():
                    recorder.log(
                        f"Assembly cancelled after {position - 1} page(s); discarding {output_pdf}.",
                        level="warning",
                    )
                    recorder.add_action(
                        action="assemble", status="cancelled", output=str(output_pdf)
                    )
                    raise RunCancelled(f"Cancelled while assembling {output_pdf}.")

                width, height = _image_size(image_path)
                try:
                    page = doc.new_page(width=width, height=height)
                    page.insert_image(page.rect, filename=str(image_path))
                except Exception as exc:
                    raise AssemblyError(f"Failed to add page from {image_path}: {exc}") from exc

                recorder.log(
                    f"Added {image_path.name} as page {position} ({position}/{len(images)})",
                    level="debug",
                )
                recorder.add_action(
                    action="add_page",
                    status="written",
                    input=str(image_path),
                    page=position,
                    size=[width, height],
                )

            if config.title:
                doc.set_metadata({"title": config.title})

            try:
                doc.save(partial, garbage=3, deflate=True)
            except Exception as exc:
                raise AssemblyError(f"Cannot write output PDF {output_pdf}: {exc}") from exc

        try:
            os.replace(partial, output_pdf)
        except OSError as exc:
            raise AssemblyError(f"Cannot write output PDF {output_pdf}: {exc}") from exc
    finally:
        if partial.exists():
            partial.unlink()

    recorder.log(f"PDF generated: {output_pdf} ({len(images)} page(s)).")
    return AssembledPdf(path=output_pdf, page_count=len(images))


def _image_size(image_path: Path) -> tuple[int, int]:
    try:
        with Image.open(image_path) as opened:
            return opened.size
    except (OSError, ValueError) as exc:
        raise AssemblyError(f"Failed to read cropped image {image_path}: {exc}") from exc
