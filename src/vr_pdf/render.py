"""
Render source PDFs to stereo source images.

Each PDF holds one stereo spread. Its first page is rendered at the run DPI
and then resized to exactly full_width x full_height, so the eye splitter
can rely on the declared size.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
import threading
from typing import List, Optional

import fitz  # PyMuPDF
from PIL import Image

from .config import RunConfig
from .manifest import ManifestRecorder
from .pipeline import SkippedFile
from .utils import UserError, ensure_dir, ensure_dir_exists


def _collect_pdfs(pdf_dir: Path) -> List[Path]:
    return sorted(
        path for path in pdf_dir.iterdir() if path.is_file() and path.suffix.lower() == ".pdf"
    )


def render_first_page(pdf_path: Path, dpi: int, size: tuple[int, int]) -> Image.Image:
    """Rasterize page 1 of a PDF and resize it to size."""

    # DPI -> PDF "zoom" factor. PDFs are 72 DPI by default.
    zoom = dpi / 72.0
    matrix = fitz.Matrix(zoom, zoom)
    with fitz.open(pdf_path) as doc:
        if doc.page_count <= 0:
            raise UserError(f"PDF has no pages: {pdf_path}")
        pixmap = doc.load_page(0).get_pixmap(matrix=matrix, alpha=False)
        image = Image.frombytes("RGB", (pixmap.width, pixmap.height), pixmap.samples)

    if image.size != size:
        image = image.resize(size, Image.LANCZOS)
    return image


@dataclass
class RenderReport:
    """Outcome of one rendering stage."""

    written: List[Path] = field(default_factory=list)
    skipped: List[SkippedFile] = field(default_factory=list)
    cancelled: bool = False


def render_pdfs_to_images(
    config: RunConfig,
    pdf_dir: Path,
    out_dir: Path,
    recorder: ManifestRecorder,
    cancel: Optional[threading.Event] = None,
) -> RenderReport:
    """
    Render every PDF in pdf_dir to "<stem>.png" in out_dir.

    A PDF that fails to render lands in the report's skip-list. A set cancel
    event stops the sweep before the next PDF is opened.
    """

    ensure_dir_exists(pdf_dir, "PDF directory")
    ensure_dir(out_dir)

    report = RenderReport()
    pdfs = _collect_pdfs(pdf_dir)
    if not pdfs:
        return report

    size = (config.full_width, config.full_height)
    recorder.log(
        f"Rendering {len(pdfs)} PDF(s) at {config.render_dpi} DPI to "
        f"{size[0]}x{size[1]} images."
    )

    for position, pdf_path in enumerate(pdfs, start=1):
        if cancel is not None and cancel.is_set():
            report.cancelled = True
            recorder.log("Rendering was cancelled before all PDFs were handled.", level="warning")
            break
        output_path = out_dir / f"{pdf_path.stem}.png"
        try:
            image = render_first_page(pdf_path, config.render_dpi, size)
            image.save(output_path)
        except Exception as exc:  # PyMuPDF/codec errors
            reason = f"Failed to render PDF: {exc}"
            output_path.unlink(missing_ok=True)
            report.skipped.append(SkippedFile(name=pdf_path.name, reason=reason))
            recorder.log(f"Skipped {pdf_path.name}: {reason}", level="warning")
            recorder.add_action(
                action="render_pdf", status="skipped", input=str(pdf_path), reason=reason
            )
            continue

        report.written.append(output_path)
        recorder.log(f"Rendered {pdf_path.name} ({position}/{len(pdfs)}) -> {output_path}")
        recorder.add_action(
            action="render_pdf",
            status="written",
            input=str(pdf_path),
            output=str(output_path),
        )
    return report
