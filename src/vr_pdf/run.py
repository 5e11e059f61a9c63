"""
Run orchestration: stage the source, crop, assemble.

Why this module exists:
- Owns the scratch directory for exactly one run (created, locked, removed).
- Enforces the stage barrier: every stage finishes its directory sweep
  before the next one starts.
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
import os
from pathlib import Path
import shutil
import threading
from typing import Dict, Iterator, List, Optional

from .assemble import assemble_pdf
from .config import RunConfig
from .extract import (
    STAGED_SUFFIXES,
    Extractor,
    copy_source_folder,
    extractor_for,
    is_archive,
    strip_whitespace_names,
)
from .manifest import ManifestRecorder
from .pipeline import CropReport, SkippedFile, crop_source_images
from .render import render_pdfs_to_images
from .utils import (
    PreconditionError,
    RunCancelled,
    UserError,
    ensure_file_path,
)


LOCK_NAME = ".vr-pdf.lock"
SOURCE_DIRNAME = "source"
CROPPED_DIRNAME = "cropped"
IMAGE_SUFFIXES = STAGED_SUFFIXES - {".pdf"}


@dataclass(frozen=True)
class RunResult:
    output_pdf: Path
    page_count: int
    crop_report: CropReport

    @property
    def partial(self) -> bool:
        return bool(self.crop_report.skipped)


def default_scratch_dir(output_pdf: Path) -> Path:
    return output_pdf.parent / ".vr_pdf_scratch"


@contextmanager
def scratch_directory(path: Path, keep: bool = False) -> Iterator[Path]:
    """
    Claim path as this run's scratch directory.

    A lock file marks the directory as taken; a second run against the same
    path fails with PreconditionError instead of racing. Stage folders are
    recreated empty so leftovers from an older run never reach the PDF.
    """

    lock_path = path / LOCK_NAME
    try:
        path.mkdir(parents=True, exist_ok=True)
        fd = os.open(lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
    except FileExistsError as exc:
        raise PreconditionError(
            f"Scratch directory {path} is in use by another run "
            f"(delete {lock_path} if that run is gone)."
        ) from exc
    except OSError as exc:
        raise PreconditionError(f"Cannot create scratch directory {path}: {exc}") from exc

    with os.fdopen(fd, "w", encoding="utf-8") as handle:
        handle.write(str(os.getpid()))

    try:
        for name in (SOURCE_DIRNAME, CROPPED_DIRNAME):
            stage_dir = path / name
            try:
                if stage_dir.exists():
                    shutil.rmtree(stage_dir)
                stage_dir.mkdir()
            except OSError as exc:
                raise PreconditionError(f"Cannot prepare {stage_dir}: {exc}") from exc
        yield path
    finally:
        if not keep:
            for name in (SOURCE_DIRNAME, CROPPED_DIRNAME):
                shutil.rmtree(path / name, ignore_errors=True)
        lock_path.unlink(missing_ok=True)
        if not keep and not any(path.iterdir()):
            path.rmdir()


def stage_source(
    source: Path,
    dest_dir: Path,
    recorder: ManifestRecorder,
    extractors: Optional[Dict[str, Extractor]] = None,
    cancel: Optional[threading.Event] = None,
) -> None:
    """Extract an archive or copy a folder into dest_dir."""

    if is_archive(source):
        recorder.log(f"Extracting {source} ...")
        result = extractor_for(source, extractors).extract(source, dest_dir)
        if result.output.strip():
            recorder.log(result.output.strip(), level="debug")
        recorder.add_action(
            action="extract",
            status="written",
            input=str(source),
            files=len(result.files),
        )
    elif source.is_dir():
        copied = copy_source_folder(source, dest_dir, cancel)
        recorder.log(f"Copied {len(copied)} file(s) from {source}.")
        recorder.add_action(action="copy_source", status="written", input=str(source), files=len(copied))
    else:
        raise UserError(f"Source must be a .zip/.rar archive or a folder: {source}")

    strip_whitespace_names(dest_dir, recorder)


def unmatched_images(source_dir: Path, pattern: str) -> List[SkippedFile]:
    """Staged images the crop glob will never pick up."""

    matched = set(source_dir.glob(pattern))
    return [
        SkippedFile(name=path.name, reason=f"Does not match source_glob {pattern!r}")
        for path in sorted(source_dir.iterdir())
        if path.is_file()
        and path.suffix.lower() in IMAGE_SUFFIXES
        and path not in matched
    ]


def _check_cancel(cancel: Optional[threading.Event], stage: str) -> None:
    if cancel is not None and cancel.is_set():
        raise RunCancelled(f"Run cancelled before {stage}.")


def build_vr_pdf(
    config: RunConfig,
    source: Path,
    output_pdf: Path,
    recorder: ManifestRecorder,
    scratch_dir: Optional[Path] = None,
    manifest_path: Optional[Path] = None,
    cancel: Optional[threading.Event] = None,
    extractors: Optional[Dict[str, Extractor]] = None,
) -> RunResult:
    """
    Turn a folder or archive of stereo scans into one per-eye PDF.

    Stages run strictly in order: stage source, render PDFs, crop, assemble.
    """

    scratch = scratch_dir if scratch_dir is not None else default_scratch_dir(output_pdf)
    recorder.inputs.update({"source": str(source), "scratch_dir": str(scratch)})
    recorder.outputs.update({"output_pdf": str(output_pdf)})
    if manifest_path is not None:
        recorder.outputs["manifest"] = str(manifest_path)

    report = CropReport()
    result: Optional[RunResult] = None
    error_message: str | None = None
    summary: Dict[str, object] = {"output_pdf": str(output_pdf)}

    try:
        if not source.exists():
            raise UserError(f"Source not found: {source}")
        ensure_file_path(output_pdf, "Output PDF")

        with scratch_directory(scratch, keep=config.keep_scratch) as scratch_root:
            source_dir = scratch_root / SOURCE_DIRNAME
            cropped_dir = scratch_root / CROPPED_DIRNAME

            stage_source(source, source_dir, recorder, extractors, cancel)
            _check_cancel(cancel, "rendering")
            rendered = render_pdfs_to_images(config, source_dir, source_dir, recorder, cancel)
            if rendered.cancelled:
                raise RunCancelled("Run cancelled while rendering PDFs; no PDF written.")

            ignored = unmatched_images(source_dir, config.source_glob)
            for item in ignored:
                recorder.log(f"Skipped {item.name}: {item.reason}", level="warning")
                recorder.add_action(
                    action="crop_source", status="skipped", input=item.name, reason=item.reason
                )

            _check_cancel(cancel, "cropping")
            report = crop_source_images(config, source_dir, cropped_dir, recorder, cancel)
            report.skipped[:0] = rendered.skipped + ignored
            if report.cancelled:
                raise RunCancelled("Run cancelled while cropping; no PDF written.")

            _check_cancel(cancel, "assembly")
            assembled = assemble_pdf(config, cropped_dir, output_pdf, recorder, cancel)
            result = RunResult(
                output_pdf=assembled.path,
                page_count=assembled.page_count,
                crop_report=report,
            )
        return result
    except RunCancelled as exc:
        error_message = str(exc)
        summary["status"] = "cancelled"
        recorder.log(error_message, level="warning")
        recorder.add_action(action="build", status="cancelled", error=error_message)
        raise
    except UserError as exc:
        error_message = str(exc)
        recorder.log(error_message, level="error")
        recorder.add_action(action="build", status="error", error=error_message)
        raise
    except Exception as exc:  # pragma: no cover - unexpected runtime errors
        error_message = f"Failed to build {output_pdf}: {exc}"
        recorder.log(error_message, level="error")
        recorder.add_action(action="build", status="error", error=error_message)
        raise UserError(error_message) from exc
    finally:
        summary["source_files"] = report.files_total
        summary["crops"] = len(report.crops)
        summary["skipped"] = [
            {"name": item.name, "reason": item.reason} for item in report.skipped
        ]
        summary["page_count"] = result.page_count if result is not None else 0
        if error_message is not None:
            summary.setdefault("status", "error")
            summary["error"] = error_message
        else:
            summary["status"] = "partial" if report.skipped else "ok"
        if manifest_path is not None:
            recorder.write_manifest(manifest_path, summary)
