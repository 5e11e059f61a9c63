"""
Crop every stereo source image into a left-eye and a right-eye page image.

Why this module exists:
- Ties the page-range parser, eye assignment and eye splitter together.
- Keeps per-file failures local: a bad file lands in the skip-list and the
  batch carries on.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
import threading
from typing import Dict, List, Optional

from .config import RunConfig
from .eyes import SIDES, crop_eye
from .manifest import ManifestRecorder
from .pages import EyeAssignment, assign_eyes, has_opposite_parity, parse_page_range
from .utils import (
    ImageIOError,
    ParseError,
    ensure_dir,
    ensure_dir_exists,
    ensure_dir_path,
)


@dataclass(frozen=True)
class SkippedFile:
    """A source file that produced no crops, and why."""

    name: str
    reason: str


@dataclass(frozen=True)
class CropJob:
    source: Path
    assignment: EyeAssignment


@dataclass
class CropReport:
    """Outcome of one cropping stage."""

    files_total: int = 0
    processed: int = 0
    crops: List[Path] = field(default_factory=list)
    skipped: List[SkippedFile] = field(default_factory=list)
    cancelled: bool = False

    @property
    def ok(self) -> bool:
        return not self.skipped and not self.cancelled


def _collect_image_files(in_dir: Path, pattern: str) -> List[Path]:
    """Return matching files in stable order."""

    return sorted(path for path in in_dir.glob(pattern) if path.is_file())


class _Progress:
    """Source-file counter shared by crop workers."""

    def __init__(self, total: int, recorder: ManifestRecorder) -> None:
        self.total = total
        self.done = 0
        self._recorder = recorder
        self._lock = threading.Lock()

    def advance(self, message: str, level: str = "info") -> None:
        with self._lock:
            self.done += 1
            position = self.done
        self._recorder.log(f"{message} ({position}/{self.total})", level=level)


def plan_crops(
    files: List[Path],
    recorder: ManifestRecorder,
    report: CropReport,
    progress: _Progress,
) -> List[CropJob]:
    """Parse every file name up front; unparseable or clashing files are skipped."""

    jobs: List[CropJob] = []
    claimed: Dict[str, str] = {}

    for source in files:
        try:
            first, second = parse_page_range(source.name)
        except ParseError as exc:
            _skip(report, recorder, progress, source, str(exc))
            continue

        assignment = assign_eyes(first, second)
        if not has_opposite_parity(first, second):
            recorder.log(
                f"Pages {first} and {second} in {source.name} are not an even/odd pair; "
                f"left={assignment.left} right={assignment.right}.",
                level="warning",
            )

        clashes = [
            f"{name} (already from {claimed[name]})"
            for name in (assignment.left, assignment.right)
            if name in claimed
        ]
        if assignment.left == assignment.right:
            clashes.append(f"{assignment.left} (both eyes)")
        if clashes:
            _skip(report, recorder, progress, source, "Duplicate page name: " + ", ".join(clashes))
            continue

        claimed[assignment.left] = source.name
        claimed[assignment.right] = source.name
        jobs.append(CropJob(source=source, assignment=assignment))

    return jobs


def _skip(
    report: CropReport,
    recorder: ManifestRecorder,
    progress: _Progress,
    source: Path,
    reason: str,
) -> None:
    report.skipped.append(SkippedFile(name=source.name, reason=reason))
    recorder.add_action(action="crop_source", status="skipped", input=str(source), reason=reason)
    progress.advance(f"Skipped {source.name}: {reason}", level="warning")


def crop_source_images(
    config: RunConfig,
    source_dir: Path,
    cropped_dir: Path,
    recorder: ManifestRecorder,
    cancel: Optional[threading.Event] = None,
) -> CropReport:
    """
    Crop all matching source images in source_dir into cropped_dir.

    Each source yields "<even page>.<ext>" (left half) and
    "<odd page>.<ext>" (right half). Per-file errors are collected in the
    returned report; only directory problems raise.
    """

    ensure_dir_exists(source_dir, "Source image directory")
    ensure_dir_path(cropped_dir, "Cropped image directory")
    ensure_dir(cropped_dir)

    files = _collect_image_files(source_dir, config.source_glob)
    report = CropReport(files_total=len(files))
    progress = _Progress(len(files), recorder)

    if not files:
        recorder.log(f"No files matched {config.source_glob} in {source_dir}", level="warning")
        return report

    recorder.log(
        f"Cropping {len(files)} source image(s) at {config.full_width}x{config.full_height} "
        f"with {config.workers} worker(s)."
    )

    jobs = plan_crops(files, recorder, report, progress)
    report_lock = threading.Lock()

    def run_job(job: CropJob) -> None:
        if cancel is not None and cancel.is_set():
            return
        written: List[Path] = []
        try:
            for side in SIDES:
                target = cropped_dir / f"{job.assignment.for_side(side)}{config.image_suffix}"
                box = crop_eye(job.source, target, side, config.full_width, config.full_height)
                written.append(target)
                recorder.add_action(
                    action="crop_eye",
                    status="written",
                    input=str(job.source),
                    output=str(target),
                    side=side,
                    box=box,
                )
        except ImageIOError as exc:
            # An unpaired half would shift every later page.
            for path in written:
                path.unlink(missing_ok=True)
            with report_lock:
                report.skipped.append(SkippedFile(name=job.source.name, reason=str(exc)))
            recorder.add_action(
                action="crop_source", status="error", input=str(job.source), reason=str(exc)
            )
            progress.advance(f"Skipped {job.source.name}: {exc}", level="warning")
            return

        with report_lock:
            report.crops.extend(written)
        progress.advance(
            f"Cropped {job.source.name} -> {', '.join(path.name for path in written)}"
        )

    if config.workers > 1:
        with ThreadPoolExecutor(max_workers=config.workers) as pool:
            for future in [pool.submit(run_job, job) for job in jobs]:
                future.result()
    else:
        for job in jobs:
            run_job(job)

    report.processed = progress.done
    report.cancelled = cancel is not None and cancel.is_set()
    _log_summary(report, recorder)
    return report


def _log_summary(report: CropReport, recorder: ManifestRecorder) -> None:
    recorder.log(
        f"Cropping finished: {report.processed}/{report.files_total} source file(s), "
        f"{len(report.crops)} crop(s) written, {len(report.skipped)} skipped."
    )
    if report.cancelled:
        recorder.log("Cropping was cancelled before all files were handled.", level="warning")
    for skipped in report.skipped:
        recorder.log(f"  skipped {skipped.name}: {skipped.reason}", level="warning")
