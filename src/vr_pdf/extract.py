"""
Bring source material into the scratch directory.

Archives are unpacked through an Extractor so the rest of the run (and the
tests) never depend on a particular external tool being installed.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
import shutil
import subprocess
import threading
from typing import Dict, List, Optional, Protocol
import zipfile

from .manifest import ManifestRecorder
from .utils import ExtractionError, RunCancelled, UserError, ensure_dir, strip_whitespace


ARCHIVE_SUFFIXES = {".zip", ".rar"}
STAGED_SUFFIXES = {".pdf", ".png", ".jpg", ".jpeg"}


@dataclass(frozen=True)
class ExtractResult:
    archive: Path
    dest_dir: Path
    files: List[Path]
    output: str = ""


class Extractor(Protocol):
    def extract(self, archive_path: Path, dest_dir: Path) -> ExtractResult:
        ...


class ZipExtractor:
    """Flatten a zip archive into dest_dir (directory structure is dropped)."""

    def extract(self, archive_path: Path, dest_dir: Path) -> ExtractResult:
        ensure_dir(dest_dir)
        files: List[Path] = []
        try:
            with zipfile.ZipFile(archive_path) as archive:
                for member in archive.infolist():
                    if member.is_dir():
                        continue
                    name = Path(member.filename).name
                    if not name:
                        continue
                    target = dest_dir / name
                    with archive.open(member) as src, target.open("wb") as dst:
                        shutil.copyfileobj(src, dst)
                    files.append(target)
        except (OSError, zipfile.BadZipFile) as exc:
            raise ExtractionError(f"Failed to extract {archive_path}: {exc}") from exc
        return ExtractResult(archive=archive_path, dest_dir=dest_dir, files=files)


class UnrarExtractor:
    """Run `unrar e <archive> <dest>/`, which also flattens directories."""

    def __init__(self, executable: str = "unrar") -> None:
        self.executable = executable

    def extract(self, archive_path: Path, dest_dir: Path) -> ExtractResult:
        ensure_dir(dest_dir)
        before = set(dest_dir.iterdir())
        argv = [self.executable, "e", "-o+", "-y", str(archive_path), f"{dest_dir}/"]
        try:
            completed = subprocess.run(argv, capture_output=True, text=True, check=False)
        except OSError as exc:
            raise ExtractionError(f"Cannot run {self.executable}: {exc}") from exc
        if completed.returncode != 0:
            detail = completed.stderr.strip() or completed.stdout.strip()
            raise ExtractionError(
                f"{self.executable} failed on {archive_path} "
                f"(exit {completed.returncode}): {detail}"
            )
        files = sorted(path for path in dest_dir.iterdir() if path not in before)
        return ExtractResult(
            archive=archive_path, dest_dir=dest_dir, files=files, output=completed.stdout
        )


DEFAULT_EXTRACTORS: Dict[str, Extractor] = {
    ".zip": ZipExtractor(),
    ".rar": UnrarExtractor(),
}


def is_archive(path: Path) -> bool:
    return path.is_file() and path.suffix.lower() in ARCHIVE_SUFFIXES


def extractor_for(path: Path, extractors: Dict[str, Extractor] | None = None) -> Extractor:
    """Pick the extractor registered for an archive's suffix."""

    registry = DEFAULT_EXTRACTORS if extractors is None else extractors
    extractor = registry.get(path.suffix.lower())
    if extractor is None:
        supported = ", ".join(sorted(registry))
        raise UserError(f"Unsupported archive type {path.suffix!r}. Supported: {supported}.")
    return extractor


def copy_source_folder(
    folder: Path,
    dest_dir: Path,
    cancel: Optional[threading.Event] = None,
) -> List[Path]:
    """Copy the PDFs and images at the top level of folder into dest_dir."""

    ensure_dir(dest_dir)
    copied: List[Path] = []
    for path in sorted(folder.iterdir()):
        if not path.is_file() or path.suffix.lower() not in STAGED_SUFFIXES:
            continue
        if cancel is not None and cancel.is_set():
            raise RunCancelled(f"Run cancelled while copying {folder}.")
        target = dest_dir / path.name
        shutil.copy2(path, target)
        copied.append(target)
    return copied


def strip_whitespace_names(directory: Path, recorder: ManifestRecorder) -> int:
    """Rename files so their names hold no whitespace. Returns the rename count."""

    renamed = 0
    for path in sorted(directory.iterdir()):
        if not path.is_file():
            continue
        new_name = strip_whitespace(path.name)
        if new_name == path.name:
            continue
        target = path.with_name(new_name)
        if target.exists():
            recorder.log(
                f"Not renaming {path.name}: {new_name} already exists.", level="warning"
            )
            continue
        path.rename(target)
        renamed += 1
        recorder.log(f"Renamed {path.name!r} -> {new_name!r}", level="debug")
    return renamed
