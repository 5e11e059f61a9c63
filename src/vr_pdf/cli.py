"""
Command-line interface for vr-pdf.

This file focuses on parsing arguments, prompting when asked to, and
dispatching to the real work.
"""

from __future__ import annotations

import argparse
from contextlib import contextmanager
from pathlib import Path
import signal
import subprocess
import sys
import threading
from typing import Any, Callable, Dict, Iterator, List, Optional, TextIO

from . import __version__
from .config import DEFAULT_RUN, RunConfig, build_run_config, dump_default_run_yaml
from .manifest import ManifestRecorder
from .utils import RunCancelled, UserError, normalize_path, title_to_filename


TOP_LEVEL_EXAMPLES = """Examples:
  python -m vr_pdf build --source "files/book.rar" --out_pdf "files/book.pdf" --title "Book"
  python -m vr_pdf build --files_dir "files"
  python -m vr_pdf crop --in_dir "scans" --out_dir "cropped" --full_width 5314 --full_height 4016
  python -m vr_pdf assemble --in_dir "cropped" --out_pdf "book.pdf" --page_order numeric
  python -m vr_pdf render --pdf_dir "pdfs" --out_dir "scans" --dpi 300
"""

BUILD_EXAMPLES = """Examples:
  python -m vr_pdf build --source "files/book.zip" --out_pdf "files/book.pdf"
  python -m vr_pdf build --source "files/scans" --out_pdf "out.pdf" --workers 4 --page_order numeric
  python -m vr_pdf build --files_dir "files"            (pick the source interactively)
  python -m vr_pdf build --dump-default-config
"""

ARCHIVE_CHOICE_SUFFIXES = (".rar", ".zip")


def _add_run_options(parser: argparse.ArgumentParser, *, crop: bool, assemble: bool) -> None:
    """Add RunConfig flags; unset flags stay absent so YAML values survive."""

    parser.add_argument(
        "--config",
        default=argparse.SUPPRESS,
        help="Optional YAML config with run settings.",
    )
    parser.add_argument(
        "--full_width",
        type=int,
        default=argparse.SUPPRESS,
        help=f"Pixel width of a stereo source image (default: {DEFAULT_RUN['full_width']}).",
    )
    parser.add_argument(
        "--full_height",
        type=int,
        default=argparse.SUPPRESS,
        help=f"Pixel height of a stereo source image (default: {DEFAULT_RUN['full_height']}).",
    )
    parser.add_argument(
        "--format",
        dest="image_format",
        choices=["jpg", "jpeg", "png"],
        default=argparse.SUPPRESS,
        help=f"Cropped image format (default: {DEFAULT_RUN['image_format']}).",
    )
    if crop:
        parser.add_argument(
            "--dpi",
            dest="render_dpi",
            type=int,
            default=argparse.SUPPRESS,
            help=f"Render DPI for source PDFs (default: {DEFAULT_RUN['render_dpi']}).",
        )
        parser.add_argument(
            "--glob",
            dest="source_glob",
            default=argparse.SUPPRESS,
            help=f'Glob pattern for source images (default: "{DEFAULT_RUN["source_glob"]}").',
        )
        parser.add_argument(
            "--workers",
            type=int,
            default=argparse.SUPPRESS,
            help="Number of crop worker threads (default: 1).",
        )
    if assemble:
        parser.add_argument(
            "--page_order",
            choices=["listing", "numeric"],
            default=argparse.SUPPRESS,
            help="listing=directory order, numeric=sort by page number (default: listing).",
        )
        parser.add_argument("--title", default=argparse.SUPPRESS, help="PDF title metadata.")
    parser.add_argument(
        "--manifest",
        help="Manifest JSON path (default: next to the output).",
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="vr-pdf",
        description="Split stereo page scans into per-eye pages and rebuild them as one PDF.",
        epilog=TOP_LEVEL_EXAMPLES,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--version", action="version", version=__version__)
    verbosity_group = parser.add_mutually_exclusive_group()
    verbosity_group.add_argument(
        "--quiet",
        action="store_true",
        help="Suppress non-error console logs.",
    )
    verbosity_group.add_argument(
        "--verbose",
        action="store_true",
        help="Show debug-level console logs.",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    build = subparsers.add_parser(
        "build",
        help="Full run: stage source, render PDFs, crop, assemble.",
        epilog=BUILD_EXAMPLES,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    build.add_argument("--source", help="Archive (.zip/.rar) or folder with scans/PDFs.")
    build.add_argument("--out_pdf", help="Output PDF path (default: <files_dir>/output.pdf).")
    build.add_argument(
        "--files_dir",
        default=".",
        help="Folder listed for interactive source selection (default: current folder).",
    )
    build.add_argument(
        "--scratch_dir",
        help="Scratch folder for this run (default: <out_pdf folder>/.vr_pdf_scratch).",
    )
    build.add_argument(
        "--keep-scratch",
        dest="keep_scratch",
        action="store_true",
        default=argparse.SUPPRESS,
        help="Keep the scratch folder after the run.",
    )
    build.add_argument(
        "--dump-default-config",
        action="store_true",
        help="Print default run config as YAML and exit.",
    )
    _add_run_options(build, crop=True, assemble=True)

    crop = subparsers.add_parser("crop", help="Crop a folder of stereo images into eye pages.")
    crop.add_argument("--in_dir", required=True, help="Folder of stereo source images.")
    crop.add_argument("--out_dir", required=True, help="Output folder for cropped pages.")
    _add_run_options(crop, crop=True, assemble=False)

    assemble = subparsers.add_parser("assemble", help="Build a PDF from a folder of cropped pages.")
    assemble.add_argument("--in_dir", required=True, help="Folder of cropped page images.")
    assemble.add_argument("--out_pdf", required=True, help="Output PDF path.")
    _add_run_options(assemble, crop=False, assemble=True)

    render = subparsers.add_parser("render", help="Render source PDFs to stereo images.")
    render.add_argument("--pdf_dir", required=True, help="Folder of source PDFs.")
    render.add_argument("--out_dir", required=True, help="Output folder for PNGs.")
    render.add_argument(
        "--dpi",
        dest="render_dpi",
        type=int,
        default=argparse.SUPPRESS,
        help=f"Render DPI (default: {DEFAULT_RUN['render_dpi']}).",
    )
    render.add_argument("--full_width", type=int, default=argparse.SUPPRESS, help="Target width.")
    render.add_argument("--full_height", type=int, default=argparse.SUPPRESS, help="Target height.")
    render.add_argument("--config", default=argparse.SUPPRESS, help="Optional YAML config.")
    render.add_argument("--manifest", help="Manifest JSON path (default: out_dir/manifest.json).")

    return parser


def _run_config_from_args(args: argparse.Namespace) -> RunConfig:
    """Resolve defaults < YAML config < explicit CLI flags."""

    raw_args = vars(args)
    overrides = {key: raw_args[key] for key in DEFAULT_RUN if key in raw_args}
    config_path = normalize_path(args.config) if hasattr(args, "config") else None
    return build_run_config(config_path, overrides)


def _verbosity_from_args(args: argparse.Namespace) -> str:
    """Resolve global verbosity mode from top-level flags."""

    if getattr(args, "quiet", False):
        return "quiet"
    if getattr(args, "verbose", False):
        return "verbose"
    return "normal"


def _command_argv_for_manifest(argv: list[str] | None) -> list[str]:
    """Choose argv used to record manifest command faithfully."""

    if argv is None:
        return list(sys.argv)
    return [sys.argv[0], *argv]


def _make_recorder(args: argparse.Namespace, argv: list[str] | None, config: RunConfig) -> ManifestRecorder:
    options: Dict[str, Any] = config.to_dict()
    options["version"] = __version__
    return ManifestRecorder(
        # list2cmdline produces a Windows-friendly command representation.
        command=subprocess.list2cmdline(_command_argv_for_manifest(argv)),
        options=options,
        tool_version=__version__,
        verbosity=_verbosity_from_args(args),
    )


@contextmanager
def _cancel_on_interrupt() -> Iterator[threading.Event]:
    """Turn Ctrl+C into a cooperative cancel checked between files."""

    cancel = threading.Event()
    if threading.current_thread() is not threading.main_thread():
        yield cancel
        return

    previous = signal.getsignal(signal.SIGINT)
    signal.signal(signal.SIGINT, lambda signum, frame: cancel.set())
    try:
        yield cancel
    finally:
        signal.signal(signal.SIGINT, previous)


def _list_source_choices(files_dir: Path) -> List[Path]:
    """Archives first, then folders, as offered by the interactive prompt."""

    if not files_dir.is_dir():
        raise UserError(f"Files folder not found: {files_dir}")
    entries = sorted(files_dir.iterdir())
    archives = [
        path
        for path in entries
        if path.is_file() and path.suffix.lower() in ARCHIVE_CHOICE_SUFFIXES
    ]
    folders = [path for path in entries if path.is_dir() and not path.name.startswith(".")]
    return archives + folders


def _prompt_source(
    files_dir: Path,
    input_fn: Callable[[str], str] = input,
    stream: Optional[TextIO] = None,
) -> Path:
    stream = stream if stream is not None else sys.stdout
    choices = _list_source_choices(files_dir)
    if not choices:
        raise UserError(f"No archives or folders to choose from in {files_dir}")

    print("Create a VR PDF from?", file=stream)
    for number, path in enumerate(choices, start=1):
        print(f"  {number}) {path.name}", file=stream)

    while True:
        answer = input_fn(f"Answer (1-{len(choices)}): ").strip()
        if answer.isdigit() and 1 <= int(answer) <= len(choices):
            return choices[int(answer) - 1]
        print(f"Please enter a number between 1 and {len(choices)}.", file=stream)


def _prompt_yes_no(question: str, input_fn: Callable[[str], str] = input) -> bool:
    return input_fn(f"{question} [y/N]: ").strip().lower() in {"y", "yes"}


def _run_build(
    args: argparse.Namespace,
    argv: list[str] | None,
    input_fn: Callable[[str], str] = input,
) -> int:
    from .run import build_vr_pdf

    interactive = args.source is None
    files_dir = normalize_path(args.files_dir)

    while True:
        config = _run_config_from_args(args)
        if interactive:
            source = _prompt_source(files_dir, input_fn)
            if not hasattr(args, "title"):
                title = input_fn("What should be the title of the PDF? ").strip()
                if title:
                    config = build_run_config(None, {**config.to_dict(), "title": title})
        else:
            source = normalize_path(args.source)

        if args.out_pdf:
            out_pdf = normalize_path(args.out_pdf)
        elif config.title:
            out_pdf = files_dir / f"{title_to_filename(config.title)}.pdf"
        else:
            out_pdf = files_dir / "output.pdf"

        manifest_path = (
            normalize_path(args.manifest)
            if args.manifest
            else out_pdf.with_name(f"{out_pdf.stem}.manifest.json")
        )
        scratch_dir = normalize_path(args.scratch_dir) if args.scratch_dir else None

        recorder = _make_recorder(args, argv, config)
        with _cancel_on_interrupt() as cancel:
            result = build_vr_pdf(
                config=config,
                source=source,
                output_pdf=out_pdf,
                recorder=recorder,
                scratch_dir=scratch_dir,
                manifest_path=manifest_path,
                cancel=cancel,
            )

        if result.partial:
            recorder.log(
                f"Finished with {len(result.crop_report.skipped)} skipped file(s): "
                f"{result.output_pdf} has {result.page_count} page(s).",
                level="warning",
            )

        if not interactive or not _prompt_yes_no("Create another VR PDF?", input_fn):
            return 0


def main(argv: list[str] | None = None, input_fn: Callable[[str], str] = input) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    try:
        if args.command == "build":
            if args.dump_default_config:
                print(dump_default_run_yaml())
                return 0
            return _run_build(args, argv, input_fn)

        config = _run_config_from_args(args)
        recorder = _make_recorder(args, argv, config)

        if args.command == "crop":
            from .pipeline import crop_source_images

            out_dir = normalize_path(args.out_dir)
            manifest_path = (
                normalize_path(args.manifest) if args.manifest else out_dir / "manifest.json"
            )
            with _cancel_on_interrupt() as cancel:
                report = crop_source_images(
                    config, normalize_path(args.in_dir), out_dir, recorder, cancel
                )
            recorder.write_manifest(
                manifest_path,
                {
                    "files_found": report.files_total,
                    "crops": len(report.crops),
                    "skipped": [{"name": s.name, "reason": s.reason} for s in report.skipped],
                    "status": "cancelled" if report.cancelled else ("partial" if report.skipped else "ok"),
                },
            )
            if report.cancelled:
                raise RunCancelled("Cropping cancelled.")
            return 0

        if args.command == "assemble":
            from .assemble import assemble_pdf

            out_pdf = normalize_path(args.out_pdf)
            manifest_path = (
                normalize_path(args.manifest) if args.manifest else out_pdf.parent / "manifest.json"
            )
            with _cancel_on_interrupt() as cancel:
                assembled = assemble_pdf(
                    config, normalize_path(args.in_dir), out_pdf, recorder, cancel
                )
            recorder.write_manifest(
                manifest_path,
                {"output_pdf": str(assembled.path), "page_count": assembled.page_count, "status": "ok"},
            )
            return 0

        if args.command == "render":
            from .render import render_pdfs_to_images

            out_dir = normalize_path(args.out_dir)
            manifest_path = (
                normalize_path(args.manifest) if args.manifest else out_dir / "manifest.json"
            )
            with _cancel_on_interrupt() as cancel:
                rendered = render_pdfs_to_images(
                    config, normalize_path(args.pdf_dir), out_dir, recorder, cancel
                )
            recorder.write_manifest(
                manifest_path,
                {
                    "rendered": len(rendered.written),
                    "skipped": [{"name": s.name, "reason": s.reason} for s in rendered.skipped],
                    "status": "cancelled" if rendered.cancelled else ("partial" if rendered.skipped else "ok"),
                },
            )
            if rendered.cancelled:
                raise RunCancelled("Rendering cancelled.")
            return 0

        raise UserError("Unknown command. Use --help for usage.")
    except RunCancelled as exc:
        print(f"Cancelled: {exc}", file=sys.stderr)
        return 130
    except UserError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 2
