"""
Split a stereo source image into its left and right eye halves.

The declared run width/height are authoritative: the crop box is computed
from them, never from the measured image size. A source smaller than the
declared box is rejected instead of being silently padded.
"""

from __future__ import annotations

from pathlib import Path
from typing import Tuple

from PIL import Image

from .utils import ImageIOError


SIDES = ("left", "right")
BBox = Tuple[int, int, int, int]

# Formats that cannot store alpha or palette data directly.
_RGB_ONLY_FORMATS = {".jpg", ".jpeg"}
JPEG_QUALITY = 95


def eye_box(side: str, full_width: int, full_height: int) -> BBox:
    """Return the (left, top, right, bottom) crop box for one eye."""

    if side not in SIDES:
        raise ValueError(f"side must be 'left' or 'right', got {side!r}")
    half = full_width // 2
    offset = 0 if side == "left" else half
    return (offset, 0, offset + half, full_height)


def _check_declared_size(image: Image.Image, full_width: int, full_height: int, label: str) -> None:
    width, height = image.size
    if width < full_width or height < full_height:
        raise ImageIOError(
            f"{label} is {width}x{height}, smaller than the declared "
            f"{full_width}x{full_height} stereo size."
        )


def split_eyes(
    image: Image.Image, full_width: int, full_height: int
) -> Tuple[Image.Image, Image.Image]:
    """Cut an in-memory stereo image into (left, right) halves."""

    _check_declared_size(image, full_width, full_height, "Image")
    left = image.crop(eye_box("left", full_width, full_height))
    right = image.crop(eye_box("right", full_width, full_height))
    return left, right


def save_image(image: Image.Image, target: Path) -> None:
    """Write an image, converting to RGB where the target format needs it."""

    suffix = target.suffix.lower()
    params = {}
    if suffix in _RGB_ONLY_FORMATS:
        if image.mode not in {"RGB", "L"}:
            image = image.convert("RGB")
        params["quality"] = JPEG_QUALITY
    try:
        image.save(target, **params)
    except (OSError, ValueError) as exc:
        raise ImageIOError(f"Failed to write image {target}: {exc}") from exc


def crop_eye(
    source: Path,
    target: Path,
    side: str,
    full_width: int,
    full_height: int,
) -> BBox:
    """
    Crop one eye out of a stereo source file and write it to target.

    Overwrites target if it already exists. Returns the crop box used.
    """

    box = eye_box(side, full_width, full_height)
    try:
        with Image.open(source) as opened:
            _check_declared_size(opened, full_width, full_height, f"Source image {source}")
            cropped = opened.crop(box)
            cropped.load()
    except ImageIOError:
        raise
    except (OSError, ValueError) as exc:
        raise ImageIOError(f"Failed to read image {source}: {exc}") from exc

    save_image(cropped, target)
    return box
