"""
Page-range parsing and left/right eye assignment.

Source scans are named after the two physical pages they span, e.g.
"scan-12-13.png". The even page always becomes the left eye image and the
odd page the right one, so output names are self-determined per file.
"""

from __future__ import annotations

from dataclasses import dataclass
import re
from typing import Tuple

from .utils import ParseError


PAGE_RANGE_PATTERN = re.compile(r"(\d{1,2})-+(\d{1,2})")
CANONICAL_DIGITS = 2


@dataclass(frozen=True)
class EyeAssignment:
    """Canonical page names for the two halves of one source image."""

    left: str
    right: str

    def for_side(self, side: str) -> str:
        if side == "left":
            return self.left
        if side == "right":
            return self.right
        raise ValueError(f"Unknown side: {side!r}")


def parse_page_range(filename: str) -> Tuple[str, str]:
    """
    Return the two page tokens embedded in a filename, in order of appearance.

    Tokens are returned raw (no padding). Raises ParseError when the name has
    no "<digits>-<digits>" substring.
    """

    match = PAGE_RANGE_PATTERN.search(filename)
    if match is None:
        raise ParseError(f"No page range found in file name: {filename}")
    return match.group(1), match.group(2)


def canonical_page_name(token: str) -> str:
    """Zero-pad a page token to at least two digits ("3" -> "03")."""

    return token.zfill(CANONICAL_DIGITS)


def _is_even(token: str) -> bool:
    return int(token) % 2 == 0


def _is_odd(token: str) -> bool:
    return abs(int(token)) % 2 == 1


def assign_eyes(first: str, second: str) -> EyeAssignment:
    """
    Map a raw page pair onto the left and right eye.

    Parity is tested on the first token only: an even first token names the
    left eye, otherwise the second token does; an odd first token names the
    right eye, otherwise the second does. For pages of equal parity the
    result is still deterministic, just not a meaningful left/right split
    (see has_opposite_parity).
    """

    left = first if _is_even(first) else second
    right = first if _is_odd(first) else second
    return EyeAssignment(
        left=canonical_page_name(left),
        right=canonical_page_name(right),
    )


def has_opposite_parity(first: str, second: str) -> bool:
    """True when the two pages form a proper even/odd pair."""

    return _is_even(first) != _is_even(second)


def page_sort_key(stem: str) -> Tuple[int, int, str]:
    """Sort key for canonical page names; non-numeric stems sort last."""

    if stem.isdigit():
        return (0, int(stem), stem)
    return (1, 0, stem)
