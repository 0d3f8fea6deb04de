"""Loose version parsing for app and module version strings."""

from __future__ import annotations

import re
from typing import Optional

_VERSION_IN_TEXT = re.compile(r"(?<![\d.])(\d+(?:\.\d+){1,3})(?!\.?\d)")
_NUMBER = re.compile(r"\d+")


def version_key(version: Optional[str]) -> tuple[int, ...]:
    """Sort key for dotted versions; missing versions sort lowest.

    ``"1.10.0"`` sorts after ``"1.9"``, and ``"2.0"`` equals ``"2.0.0"``.
    Pre-release suffixes are ignored.
    """
    if not version:
        return ()
    core = re.split(r"[-+ ]", version.strip(), maxsplit=1)[0]
    numbers = [int(part) for part in _NUMBER.findall(core)]
    while numbers and numbers[-1] == 0:
        numbers.pop()
    return tuple(numbers)


def extract_version(text: Optional[str]) -> Optional[str]:
    """Pull a dotted version number out of free text such as a file name."""
    if not text:
        return None
    match = _VERSION_IN_TEXT.search(text)
    return match.group(1) if match else None
