"""Path helpers for export files, archives and the ledger database."""

from __future__ import annotations

import platform
import re
from pathlib import Path
from typing import Optional

# Characters Windows rejects in file and directory names
WINDOWS_INVALID_CHARS = set('<>:"|?*')
WINDOWS_RESERVED_NAMES = {
    "CON", "PRN", "AUX", "NUL",
    "COM1", "COM2", "COM3", "COM4", "COM5", "COM6", "COM7", "COM8", "COM9",
    "LPT1", "LPT2", "LPT3", "LPT4", "LPT5", "LPT6", "LPT7", "LPT8", "LPT9",
}
_WHITESPACE = re.compile(r"\s+")


def is_windows() -> bool:
    """Check if running on Windows."""
    return platform.system() == "Windows"


def sanitize_filename(name: str, replacement: str = "_") -> str:
    """Make ``name`` safe to use as a file name on every platform.

    Export files are frequently copied to Windows admin workstations, so the
    Windows rules are applied regardless of the current platform.
    """
    sanitized = "".join(replacement if c in WINDOWS_INVALID_CHARS or c in "/\\" else c for c in name)
    sanitized = _WHITESPACE.sub(" ", sanitized).strip().rstrip(". ")
    if sanitized.upper() in WINDOWS_RESERVED_NAMES:
        sanitized = f"{replacement}{sanitized}{replacement}"
    return sanitized or replacement


def validate_extension(path: Path | str, allowed: set[str] | frozenset[str]) -> tuple[bool, Optional[str]]:
    """Validate that ``path`` carries one of the ``allowed`` suffixes.

    Returns:
        Tuple of (is_valid, error_message)
    """
    suffix = Path(path).suffix.lower()
    if suffix in allowed:
        return True, None
    expected = ", ".join(sorted(allowed))
    return False, f"Unsupported file extension '{suffix or '(none)'}'; expected one of: {expected}"


def resolve_path_safely(path_str: str, base_path: Optional[Path] = None) -> Path:
    """Resolve ``path_str``, anchoring relative paths at ``base_path`` (or the cwd)."""
    path = Path(path_str).expanduser()
    if not path.is_absolute():
        path = (base_path or Path.cwd()) / path
    return path.resolve()


def normalize_sqlite_path(database_url: str) -> str:
    """Convert backslashes in ``sqlite:///`` URLs to forward slashes."""
    if not database_url.startswith("sqlite:///"):
        return database_url
    return "sqlite:///" + database_url[len("sqlite:///"):].replace("\\", "/")
