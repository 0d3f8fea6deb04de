"""Wrappers around external command-line tools (Inkscape, 7-Zip).

Neither tool reports success reliably through its exit code: 7-Zip exits
with 1 for warnings such as a skipped locked file, and some Inkscape builds
exit non-zero after writing the export. A run therefore counts as
successful when the expected output file exists and is non-empty; the exit
code is only logged.
"""

from __future__ import annotations

import os
import re
import shlex
import shutil
import subprocess
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Sequence

from loguru import logger

from m365_admin.utils.path_validation import validate_extension

_ENV_REFERENCE = re.compile(r"%([^%]+)%")

SVG_EXTENSIONS = frozenset({".svg", ".svgz"})
SVG_EXPORT_FORMATS = ("png", "pdf", "eps", "ps", "emf", "wmf")
ARCHIVE_FORMATS = ("7z", "zip")
COMPRESSION_LEVELS = (0, 1, 3, 5, 7, 9)
DEFAULT_TIMEOUT_SECONDS = 600


class ExternalToolNotFoundError(RuntimeError):
    """Raised when a tool's executable cannot be located."""


class ExternalToolError(RuntimeError):
    """Raised when a tool run did not produce its expected output."""


@dataclass(frozen=True, slots=True)
class ExternalTool:
    """Where to look for a tool: known install paths first, then PATH."""

    name: str
    executable_names: tuple[str, ...]
    install_paths: tuple[str, ...] = ()


INKSCAPE = ExternalTool(
    name="Inkscape",
    executable_names=("inkscape", "inkscape.exe", "inkscape.com"),
    install_paths=(
        r"%ProgramFiles%\Inkscape\bin\inkscape.exe",
        r"%ProgramFiles(x86)%\Inkscape\bin\inkscape.exe",
        r"%LOCALAPPDATA%\Programs\Inkscape\bin\inkscape.exe",
        "/Applications/Inkscape.app/Contents/MacOS/inkscape",
        "/usr/bin/inkscape",
    ),
)

SEVEN_ZIP = ExternalTool(
    name="7-Zip",
    executable_names=("7z", "7z.exe", "7zz", "7za"),
    install_paths=(
        r"%ProgramFiles%\7-Zip\7z.exe",
        r"%ProgramFiles(x86)%\7-Zip\7z.exe",
        "/usr/bin/7z",
        "/usr/local/bin/7zz",
    ),
)


@dataclass(slots=True)
class ToolRunResult:
    """Outcome of an external tool run."""

    command: list[str]
    exit_code: int
    stdout: str
    stderr: str
    artifact: Path
    started_at: datetime
    finished_at: datetime
    duration_seconds: float

    @property
    def succeeded(self) -> bool:
        return self.artifact.exists() and self.artifact.stat().st_size > 0


def _expand_windows_vars(path: str) -> str | None:
    """Expand ``%VAR%`` references; None when a variable is undefined."""
    missing = False

    def replace(match: re.Match[str]) -> str:
        nonlocal missing
        value = os.environ.get(match.group(1))
        if value is None:
            missing = True
            return match.group(0)
        return value

    expanded = _ENV_REFERENCE.sub(replace, path)
    return None if missing else expanded


def resolve_tool(
    tool: ExternalTool,
    explicit_path: str | None = None,
    *,
    which: Callable[[str], str | None] = shutil.which,
) -> Path:
    """Locate ``tool``; an explicit path must exist, otherwise probe install paths then PATH."""
    if explicit_path:
        explicit = Path(explicit_path).expanduser()
        if explicit.is_file():
            return explicit
        raise ExternalToolNotFoundError(f"{tool.name} executable not found at {explicit}")

    for candidate in tool.install_paths:
        expanded = _expand_windows_vars(candidate)
        if expanded and Path(expanded).is_file():
            logger.debug("Found {} at {}", tool.name, expanded)
            return Path(expanded)

    for name in tool.executable_names:
        resolved = which(name)
        if resolved:
            logger.debug("Found {} on PATH at {}", tool.name, resolved)
            return Path(resolved)

    raise ExternalToolNotFoundError(
        f"Unable to locate {tool.name}. Install it or pass the executable path explicitly."
    )


def _prepare_output(output: Path, overwrite: bool) -> None:
    if output.exists():
        if not overwrite:
            raise FileExistsError(f"Output already exists: {output} (use --overwrite to replace it)")
        output.unlink()
    output.parent.mkdir(parents=True, exist_ok=True)


def run_tool(
    command: Sequence[str],
    artifact: Path,
    *,
    tool_name: str,
    timeout_seconds: int | None = DEFAULT_TIMEOUT_SECONDS,
    working_directory: Path | None = None,
) -> ToolRunResult:
    """Run ``command`` and verify that ``artifact`` was produced."""
    started_at = datetime.now(timezone.utc)
    start = time.monotonic()
    logger.info("Running {}: {}", tool_name, shlex.join(command))

    try:
        completed = subprocess.run(
            list(command),
            check=False,
            capture_output=True,
            text=True,
            timeout=timeout_seconds,
            cwd=str(working_directory) if working_directory else None,
        )
    except subprocess.TimeoutExpired as exc:
        logger.error("{} timed out after {} seconds", tool_name, exc.timeout)
        raise ExternalToolError(f"{tool_name} timed out after {exc.timeout} seconds") from exc
    except FileNotFoundError as exc:
        raise ExternalToolNotFoundError(str(exc)) from exc

    result = ToolRunResult(
        command=list(command),
        exit_code=completed.returncode,
        stdout=completed.stdout or "",
        stderr=completed.stderr or "",
        artifact=artifact,
        started_at=started_at,
        finished_at=datetime.now(timezone.utc),
        duration_seconds=time.monotonic() - start,
    )

    if not result.succeeded:
        detail = (result.stderr or result.stdout).strip()[:500]
        logger.error("{} exited with code {} and did not produce {}", tool_name, result.exit_code, artifact)
        raise ExternalToolError(f"{tool_name} did not produce {artifact} (exit code {result.exit_code}): {detail}")

    if result.exit_code != 0:
        logger.warning(
            "{} exited with code {} but produced {}; treating as success", tool_name, result.exit_code, artifact
        )
    else:
        logger.info("{} produced {} in {:.1f}s", tool_name, artifact, result.duration_seconds)
    return result


def convert_svg(
    source: Path,
    output: Path | None = None,
    *,
    export_format: str = "png",
    width: int | None = None,
    height: int | None = None,
    dpi: int | None = None,
    background: str | None = None,
    overwrite: bool = False,
    inkscape_path: str | None = None,
    timeout_seconds: int | None = DEFAULT_TIMEOUT_SECONDS,
) -> ToolRunResult:
    """Convert an SVG with Inkscape 1.x."""
    source = source.expanduser().resolve()
    is_valid, error = validate_extension(source, SVG_EXTENSIONS)
    if not is_valid:
        raise ValueError(error)
    if not source.is_file():
        raise FileNotFoundError(f"SVG file not found: {source}")

    export_format = export_format.lower()
    if export_format not in SVG_EXPORT_FORMATS:
        raise ValueError(f"Unsupported export format '{export_format}'; expected one of: {', '.join(SVG_EXPORT_FORMATS)}")
    for label, value in (("width", width), ("height", height), ("dpi", dpi)):
        if value is not None and value <= 0:
            raise ValueError(f"{label} must be a positive integer, got {value}")

    output = (output or source.with_suffix(f".{export_format}")).expanduser().resolve()
    executable = resolve_tool(INKSCAPE, inkscape_path)
    _prepare_output(output, overwrite)

    command = [
        str(executable),
        f"--export-type={export_format}",
        f"--export-filename={output}",
    ]
    if width:
        command.append(f"--export-width={width}")
    if height:
        command.append(f"--export-height={height}")
    if dpi:
        command.append(f"--export-dpi={dpi}")
    if background:
        command.append(f"--export-background={background}")
    command.append(str(source))

    return run_tool(command, output, tool_name=INKSCAPE.name, timeout_seconds=timeout_seconds)


def compress_directory(
    source_dir: Path,
    archive: Path | None = None,
    *,
    archive_format: str = "7z",
    level: int = 5,
    overwrite: bool = False,
    seven_zip_path: str | None = None,
    timeout_seconds: int | None = None,
) -> ToolRunResult:
    """Compress the contents of ``source_dir`` with 7-Zip."""
    source_dir = source_dir.expanduser().resolve()
    if not source_dir.is_dir():
        raise NotADirectoryError(f"Source directory not found: {source_dir}")
    archive_format = archive_format.lower()
    if archive_format not in ARCHIVE_FORMATS:
        raise ValueError(f"Unsupported archive format '{archive_format}'; expected one of: {', '.join(ARCHIVE_FORMATS)}")
    if level not in COMPRESSION_LEVELS:
        raise ValueError(f"Compression level must be one of {COMPRESSION_LEVELS}, got {level}")

    archive = (archive or source_dir.with_name(f"{source_dir.name}.{archive_format}")).expanduser().resolve()
    if archive.is_relative_to(source_dir):
        raise ValueError(f"Archive {archive} must not be inside the directory being compressed")

    executable = resolve_tool(SEVEN_ZIP, seven_zip_path)
    _prepare_output(archive, overwrite)

    command = [
        str(executable),
        "a",
        f"-t{archive_format}",
        f"-mx={level}",
        "-y",
        str(archive),
        str(source_dir / "*"),
    ]
    return run_tool(command, archive, tool_name=SEVEN_ZIP.name, timeout_seconds=timeout_seconds)
