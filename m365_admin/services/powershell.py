"""Utilities for driving PowerShell from Python.

Cmdlets from the ExchangeOnlineManagement and PowerShellGet modules are only
reachable through PowerShell, and their connection state lives inside the
PowerShell process. :class:`PowerShellSession` therefore keeps one
``pwsh``/``powershell.exe`` process alive for the lifetime of a ``with``
block, feeds it commands over stdin and reads back JSON envelopes delimited
by a per-command end marker.
"""

from __future__ import annotations

import base64
import json
import shlex
import shutil
import subprocess
import time
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import IO, Any, Callable, Iterable, Mapping, Sequence

from loguru import logger

EXECUTABLE_CANDIDATES = ("pwsh.exe", "pwsh", "powershell.exe", "powershell")
JSON_DEPTH = 6

# Wraps every command so the result (or the error) comes back as one line of JSON
_ENVELOPE_TEMPLATE = (
    "try {{ "
    "$__cmd = [Text.Encoding]::UTF8.GetString([Convert]::FromBase64String('{payload}')); "
    "$__out = @(Invoke-Expression $__cmd); "
    "[pscustomobject]@{{ ok = $true; data = $__out }} | ConvertTo-Json -Depth {depth} -Compress "
    "}} catch {{ "
    "[pscustomobject]@{{ ok = $false; error = $_.Exception.Message; "
    "category = [string]$_.CategoryInfo.Category; fqid = $_.FullyQualifiedErrorId }} "
    "| ConvertTo-Json -Compress "
    "}}; "
    "Write-Output '{marker}'"
)
_SESSION_PREAMBLE = (
    "$ErrorActionPreference = 'Stop'; "
    "$ProgressPreference = 'SilentlyContinue'; "
    "$WarningPreference = 'SilentlyContinue'; "
    "$InformationPreference = 'SilentlyContinue'"
)


class PowerShellNotAvailableError(RuntimeError):
    """Raised when no PowerShell executable can be located."""


class PowerShellScriptError(RuntimeError):
    """Raised when the PowerShell process itself fails or stops responding."""


class PowerShellCommandError(RuntimeError):
    """Raised when a command run inside the session throws."""

    def __init__(self, message: str, *, command: str = "", category: str | None = None, error_id: str | None = None):
        super().__init__(message)
        self.command = command
        self.category = category
        self.error_id = error_id


def quote(value: object) -> str:
    """Render ``value`` as a single-quoted PowerShell string literal."""
    return "'" + str(value).replace("'", "''") + "'"


def format_parameters(parameters: Mapping[str, Any]) -> str:
    """Render ``-Name value`` pairs; ``True`` becomes a switch, ``None``/``False`` are omitted."""
    parts: list[str] = []
    for name, value in parameters.items():
        if value is None or value is False:
            continue
        if value is True:
            parts.append(f"-{name}")
        elif isinstance(value, (int, float)):
            parts.append(f"-{name} {value}")
        elif isinstance(value, (list, tuple)):
            parts.append(f"-{name} @({', '.join(quote(item) for item in value)})")
        else:
            parts.append(f"-{name} {quote(value)}")
    return " ".join(parts)


def _resolve_powershell_executable(explicit_path: str | None = None) -> str:
    """Resolve the path to the PowerShell executable."""
    if explicit_path:
        explicit = Path(explicit_path)
        if explicit.exists():
            return str(explicit)
        raise PowerShellNotAvailableError(f"PowerShell executable not found at {explicit}")

    for candidate in EXECUTABLE_CANDIDATES:
        resolved = shutil.which(candidate)
        if resolved:
            return resolved

    raise PowerShellNotAvailableError(
        "Unable to locate a PowerShell executable. Ensure PowerShell is installed and on PATH."
    )


def build_envelope(command: str, marker: str) -> str:
    payload = base64.b64encode(command.encode("utf-8")).decode("ascii")
    return _ENVELOPE_TEMPLATE.format(payload=payload, depth=JSON_DEPTH, marker=marker)


def parse_envelope(lines: Iterable[str], command: str) -> Any:
    """Extract the JSON envelope from the output lines of one command.

    Stray host output (banners, warnings written straight to the host) can
    precede the envelope, so the last line that parses as an envelope wins.
    """
    envelope: Mapping[str, Any] | None = None
    for line in lines:
        text = line.strip()
        if not text.startswith("{"):
            continue
        try:
            candidate = json.loads(text)
        except json.JSONDecodeError:
            continue
        if isinstance(candidate, Mapping) and "ok" in candidate:
            envelope = candidate

    if envelope is None:
        raise PowerShellScriptError(f"PowerShell returned no result for command: {command[:120]}")

    if not envelope.get("ok"):
        raise PowerShellCommandError(
            str(envelope.get("error") or "PowerShell command failed"),
            command=command,
            category=envelope.get("category"),
            error_id=envelope.get("fqid"),
        )

    data = envelope.get("data")
    if data is None:
        return []
    if isinstance(data, list):
        return data
    return [data]


@dataclass
class PowerShellSession:
    """A persistent PowerShell process with an explicit connect/disconnect lifecycle.

    Use as a context manager: the process starts and ``connect_command`` runs
    on enter; ``disconnect_command`` runs and the process is terminated on
    exit, including when the block raises.
    """

    powershell_path: str | None = None
    connect_command: str | None = None
    disconnect_command: str | None = None
    modules: Sequence[str] = ()
    popen: Callable[..., subprocess.Popen] = subprocess.Popen
    _process: subprocess.Popen | None = field(default=None, init=False, repr=False)
    _executable: str | None = field(default=None, init=False, repr=False)

    def __enter__(self) -> "PowerShellSession":
        self.start()
        try:
            for module in self.modules:
                self.invoke(f"Import-Module {quote(module)} -ErrorAction Stop")
            if self.connect_command:
                logger.info("Connecting PowerShell session")
                self.invoke(self.connect_command)
        except Exception:
            self.close()
            raise
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @property
    def is_running(self) -> bool:
        return self._process is not None and self._process.poll() is None

    def start(self) -> None:
        if self.is_running:
            return
        self._executable = _resolve_powershell_executable(self.powershell_path)
        command = [self._executable, "-NoLogo", "-NoProfile", "-NonInteractive", "-Command", "-"]
        logger.debug("Starting PowerShell session: {}", shlex.join(command))
        try:
            self._process = self.popen(
                command,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.DEVNULL,
                text=True,
                encoding="utf-8",
                errors="replace",
                bufsize=1,
            )
        except FileNotFoundError as exc:
            logger.exception("Failed to start PowerShell at {}", self._executable)
            raise PowerShellNotAvailableError(str(exc)) from exc
        self._send(_SESSION_PREAMBLE)

    def invoke(self, command: str) -> list[Any]:
        """Run ``command`` and return its output objects as a list of JSON values."""
        if not self.is_running:
            raise PowerShellScriptError("PowerShell session is not running")

        marker = f"__M365_ADMIN_END_{uuid.uuid4().hex}__"
        started = time.monotonic()
        logger.debug("PS> {}", command)
        self._send(build_envelope(command, marker))
        lines = self._read_until(marker)
        result = parse_envelope(lines, command)
        logger.debug("PowerShell command finished in {:.1f}s ({} objects)", time.monotonic() - started, len(result))
        return result

    def close(self) -> None:
        process = self._process
        if process is None:
            return
        try:
            if self.disconnect_command and process.poll() is None:
                try:
                    self.invoke(self.disconnect_command)
                except (PowerShellCommandError, PowerShellScriptError) as exc:
                    logger.warning("Disconnect command failed: {}", exc)
            if process.poll() is None and process.stdin:
                try:
                    process.stdin.write("exit\n")
                    process.stdin.flush()
                except (BrokenPipeError, OSError):
                    pass
            try:
                process.wait(timeout=10)
            except subprocess.TimeoutExpired:
                logger.warning("PowerShell session did not exit; killing process")
                process.kill()
        finally:
            self._process = None
            logger.debug("PowerShell session closed")

    def _send(self, line: str) -> None:
        stdin: IO[str] | None = self._process.stdin if self._process else None
        if stdin is None:
            raise PowerShellScriptError("PowerShell session has no stdin")
        try:
            stdin.write(line + "\n")
            stdin.flush()
        except (BrokenPipeError, OSError) as exc:
            raise PowerShellScriptError(f"PowerShell session terminated unexpectedly: {exc}") from exc

    def _read_until(self, marker: str) -> list[str]:
        stdout: IO[str] | None = self._process.stdout if self._process else None
        if stdout is None:
            raise PowerShellScriptError("PowerShell session has no stdout")
        collected: list[str] = []
        while True:
            line = stdout.readline()
            if not line:
                raise PowerShellScriptError("PowerShell session exited before the command completed")
            if line.strip() == marker:
                return collected
            collected.append(line)
