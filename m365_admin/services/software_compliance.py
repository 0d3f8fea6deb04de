"""Detection and removal of unwanted software for Intune remediations.

Intune runs a detection script and, when it exits with 1, the paired
remediation script. Both read the machine's installed-program inventory from
the registry uninstall keys.
"""

from __future__ import annotations

import fnmatch
import re
import subprocess
from dataclasses import dataclass, field
from typing import Callable, Iterable, Sequence

from loguru import logger

from m365_admin.utils.path_validation import is_windows

UNINSTALL_KEYS = (
    r"SOFTWARE\Microsoft\Windows\CurrentVersion\Uninstall",
    r"SOFTWARE\WOW6432Node\Microsoft\Windows\CurrentVersion\Uninstall",
)
# 3010: reboot required, 1605: product no longer installed, 1641: reboot initiated
SUCCESS_EXIT_CODES = frozenset({0, 1605, 1641, 3010})
_MSI_PRODUCT_CODE = re.compile(r"\{[0-9A-Fa-f-]{36}\}")

EXIT_COMPLIANT = 0
EXIT_NON_COMPLIANT = 1


@dataclass(slots=True)
class InstalledProgram:
    display_name: str
    version: str | None = None
    publisher: str | None = None
    uninstall_string: str | None = None
    quiet_uninstall_string: str | None = None
    registry_key: str | None = None

    def as_row(self) -> dict[str, str | None]:
        return {
            "DisplayName": self.display_name,
            "Version": self.version,
            "Publisher": self.publisher,
            "RegistryKey": self.registry_key,
        }


@dataclass(slots=True)
class RemediationReport:
    removed: list[InstalledProgram] = field(default_factory=list)
    failed: list[tuple[InstalledProgram, str]] = field(default_factory=list)
    remaining: list[InstalledProgram] = field(default_factory=list)

    @property
    def compliant(self) -> bool:
        return not self.failed and not self.remaining


def read_installed_programs() -> list[InstalledProgram]:
    """Read 64- and 32-bit uninstall entries from HKLM and HKCU."""
    if not is_windows():
        raise RuntimeError("Installed-program inventory is only available on Windows")
    import winreg

    programs: list[InstalledProgram] = []
    hives = ((winreg.HKEY_LOCAL_MACHINE, "HKLM"), (winreg.HKEY_CURRENT_USER, "HKCU"))
    for hive, hive_name in hives:
        for key_path in UNINSTALL_KEYS:
            try:
                root = winreg.OpenKey(hive, key_path)
            except OSError:
                continue
            with root:
                index = 0
                while True:
                    try:
                        sub_name = winreg.EnumKey(root, index)
                    except OSError:
                        break
                    index += 1
                    try:
                        with winreg.OpenKey(root, sub_name) as sub_key:
                            values = _read_values(winreg, sub_key)
                    except OSError as exc:
                        logger.debug("Skipping unreadable key {}\\{}: {}", key_path, sub_name, exc)
                        continue
                    if not values.get("DisplayName"):
                        continue
                    programs.append(
                        InstalledProgram(
                            display_name=values["DisplayName"],
                            version=values.get("DisplayVersion"),
                            publisher=values.get("Publisher"),
                            uninstall_string=values.get("UninstallString"),
                            quiet_uninstall_string=values.get("QuietUninstallString"),
                            registry_key=f"{hive_name}\\{key_path}\\{sub_name}",
                        )
                    )
    return programs


def _read_values(winreg, key) -> dict[str, str]:
    values: dict[str, str] = {}
    for name in ("DisplayName", "DisplayVersion", "Publisher", "UninstallString", "QuietUninstallString"):
        try:
            value, _ = winreg.QueryValueEx(key, name)
        except OSError:
            continue
        if value:
            values[name] = str(value).strip()
    return values


def find_unwanted(programs: Iterable[InstalledProgram], patterns: Sequence[str]) -> list[InstalledProgram]:
    """Return programs whose display name matches any wildcard pattern (case-insensitive)."""
    lowered = [pattern.casefold() for pattern in patterns if pattern.strip()]
    matches = [
        program
        for program in programs
        if any(fnmatch.fnmatchcase(program.display_name.casefold(), pattern) for pattern in lowered)
    ]
    matches.sort(key=lambda program: program.display_name.casefold())
    return matches


def detect(
    patterns: Sequence[str],
    *,
    inventory: Callable[[], list[InstalledProgram]] = read_installed_programs,
) -> tuple[int, list[InstalledProgram]]:
    """Return ``(exit_code, matches)``: 1 when any unwanted program is installed."""
    matches = find_unwanted(inventory(), patterns)
    if matches:
        for program in matches:
            logger.warning("Unwanted software installed: {} {}", program.display_name, program.version or "")
        return EXIT_NON_COMPLIANT, matches
    logger.info("No unwanted software found")
    return EXIT_COMPLIANT, matches


def build_uninstall_command(program: InstalledProgram) -> str | None:
    """Choose a silent uninstall command line for ``program``.

    MSI entries are rewritten to ``msiexec /X{code} /qn /norestart``; other
    entries use ``QuietUninstallString`` when present.
    """
    raw = program.uninstall_string or ""
    if "msiexec" in raw.lower():
        match = _MSI_PRODUCT_CODE.search(raw)
        if match:
            return f"msiexec.exe /X{match.group(0)} /qn /norestart"
    if program.quiet_uninstall_string:
        return program.quiet_uninstall_string
    return raw or None


def _run_command(command: str, timeout_seconds: int = 900) -> int:
    completed = subprocess.run(command, check=False, capture_output=True, text=True, timeout=timeout_seconds)
    return completed.returncode


def remediate(
    patterns: Sequence[str],
    *,
    inventory: Callable[[], list[InstalledProgram]] = read_installed_programs,
    runner: Callable[[str], int] = _run_command,
) -> RemediationReport:
    """Uninstall every unwanted program, then re-read the inventory to confirm."""
    report = RemediationReport()
    for program in find_unwanted(inventory(), patterns):
        command = build_uninstall_command(program)
        if not command:
            logger.error("No uninstall command registered for {}", program.display_name)
            report.failed.append((program, "no uninstall command"))
            continue
        logger.info("Uninstalling {} {}: {}", program.display_name, program.version or "", command)
        try:
            exit_code = runner(command)
        except (OSError, subprocess.SubprocessError) as exc:
            logger.error("Uninstall of {} could not run: {}", program.display_name, exc)
            report.failed.append((program, str(exc)))
            continue
        if exit_code not in SUCCESS_EXIT_CODES:
            logger.error("Uninstall of {} exited with code {}", program.display_name, exit_code)
            report.failed.append((program, f"exit code {exit_code}"))
            continue
        if exit_code == 3010:
            logger.warning("{} removed; a reboot is required", program.display_name)
        report.removed.append(program)

    report.remaining = find_unwanted(inventory(), patterns)
    for program in report.remaining:
        logger.warning("Still installed after remediation: {}", program.display_name)
    return report
