"""Clean up side-by-side PowerShell module versions."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Sequence

from loguru import logger

from m365_admin.services.powershell import PowerShellCommandError, PowerShellSession, format_parameters
from m365_admin.utils.versions import version_key

_MODULE_FIELDS = "Name, @{n='Version';e={[string]$_.Version}}, Repository, InstalledLocation"


@dataclass(slots=True)
class InstalledModule:
    name: str
    version: str
    repository: str | None = None
    path: str | None = None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "InstalledModule":
        return cls(
            name=str(payload.get("Name") or ""),
            version=str(payload.get("Version") or ""),
            repository=payload.get("Repository"),
            path=payload.get("InstalledLocation"),
        )


@dataclass(slots=True)
class ModuleCleanupPlan:
    name: str
    keep: InstalledModule
    remove: list[InstalledModule]


@dataclass(slots=True)
class ModuleCleanupReport:
    removed: list[InstalledModule] = field(default_factory=list)
    failed: list[tuple[InstalledModule, str]] = field(default_factory=list)
    dry_run: bool = False

    @property
    def succeeded(self) -> bool:
        return not self.failed


def list_installed_modules(session: PowerShellSession, names: Sequence[str] = ()) -> list[InstalledModule]:
    parameters: dict[str, Any] = {"AllVersions": True, "ErrorAction": "SilentlyContinue"}
    if names:
        parameters["Name"] = list(names)
    rows = session.invoke(f"Get-InstalledModule {format_parameters(parameters)} | Select-Object {_MODULE_FIELDS}")
    modules = [InstalledModule.from_payload(row) for row in rows if row.get("Name")]
    logger.info("Found {} installed module versions", len(modules))
    return modules


def plan_module_cleanup(modules: Iterable[InstalledModule]) -> list[ModuleCleanupPlan]:
    """Keep the newest version of every module, mark the rest for removal."""
    grouped: dict[str, list[InstalledModule]] = {}
    for module in modules:
        grouped.setdefault(module.name.casefold(), []).append(module)

    plans: list[ModuleCleanupPlan] = []
    for versions in grouped.values():
        if len(versions) < 2:
            continue
        ordered = sorted(versions, key=lambda item: version_key(item.version), reverse=True)
        plans.append(ModuleCleanupPlan(name=ordered[0].name, keep=ordered[0], remove=ordered[1:]))
    plans.sort(key=lambda plan: plan.name.casefold())
    return plans


def remove_old_versions(
    session: PowerShellSession,
    plans: Iterable[ModuleCleanupPlan],
    *,
    dry_run: bool = False,
) -> ModuleCleanupReport:
    """Uninstall every planned version; a failure is recorded and the loop moves on."""
    report = ModuleCleanupReport(dry_run=dry_run)
    for plan in plans:
        for module in plan.remove:
            if dry_run:
                logger.info("What-if: would uninstall {} {} (keeping {})", module.name, module.version, plan.keep.version)
                report.removed.append(module)
                continue
            parameters = {"Name": module.name, "RequiredVersion": module.version, "Force": True}
            try:
                session.invoke(f"Uninstall-Module {format_parameters(parameters)}")
            except PowerShellCommandError as exc:
                logger.error("Failed to uninstall {} {}: {}", module.name, module.version, exc)
                report.failed.append((module, str(exc)))
                continue
            logger.info("Uninstalled {} {}", module.name, module.version)
            report.removed.append(module)
    return report
