from __future__ import annotations

from m365_admin.services.modules import (
    InstalledModule,
    list_installed_modules,
    plan_module_cleanup,
    remove_old_versions,
)
from m365_admin.services.powershell import PowerShellCommandError

from fakes import FakeSession


def _modules(*pairs):
    return [InstalledModule(name=name, version=version) for name, version in pairs]


def test_list_installed_modules_builds_command():
    session = FakeSession(
        lambda command: [
            {"Name": "Az.Accounts", "Version": "2.12.1", "Repository": "PSGallery"},
            {"Name": None, "Version": "1.0"},
        ]
    )

    modules = list_installed_modules(session, ["Az.Accounts"])

    assert modules == [InstalledModule(name="Az.Accounts", version="2.12.1", repository="PSGallery")]
    assert session.commands[0].startswith(
        "Get-InstalledModule -AllVersions -ErrorAction 'SilentlyContinue' -Name @('Az.Accounts') | Select-Object"
    )


def test_plan_keeps_newest_version_per_module():
    plans = plan_module_cleanup(
        _modules(
            ("Az.Accounts", "2.9.0"),
            ("Az.Accounts", "2.10.1"),
            ("az.accounts", "2.2"),
            ("Pester", "5.5.0"),
        )
    )

    assert len(plans) == 1
    assert plans[0].keep.version == "2.10.1"
    assert sorted(module.version for module in plans[0].remove) == ["2.2", "2.9.0"]


def test_remove_old_versions_dry_run():
    session = FakeSession()
    plans = plan_module_cleanup(_modules(("A", "1.0"), ("A", "2.0")))

    report = remove_old_versions(session, plans, dry_run=True)

    assert [module.version for module in report.removed] == ["1.0"]
    assert session.commands == []


def test_remove_old_versions_continues_after_failure():
    def responder(command: str):
        if "'1.0'" in command:
            raise PowerShellCommandError("module in use")
        return []

    session = FakeSession(responder)
    plans = plan_module_cleanup(_modules(("A", "1.0"), ("A", "1.5"), ("A", "2.0")))

    report = remove_old_versions(session, plans)

    assert not report.succeeded
    assert [module.version for module, _ in report.failed] == ["1.0"]
    assert [module.version for module in report.removed] == ["1.5"]
    assert "Uninstall-Module -Name 'A' -RequiredVersion '1.5' -Force" in session.commands
