"""Uninstall all but the newest version of installed PowerShell modules."""

from __future__ import annotations

import argparse
from typing import Sequence

from loguru import logger

from m365_admin.cli.common import add_common_arguments, bootstrap
from m365_admin.services.modules import list_installed_modules, plan_module_cleanup, remove_old_versions
from m365_admin.services.powershell import (
    PowerShellCommandError,
    PowerShellNotAvailableError,
    PowerShellScriptError,
    PowerShellSession,
)
from m365_admin.utils.error_handling import format_powershell_error


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="m365-module-cleanup",
        description="Remove old side-by-side versions of PowerShell modules installed from a gallery.",
    )
    parser.add_argument("--name", action="append", dest="names", default=None, help="Module name (repeatable).")
    parser.add_argument("--what-if", action="store_true", help="List the versions that would be removed.")
    add_common_arguments(parser)
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    config = bootstrap(args)

    try:
        with PowerShellSession(powershell_path=config.powershell_path) as session:
            plans = plan_module_cleanup(list_installed_modules(session, args.names or ()))
            if not plans:
                print("No old module versions found.")
                return 0
            for plan in plans:
                old = ", ".join(module.version for module in plan.remove)
                print(f"{plan.name}: keep {plan.keep.version}, remove {old}")
            report = remove_old_versions(session, plans, dry_run=args.what_if)
    except (PowerShellNotAvailableError, PowerShellCommandError, PowerShellScriptError) as exc:
        logger.error(format_powershell_error(exc, "module cleanup"))
        return 1

    verb = "Would remove" if report.dry_run else "Removed"
    print(f"{verb} {len(report.removed)} module version(s); {len(report.failed)} failure(s).")
    return 0 if report.succeeded else 1


if __name__ == "__main__":
    raise SystemExit(main())
