"""Intune detection and remediation entry points for unwanted software.

Intune reads the exit code: 0 means compliant, 1 means the remediation
script should run (or, for remediation, that it did not succeed).
"""

from __future__ import annotations

import argparse
from pathlib import Path
from typing import Sequence

from loguru import logger

from m365_admin.cli.common import add_common_arguments, bootstrap, read_patterns
from m365_admin.logging_setup import configure_logging
from m365_admin.services.software_compliance import (
    EXIT_COMPLIANT,
    EXIT_NON_COMPLIANT,
    detect,
    remediate,
)

REMEDIATION_LOG_NAME = "software-remediation.log"


def _add_pattern_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--pattern",
        action="append",
        dest="patterns",
        default=None,
        help="Display-name wildcard of unwanted software, e.g. 'WinRAR*' (repeatable).",
    )
    parser.add_argument("--patterns-file", type=Path, default=None, help="File with one wildcard per line.")


def _patterns(parser: argparse.ArgumentParser, args: argparse.Namespace) -> list[str]:
    try:
        patterns = read_patterns(args.patterns, args.patterns_file)
    except OSError as exc:
        parser.error(f"cannot read patterns file: {exc}")
    if not patterns:
        parser.error("at least one --pattern or a --patterns-file is required")
    return patterns


def build_detect_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="m365-detect-software",
        description="Exit 1 when unwanted software is installed (Intune detection script).",
    )
    _add_pattern_arguments(parser)
    add_common_arguments(parser)
    return parser


def build_remediate_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="m365-remediate-software",
        description="Silently uninstall unwanted software (Intune remediation script).",
    )
    _add_pattern_arguments(parser)
    parser.add_argument(
        "--log-file",
        type=Path,
        default=None,
        help=f"Append-only log file (defaults to <log dir>/{REMEDIATION_LOG_NAME}).",
    )
    add_common_arguments(parser)
    return parser


def detect_main(argv: Sequence[str] | None = None) -> int:
    parser = build_detect_parser()
    args = parser.parse_args(argv)
    patterns = _patterns(parser, args)
    bootstrap(args)

    try:
        exit_code, matches = detect(patterns)
    except (RuntimeError, OSError) as exc:
        logger.error("Detection failed: {}", exc)
        return EXIT_NON_COMPLIANT

    if matches:
        print("Non-compliant: " + "; ".join(program.display_name for program in matches))
    else:
        print("Compliant")
    return exit_code


def remediate_main(argv: Sequence[str] | None = None) -> int:
    parser = build_remediate_parser()
    args = parser.parse_args(argv)
    patterns = _patterns(parser, args)

    config = bootstrap(args)
    log_file = args.log_file or config.log_dir / REMEDIATION_LOG_NAME
    configure_logging(args.log_level or config.log_level, log_file=log_file)
    logger.info("Remediation started for patterns: {}", ", ".join(patterns))

    try:
        report = remediate(patterns)
    except (RuntimeError, OSError) as exc:
        logger.error("Remediation failed: {}", exc)
        return EXIT_NON_COMPLIANT

    print(
        f"Removed {len(report.removed)}, failed {len(report.failed)}, "
        f"still installed {len(report.remaining)}"
    )
    if report.compliant:
        logger.info("Remediation finished; device is compliant")
        return EXIT_COMPLIANT
    logger.error("Remediation finished; device is still non-compliant")
    return EXIT_NON_COMPLIANT


if __name__ == "__main__":
    raise SystemExit(detect_main())
