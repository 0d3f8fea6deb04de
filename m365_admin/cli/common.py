"""Argument helpers and bootstrap shared by the command-line tools."""

from __future__ import annotations

import argparse
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Any, Iterable, Mapping, Sequence

from loguru import logger

from m365_admin.config import AdminConfig, load_config
from m365_admin.logging_setup import configure_logging
from m365_admin.utils.exports import export_records, format_table, infer_format

LOG_LEVELS = ("TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR")


def add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--env-file", type=Path, default=None, help="Path to a .env file with M365_ADMIN_* settings.")
    parser.add_argument(
        "--log-level",
        type=str.upper,
        choices=LOG_LEVELS,
        default=None,
        help="Console log level (defaults to M365_ADMIN_LOG_LEVEL or INFO).",
    )


def export_path(value: str) -> Path:
    """argparse type for ``--output``: the suffix must be a supported export format."""
    path = Path(value)
    try:
        infer_format(path)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from exc
    return path


def add_output_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--output",
        type=export_path,
        default=None,
        help="Export the listed records to this .csv or .json file.",
    )


def bootstrap(args: argparse.Namespace) -> AdminConfig:
    config = load_config(args.env_file)
    configure_logging(args.log_level or config.log_level)
    logger.debug("Loaded configuration for environment {}", config.env_name)
    return config


def iso_date(value: str) -> date:
    """argparse type for ``YYYY-MM-DD`` dates."""
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"expected a date as YYYY-MM-DD, got {value!r}") from exc


def bounded_number(kind: type, minimum: float, maximum: float):
    """argparse type accepting ``kind`` values within ``[minimum, maximum]``."""

    def parse(value: str):
        try:
            number = kind(value)
        except ValueError as exc:
            raise argparse.ArgumentTypeError(f"expected a number, got {value!r}") from exc
        if number < minimum or number > maximum:
            raise argparse.ArgumentTypeError(f"must be between {minimum} and {maximum}, got {number}")
        return number

    return parse


def resolve_cutoff(cutoff: date | None, older_than_days: int | None, *, today: date | None = None) -> date:
    if cutoff is not None:
        return cutoff
    if older_than_days is None:
        raise ValueError("Either a cutoff date or a number of days is required")
    return (today or date.today()) - timedelta(days=older_than_days)


def read_patterns(patterns: Sequence[str] | None, patterns_file: Path | None) -> list[str]:
    collected = [pattern.strip() for pattern in patterns or () if pattern.strip()]
    if patterns_file:
        for line in patterns_file.read_text(encoding="utf-8").splitlines():
            line = line.strip()
            if line and not line.startswith("#"):
                collected.append(line)
    return collected


def emit_rows(
    rows: Iterable[Mapping[str, Any]],
    *,
    output: Path | None,
    columns: Sequence[str] | None = None,
) -> None:
    """Print rows as a table and, when requested, export them."""
    materialized = list(rows)
    print(format_table(materialized, columns))
    if output is not None:
        export_records(materialized, output, columns=columns)
