"""List Intune apps and clean up duplicate app records."""

from __future__ import annotations

import argparse
from typing import Sequence

import httpx
from loguru import logger

from m365_admin.cli.common import add_common_arguments, add_output_argument, bootstrap, emit_rows
from m365_admin.services.graph import GraphAuthError, GraphRequestError, GraphSession
from m365_admin.services.intune_apps import (
    find_duplicate_apps,
    list_mobile_apps,
    remove_duplicate_apps,
)
from m365_admin.utils.error_handling import format_graph_error

APP_COLUMNS = ("DisplayName", "Version", "VersionSource", "AppType", "Publisher", "LastModified", "Id")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="m365-intune-apps",
        description="List Intune mobile apps; find and remove duplicates, keeping the highest version.",
    )
    parser.add_argument("--name-filter", default=None, help="Only include apps whose name contains this text.")
    parser.add_argument("--duplicates", action="store_true", help="Only show apps that have duplicates.")
    parser.add_argument(
        "--remove-duplicates",
        action="store_true",
        help="Delete every duplicate except the highest version (implies --duplicates).",
    )
    parser.add_argument("--what-if", action="store_true", help="Report what --remove-duplicates would delete.")
    parser.add_argument(
        "--api-version",
        choices=("v1.0", "beta"),
        default="beta",
        help="Graph API version; beta exposes displayVersion for Win32 apps.",
    )
    add_output_argument(parser)
    add_common_arguments(parser)
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    config = bootstrap(args)
    show_duplicates = args.duplicates or args.remove_duplicates

    try:
        with GraphSession(config, api_version=args.api_version) as graph:
            records = list_mobile_apps(graph, name_filter=args.name_filter)
            if not show_duplicates:
                emit_rows((record.as_row() for record in records), output=args.output, columns=APP_COLUMNS)
                return 0

            groups = find_duplicate_apps(records)
            if not groups:
                logger.info("No duplicate apps found")
                print("No duplicate apps found.")
                return 0

            rows = []
            for group in groups:
                rows.append({**group.keep.as_row(), "Action": "keep"})
                rows.extend({**record.as_row(), "Action": "remove"} for record in group.remove)
            emit_rows(rows, output=args.output, columns=("Action", *APP_COLUMNS))

            if not args.remove_duplicates:
                return 0
            report = remove_duplicate_apps(graph, groups, dry_run=args.what_if)
    except (GraphAuthError, GraphRequestError, httpx.HTTPError) as exc:
        logger.error(format_graph_error(exc, "Intune app listing"))
        return 1

    verb = "Would delete" if report.dry_run else "Deleted"
    print(f"{verb} {len(report.removed)} duplicate app(s); {len(report.failed)} failure(s).")
    return 0 if report.succeeded else 1


if __name__ == "__main__":
    raise SystemExit(main())
