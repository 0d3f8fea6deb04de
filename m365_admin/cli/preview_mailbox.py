"""Preview the mailbox items a purge would remove."""

from __future__ import annotations

import argparse
from typing import Sequence

from loguru import logger

from m365_admin.cli.common import add_common_arguments, add_output_argument, bootstrap, emit_rows
from m365_admin.cli.purge_mailbox import add_search_arguments, build_poll_settings, build_query
from m365_admin.services.compliance import (
    ALL_MAILBOXES,
    ComplianceClient,
    ComplianceJobFailedError,
    generate_search_name,
    open_compliance_session,
)
from m365_admin.services.mailbox_purge import PREVIEW_FIELDS, preview_mailbox_items
from m365_admin.services.powershell import (
    PowerShellCommandError,
    PowerShellNotAvailableError,
    PowerShellScriptError,
)
from m365_admin.utils.error_handling import format_powershell_error
from m365_admin.utils.path_validation import sanitize_filename
from m365_admin.utils.validation import validate_search_name


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="m365-preview-mailbox",
        description="Run a compliance search with a Preview action and list the matching items.",
    )
    add_search_arguments(parser)
    add_output_argument(parser)
    parser.add_argument("--remove-search", action="store_true", help="Delete the compliance search afterwards.")
    add_common_arguments(parser)
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    config = bootstrap(args)

    query = build_query(args)
    search_name = args.search_name or generate_search_name("Preview", query.cutoff)
    is_valid, error = validate_search_name(search_name)
    if not is_valid:
        logger.error(error)
        return 1

    kql = query.to_kql()
    try:
        with open_compliance_session(config) as session:
            client = ComplianceClient(session)
            result = preview_mailbox_items(
                client,
                search_name,
                kql,
                locations=args.mailboxes or [ALL_MAILBOXES],
                settings=build_poll_settings(args, config),
            )
            if args.remove_search:
                client.remove_search(search_name)
    except (
        ComplianceJobFailedError,
        PowerShellNotAvailableError,
        PowerShellCommandError,
        PowerShellScriptError,
        ValueError,
    ) as exc:
        logger.error(format_powershell_error(exc, "mailbox preview"))
        return 1

    print(f"{search_name}: {result.search.items} matching items, {len(result.items)} previewed")
    output = args.output or config.output_dir / f"{sanitize_filename(search_name)}-preview.csv"
    emit_rows(result.items, output=output, columns=PREVIEW_FIELDS)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
