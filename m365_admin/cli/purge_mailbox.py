"""Purge mailbox items older than a cutoff, repeating until none remain."""

from __future__ import annotations

import argparse
from typing import Sequence

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError

from m365_admin.cli.common import add_common_arguments, bootstrap, bounded_number, iso_date, resolve_cutoff
from m365_admin.db import init_db, session_scope
from m365_admin.services.compliance import (
    ALL_MAILBOXES,
    ComplianceClient,
    MailboxQuery,
    PurgeType,
    generate_search_name,
    open_compliance_session,
)
from m365_admin.services.mailbox_purge import purge_until_empty
from m365_admin.services.polling import PollSettings
from m365_admin.services.powershell import (
    PowerShellCommandError,
    PowerShellNotAvailableError,
    PowerShellScriptError,
)
from m365_admin.utils.error_handling import format_database_error, format_powershell_error
from m365_admin.utils.validation import validate_search_name


def add_search_arguments(parser: argparse.ArgumentParser) -> None:
    age = parser.add_mutually_exclusive_group(required=True)
    age.add_argument("--cutoff", type=iso_date, help="Match items received before this date (YYYY-MM-DD).")
    age.add_argument(
        "--older-than-days",
        type=bounded_number(int, 1, 36500),
        help="Match items received more than this many days ago.",
    )
    parser.add_argument("--sender", default=None, help="Only match items from this sender address.")
    parser.add_argument("--subject", default=None, help="Only match items whose subject contains this phrase.")
    parser.add_argument("--query-extra", default=None, help="Additional KQL clause ANDed into the query.")
    parser.add_argument(
        "--mailbox",
        action="append",
        dest="mailboxes",
        default=None,
        help="Mailbox to search (repeatable). Defaults to all mailboxes.",
    )
    parser.add_argument("--search-name", default=None, help="Compliance search name to create or reuse.")
    parser.add_argument(
        "--poll-interval",
        type=bounded_number(float, 1, 300),
        default=None,
        help="Seconds between status checks (defaults to M365_ADMIN_POLL_INTERVAL or 10).",
    )
    parser.add_argument(
        "--max-fetch-failures",
        type=bounded_number(int, 0, 100),
        default=None,
        help="Consecutive failed status checks tolerated before giving up.",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="m365-purge-mailbox",
        description="Purge mailbox items with compliance search purge actions until no matches remain.",
    )
    add_search_arguments(parser)
    parser.add_argument(
        "--purge-type",
        choices=[item.value for item in PurgeType],
        default=PurgeType.SOFT_DELETE.value,
        help="SoftDelete keeps items recoverable; HardDelete marks them for permanent removal.",
    )
    parser.add_argument("--what-if", action="store_true", help="Run the search once and report the count only.")
    parser.add_argument("--remove-search", action="store_true", help="Delete the compliance search when done.")
    parser.add_argument("--no-ledger", action="store_true", help="Do not record the run in the local ledger database.")
    add_common_arguments(parser)
    return parser


def build_poll_settings(args: argparse.Namespace, config) -> PollSettings:
    return PollSettings(
        interval_seconds=args.poll_interval if args.poll_interval is not None else config.poll_interval_seconds,
        max_fetch_failures=(
            args.max_fetch_failures if args.max_fetch_failures is not None else config.poll_max_failures
        ),
        transient_errors=(PowerShellCommandError,),
    )


def build_query(args: argparse.Namespace) -> MailboxQuery:
    return MailboxQuery(
        cutoff=resolve_cutoff(args.cutoff, args.older_than_days),
        sender=args.sender,
        subject=args.subject,
        extra=args.query_extra,
    )


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    config = bootstrap(args)

    query = build_query(args)
    search_name = args.search_name or generate_search_name("Purge", query.cutoff)
    is_valid, error = validate_search_name(search_name)
    if not is_valid:
        logger.error(error)
        return 1

    kql = query.to_kql()
    locations = args.mailboxes or [ALL_MAILBOXES]
    settings = build_poll_settings(args, config)
    purge_type = PurgeType(args.purge_type)
    logger.info("Search {}: {} in {}", search_name, kql, ", ".join(locations))

    try:
        with open_compliance_session(config) as session:
            client = ComplianceClient(session)
            if args.no_ledger:
                outcome = purge_until_empty(
                    client,
                    search_name,
                    kql,
                    locations=locations,
                    purge_type=purge_type,
                    settings=settings,
                    what_if=args.what_if,
                    remove_search_when_done=args.remove_search,
                )
            else:
                init_db(config=config)
                with session_scope(config) as ledger:
                    try:
                        outcome = purge_until_empty(
                            client,
                            search_name,
                            kql,
                            locations=locations,
                            purge_type=purge_type,
                            settings=settings,
                            what_if=args.what_if,
                            ledger=ledger,
                            remove_search_when_done=args.remove_search,
                        )
                    except (PowerShellCommandError, PowerShellScriptError, ValueError) as exc:
                        # Returning here keeps the failed run in the ledger
                        logger.error(format_powershell_error(exc, "mailbox purge"))
                        return 1
    except (PowerShellNotAvailableError, PowerShellCommandError, PowerShellScriptError, ValueError) as exc:
        logger.error(format_powershell_error(exc, "mailbox purge"))
        return 1
    except SQLAlchemyError as exc:
        logger.error(format_database_error(exc, "purge ledger update"))
        return 1

    if args.what_if:
        print(f"What-if: {outcome.remaining_items} items match {kql}")
    else:
        print(
            f"{search_name}: {outcome.purge_actions} purge action(s), "
            f"{outcome.items_purged} items purged, {outcome.remaining_items} remaining"
        )
    if not outcome.succeeded:
        print(f"FAILED: {outcome.failure}")
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
