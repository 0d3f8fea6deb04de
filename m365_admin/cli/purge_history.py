"""Show recorded mailbox purge runs from the local ledger."""

from __future__ import annotations

import argparse
from typing import Any, Sequence

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError

from m365_admin.cli.common import add_common_arguments, add_output_argument, bootstrap, bounded_number, emit_rows
from m365_admin.db import init_db, repositories, session_scope
from m365_admin.db.models import PurgeIteration, PurgeRun
from m365_admin.utils.error_handling import format_database_error
from m365_admin.utils.json_helpers import safe_json_loads_list

RUN_COLUMNS = ("Id", "SearchName", "Outcome", "PurgeType", "WhatIf", "ItemsPurged", "Passes", "Locations", "Query", "StartedAt")
ITERATION_COLUMNS = ("Iteration", "SearchStatus", "ItemsMatched", "ActionIdentity", "ActionStatus", "CreatedAt")


def run_as_row(run: PurgeRun) -> dict[str, Any]:
    return {
        "Id": run.id,
        "SearchName": run.search_name,
        "Outcome": run.outcome,
        "PurgeType": run.purge_type,
        "WhatIf": run.what_if,
        "ItemsPurged": run.total_items_purged,
        "Passes": len(run.iterations),
        "Locations": ", ".join(safe_json_loads_list(run.locations)),
        "Query": run.content_query,
        "StartedAt": run.started_at,
    }


def iteration_as_row(entry: PurgeIteration) -> dict[str, Any]:
    return {
        "Iteration": entry.iteration,
        "SearchStatus": entry.search_status,
        "ItemsMatched": entry.items_matched,
        "ActionIdentity": entry.action_identity or "",
        "ActionStatus": entry.action_status or "",
        "CreatedAt": entry.created_at,
    }


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="m365-purge-history",
        description="List mailbox purge runs recorded by m365-purge-mailbox.",
    )
    parser.add_argument(
        "--limit",
        type=bounded_number(int, 1, 10000),
        default=20,
        help="Number of most recent runs to list.",
    )
    parser.add_argument("--run-id", type=int, default=None, help="Show the search passes of one run instead.")
    add_output_argument(parser)
    add_common_arguments(parser)
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    config = bootstrap(args)

    try:
        init_db(config=config)
        with session_scope(config) as session:
            if args.run_id is not None:
                run = repositories.get_purge_run(session, args.run_id)
                if run is None:
                    logger.error("No purge run with id {}", args.run_id)
                    return 1
                print(f"Run {run.id} ({run.search_name}): {run.outcome}, {run.total_items_purged} items purged")
                if run.error_message:
                    print(f"Error: {run.error_message}")
                rows = [iteration_as_row(entry) for entry in run.iterations]
                columns = ITERATION_COLUMNS
            else:
                rows = [run_as_row(run) for run in repositories.list_purge_runs(session, limit=args.limit)]
                columns = RUN_COLUMNS
    except ValueError as exc:
        logger.error(str(exc))
        return 1
    except SQLAlchemyError as exc:
        logger.error(format_database_error(exc, "purge history lookup"))
        return 1

    if not rows:
        print("No purge runs recorded" if args.run_id is None else "No search passes recorded")
        return 0
    emit_rows(rows, output=args.output, columns=columns)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
