"""List the members of an Entra ID group."""

from __future__ import annotations

import argparse
from typing import Sequence

import httpx
from loguru import logger

from m365_admin.cli.common import add_common_arguments, add_output_argument, bootstrap, emit_rows
from m365_admin.services.graph import GraphAuthError, GraphRequestError, GraphSession
from m365_admin.services.groups import GroupNotFoundError, list_group_members, resolve_group
from m365_admin.utils.error_handling import format_graph_error

MEMBER_COLUMNS = ("DisplayName", "UserPrincipalName", "Mail", "Type", "AccountEnabled", "Id")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="m365-group-members", description="List the members of a group.")
    parser.add_argument("group", help="Group display name or object id.")
    parser.add_argument("--transitive", action="store_true", help="Include members of nested groups.")
    add_output_argument(parser)
    add_common_arguments(parser)
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    config = bootstrap(args)

    try:
        with GraphSession(config) as graph:
            group = resolve_group(graph, args.group)
            members = list_group_members(graph, group, transitive=args.transitive)
    except (GroupNotFoundError, ValueError) as exc:
        logger.error(str(exc))
        return 1
    except (GraphAuthError, GraphRequestError, httpx.HTTPError) as exc:
        logger.error(format_graph_error(exc, "group membership listing"))
        return 1

    print(f"{group.display_name} ({group.id}): {len(members)} member(s)")
    if members:
        emit_rows((member.as_row() for member in members), output=args.output, columns=MEMBER_COLUMNS)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
