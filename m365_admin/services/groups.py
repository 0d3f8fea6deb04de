"""Entra ID group lookup and membership listing."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping

from loguru import logger

from m365_admin.services.graph import GraphRequestError, GraphSession
from m365_admin.utils.validation import is_guid

MEMBER_SELECT = "id,displayName,userPrincipalName,mail,accountEnabled"


class GroupNotFoundError(LookupError):
    """Raised when no group matches the requested name or id."""


@dataclass(slots=True)
class GroupInfo:
    id: str
    display_name: str
    mail: str | None = None
    description: str | None = None


@dataclass(slots=True)
class GroupMember:
    id: str
    display_name: str | None
    user_principal_name: str | None
    mail: str | None
    member_type: str
    account_enabled: bool | None = None

    @classmethod
    def from_graph(cls, payload: Mapping[str, Any]) -> "GroupMember":
        odata_type = str(payload.get("@odata.type") or "")
        return cls(
            id=str(payload.get("id") or ""),
            display_name=payload.get("displayName"),
            user_principal_name=payload.get("userPrincipalName"),
            mail=payload.get("mail"),
            member_type=odata_type.removeprefix("#microsoft.graph.") or "unknown",
            account_enabled=payload.get("accountEnabled"),
        )

    def as_row(self) -> dict[str, Any]:
        return {
            "Id": self.id,
            "DisplayName": self.display_name,
            "UserPrincipalName": self.user_principal_name,
            "Mail": self.mail,
            "Type": self.member_type,
            "AccountEnabled": self.account_enabled,
        }


def _odata_literal(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def resolve_group(graph: GraphSession, name_or_id: str) -> GroupInfo:
    """Find a group by object id or exact display name.

    Raises:
        GroupNotFoundError: If nothing matches
        ValueError: If the display name is ambiguous
    """
    query = name_or_id.strip()
    if is_guid(query):
        try:
            payload = graph.get_json(f"groups/{query}", params={"$select": "id,displayName,mail,description"})
        except GraphRequestError as exc:
            if exc.status_code == 404:
                raise GroupNotFoundError(f"No group with id {query}") from exc
            raise
        return GroupInfo(
            id=payload["id"],
            display_name=payload.get("displayName") or "",
            mail=payload.get("mail"),
            description=payload.get("description"),
        )

    matches = list(
        graph.iter_collection(
            "groups",
            params={
                "$filter": f"displayName eq {_odata_literal(query)}",
                "$select": "id,displayName,mail,description",
            },
        )
    )
    if not matches:
        raise GroupNotFoundError(f"No group named '{query}'")
    if len(matches) > 1:
        ids = ", ".join(item.get("id", "?") for item in matches)
        raise ValueError(f"Group name '{query}' is ambiguous ({len(matches)} matches: {ids}); pass the group id")
    item = matches[0]
    return GroupInfo(
        id=item["id"],
        display_name=item.get("displayName") or "",
        mail=item.get("mail"),
        description=item.get("description"),
    )


def list_group_members(graph: GraphSession, group: GroupInfo, *, transitive: bool = False) -> list[GroupMember]:
    relation = "transitiveMembers" if transitive else "members"
    members = [
        GroupMember.from_graph(item)
        for item in graph.iter_collection(f"groups/{group.id}/{relation}", params={"$select": MEMBER_SELECT})
    ]
    members.sort(key=lambda member: ((member.display_name or "").casefold(), member.id))
    logger.info("Group {} has {} {} members", group.display_name, len(members), "transitive" if transitive else "direct")
    return members
