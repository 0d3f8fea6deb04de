"""Compliance search and search-action client for Exchange Online.

All calls go through a connected :class:`PowerShellSession`; the cmdlets come
from the ExchangeOnlineManagement module (``Connect-IPPSSession``).
"""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Mapping, Sequence

from loguru import logger

from m365_admin.config import AdminConfig
from m365_admin.services.polling import JobStatus
from m365_admin.services.powershell import PowerShellSession, format_parameters, quote

EXO_MODULE = "ExchangeOnlineManagement"
ALL_MAILBOXES = "All"

# Status is an enum server side; force strings so JSON does not carry the ordinal
_SEARCH_FIELDS = (
    "Name, @{n='Status';e={[string]$_.Status}}, Items, Size, ContentMatchQuery, "
    "@{n='ExchangeLocation';e={@($_.ExchangeLocation | ForEach-Object { [string]$_ })}}, "
    "@{n='Errors';e={[string]$_.Errors}}, @{n='JobEndTime';e={[string]$_.JobEndTime}}"
)
_ACTION_FIELDS = (
    "Name, @{n='Identity';e={[string]$_.Identity}}, SearchName, "
    "@{n='Action';e={[string]$_.Action}}, @{n='Status';e={[string]$_.Status}}, "
    "@{n='Results';e={[string]$_.Results}}, @{n='Errors';e={[string]$_.Errors}}"
)


class ComplianceJobFailedError(RuntimeError):
    """Raised when a search or action finishes with status ``Failed``."""

    def __init__(self, message: str, *, job_name: str, errors: str | None = None):
        super().__init__(message)
        self.job_name = job_name
        self.errors = errors


class ActionType(str, Enum):
    PREVIEW = "Preview"
    PURGE = "Purge"


class PurgeType(str, Enum):
    SOFT_DELETE = "SoftDelete"
    HARD_DELETE = "HardDelete"


def _to_int(value: Any) -> int:
    if value in (None, ""):
        return 0
    try:
        return int(value)
    except (TypeError, ValueError):
        digits = re.sub(r"[^\d]", "", str(value))
        return int(digits) if digits else 0


@dataclass(slots=True)
class SearchJob:
    name: str
    status: JobStatus
    items: int = 0
    size: int = 0
    content_query: str | None = None
    locations: list[str] = field(default_factory=list)
    errors: str | None = None
    raw: Mapping[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "SearchJob":
        locations = payload.get("ExchangeLocation") or []
        if isinstance(locations, str):
            locations = [locations]
        return cls(
            name=str(payload.get("Name") or ""),
            status=JobStatus.parse(payload.get("Status")),
            items=_to_int(payload.get("Items")),
            size=_to_int(payload.get("Size")),
            content_query=payload.get("ContentMatchQuery"),
            locations=[str(item) for item in locations],
            errors=payload.get("Errors") or None,
            raw=dict(payload),
        )


@dataclass(slots=True)
class ActionJob:
    identity: str
    name: str
    search_name: str
    action: str
    status: JobStatus
    results: str | None = None
    errors: str | None = None
    raw: Mapping[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "ActionJob":
        name = str(payload.get("Name") or "")
        return cls(
            identity=str(payload.get("Identity") or name),
            name=name,
            search_name=str(payload.get("SearchName") or ""),
            action=str(payload.get("Action") or ""),
            status=JobStatus.parse(payload.get("Status")),
            results=payload.get("Results") or None,
            errors=payload.get("Errors") or None,
            raw=dict(payload),
        )


def _kql_phrase(value: str) -> str:
    return '"' + value.replace('"', "") + '"'


@dataclass(slots=True)
class MailboxQuery:
    """Content-match predicate for a mailbox search.

    Only ``cutoff`` is required; items received strictly before it match.
    """

    cutoff: date | datetime
    sender: str | None = None
    subject: str | None = None
    extra: str | None = None

    def to_kql(self) -> str:
        cutoff_day = self.cutoff.date() if isinstance(self.cutoff, datetime) else self.cutoff
        clauses = [f"received<{cutoff_day.isoformat()}"]
        if self.sender:
            clauses.append(f"from:{_kql_phrase(self.sender)}")
        if self.subject:
            clauses.append(f"subject:{_kql_phrase(self.subject)}")
        if self.extra:
            clauses.append(f"({self.extra})")
        return " AND ".join(clauses)


def generate_search_name(prefix: str = "Purge", cutoff: date | datetime | None = None) -> str:
    stamp = cutoff.strftime("%Y%m%d") if cutoff else datetime.now().strftime("%Y%m%d")
    return f"{prefix}-{stamp}-{uuid.uuid4().hex[:8]}"


def build_connect_command(config: AdminConfig) -> str:
    """Build the ``Connect-IPPSSession`` call for app-only or interactive sign-in."""
    if config.client_id and config.certificate_thumbprint and config.organization:
        parameters = {
            "AppId": config.client_id,
            "CertificateThumbprint": config.certificate_thumbprint,
            "Organization": config.organization,
        }
    elif config.user_principal_name:
        parameters = {"UserPrincipalName": config.user_principal_name}
    else:
        raise ValueError(
            "Compliance connection needs either M365_ADMIN_CLIENT_ID, M365_ADMIN_CERT_THUMBPRINT and "
            "M365_ADMIN_ORGANIZATION, or M365_ADMIN_UPN"
        )
    return f"Connect-IPPSSession {format_parameters(parameters)} -ShowBanner:$false"


def open_compliance_session(config: AdminConfig) -> PowerShellSession:
    """Return an unopened session that connects to Security & Compliance on enter."""
    return PowerShellSession(
        powershell_path=config.powershell_path,
        connect_command=build_connect_command(config),
        disconnect_command="Disconnect-ExchangeOnline -Confirm:$false",
        modules=(EXO_MODULE,),
    )


class ComplianceClient:
    """Thin wrapper over the compliance search cmdlets."""

    def __init__(self, session: PowerShellSession):
        self._session = session

    def find_search(self, name: str) -> SearchJob | None:
        rows = self._session.invoke(
            f"Get-ComplianceSearch -Identity {quote(name)} -ErrorAction SilentlyContinue "
            f"| Select-Object {_SEARCH_FIELDS}"
        )
        if not rows:
            return None
        return SearchJob.from_payload(rows[0])

    def get_search(self, name: str) -> SearchJob:
        rows = self._session.invoke(f"Get-ComplianceSearch -Identity {quote(name)} | Select-Object {_SEARCH_FIELDS}")
        if not rows:
            raise LookupError(f"Compliance search '{name}' not found")
        return SearchJob.from_payload(rows[0])

    def create_search(self, name: str, query: str, locations: Sequence[str] = (ALL_MAILBOXES,)) -> SearchJob:
        logger.info("Creating compliance search {} with query {}", name, query)
        parameters = {
            "Name": name,
            "ExchangeLocation": list(locations),
            "ContentMatchQuery": query,
        }
        rows = self._session.invoke(f"New-ComplianceSearch {format_parameters(parameters)} | Select-Object {_SEARCH_FIELDS}")
        if rows:
            return SearchJob.from_payload(rows[0])
        return SearchJob(name=name, status=JobStatus.NOT_STARTED, content_query=query, locations=list(locations))

    def update_search(self, name: str, query: str, locations: Sequence[str] = (ALL_MAILBOXES,)) -> None:
        logger.info("Updating compliance search {} to query {} in {}", name, query, ", ".join(locations))
        parameters = {
            "Identity": name,
            "ExchangeLocation": list(locations),
            "ContentMatchQuery": query,
        }
        self._session.invoke(f"Set-ComplianceSearch {format_parameters(parameters)} -Confirm:$false")

    def start_search(self, name: str) -> None:
        logger.info("Starting compliance search {}", name)
        self._session.invoke(f"Start-ComplianceSearch -Identity {quote(name)}")

    def remove_search(self, name: str) -> None:
        logger.info("Removing compliance search {}", name)
        self._session.invoke(f"Remove-ComplianceSearch -Identity {quote(name)} -Confirm:$false")

    def create_action(
        self,
        search_name: str,
        action: ActionType,
        *,
        purge_type: PurgeType = PurgeType.SOFT_DELETE,
    ) -> ActionJob:
        if action is ActionType.PURGE:
            switches = f"-Purge -PurgeType {purge_type.value} -Confirm:$false -Force"
        else:
            switches = "-Preview -Confirm:$false"
        logger.info("Creating {} action for search {}", action.value, search_name)
        rows = self._session.invoke(
            f"New-ComplianceSearchAction -SearchName {quote(search_name)} {switches} | Select-Object {_ACTION_FIELDS}"
        )
        if not rows:
            identity = f"{search_name}_{action.value}"
            return ActionJob(
                identity=identity,
                name=identity,
                search_name=search_name,
                action=action.value,
                status=JobStatus.NOT_STARTED,
            )
        return ActionJob.from_payload(rows[0])

    def get_action(self, identity: str) -> ActionJob:
        rows = self._session.invoke(
            f"Get-ComplianceSearchAction -Identity {quote(identity)} -Details | Select-Object {_ACTION_FIELDS}"
        )
        if not rows:
            raise LookupError(f"Compliance search action '{identity}' not found")
        return ActionJob.from_payload(rows[0])
