"""Intune mobile-app listing and duplicate cleanup via Microsoft Graph."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Iterable, Mapping, Optional, Sequence

from loguru import logger

from m365_admin.services.graph import GraphRequestError, GraphSession
from m365_admin.utils.versions import extract_version, version_key

MOBILE_APPS_PATH = "deviceAppManagement/mobileApps"

VersionStrategy = tuple[str, Callable[[Mapping[str, Any]], Optional[str]]]


def _field(name: str) -> Callable[[Mapping[str, Any]], Optional[str]]:
    def lookup(app: Mapping[str, Any]) -> Optional[str]:
        value = app.get(name)
        if value is None:
            return None
        return str(value).strip() or None

    return lookup


def _msi_product_version(app: Mapping[str, Any]) -> Optional[str]:
    info = app.get("msiInformation")
    if isinstance(info, Mapping) and info.get("productVersion"):
        return str(info["productVersion"])
    return None


def _from_file_name(app: Mapping[str, Any]) -> Optional[str]:
    return extract_version(app.get("fileName"))


def _from_display_name(app: Mapping[str, Any]) -> Optional[str]:
    return extract_version(app.get("displayName"))


# Tried in order; the first strategy returning a value wins
DEFAULT_VERSION_STRATEGIES: tuple[VersionStrategy, ...] = (
    ("displayVersion", _field("displayVersion")),
    ("productVersion", _field("productVersion")),
    ("msiInformation.productVersion", _msi_product_version),
    ("identityVersion", _field("identityVersion")),
    ("versionNumber", _field("versionNumber")),
    ("versionName", _field("versionName")),
    ("bundleVersion", _field("bundleVersion")),
    ("fileName", _from_file_name),
    ("displayName", _from_display_name),
)


def resolve_app_version(
    app: Mapping[str, Any],
    strategies: Sequence[VersionStrategy] = DEFAULT_VERSION_STRATEGIES,
) -> tuple[Optional[str], Optional[str]]:
    """Return ``(version, strategy_name)`` from the first strategy that yields a value."""
    for name, strategy in strategies:
        value = strategy(app)
        if value:
            return value, name
    return None, None


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None


@dataclass(slots=True)
class AppRecord:
    id: str
    display_name: str
    version: Optional[str]
    version_source: Optional[str]
    app_type: str
    publisher: Optional[str] = None
    file_name: Optional[str] = None
    created: Optional[datetime] = None
    last_modified: Optional[datetime] = None

    @classmethod
    def from_graph(
        cls,
        app: Mapping[str, Any],
        strategies: Sequence[VersionStrategy] = DEFAULT_VERSION_STRATEGIES,
    ) -> "AppRecord":
        version, source = resolve_app_version(app, strategies)
        return cls(
            id=str(app.get("id") or ""),
            display_name=str(app.get("displayName") or "").strip(),
            version=version,
            version_source=source,
            app_type=str(app.get("@odata.type") or "").removeprefix("#microsoft.graph."),
            publisher=app.get("publisher") or None,
            file_name=app.get("fileName") or None,
            created=_parse_timestamp(app.get("createdDateTime")),
            last_modified=_parse_timestamp(app.get("lastModifiedDateTime")),
        )

    def as_row(self) -> dict[str, Any]:
        return {
            "Id": self.id,
            "DisplayName": self.display_name,
            "Version": self.version,
            "VersionSource": self.version_source,
            "AppType": self.app_type,
            "Publisher": self.publisher,
            "FileName": self.file_name,
            "Created": self.created.isoformat() if self.created else None,
            "LastModified": self.last_modified.isoformat() if self.last_modified else None,
        }


@dataclass(slots=True)
class DuplicateGroup:
    display_name: str
    keep: AppRecord
    remove: list[AppRecord]


@dataclass(slots=True)
class RemovalReport:
    removed: list[AppRecord] = field(default_factory=list)
    failed: list[tuple[AppRecord, str]] = field(default_factory=list)
    dry_run: bool = False

    @property
    def succeeded(self) -> bool:
        return not self.failed


def list_mobile_apps(
    graph: GraphSession,
    *,
    name_filter: str | None = None,
    strategies: Sequence[VersionStrategy] = DEFAULT_VERSION_STRATEGIES,
) -> list[AppRecord]:
    """List Intune apps, optionally keeping only names containing ``name_filter``."""
    needle = name_filter.casefold() if name_filter else None
    records: list[AppRecord] = []
    for app in graph.iter_collection(MOBILE_APPS_PATH):
        record = AppRecord.from_graph(app, strategies)
        if needle and needle not in record.display_name.casefold():
            continue
        records.append(record)
    logger.info("Retrieved {} Intune app records", len(records))
    return records


def _rank(record: AppRecord) -> tuple:
    modified = record.last_modified.timestamp() if record.last_modified else 0.0
    return (version_key(record.version), modified)


def find_duplicate_apps(records: Iterable[AppRecord]) -> list[DuplicateGroup]:
    """Group records by display name and keep the highest version of each.

    Ties on version fall back to the most recently modified record.
    """
    grouped: dict[str, list[AppRecord]] = {}
    for record in records:
        if not record.display_name:
            continue
        grouped.setdefault(record.display_name.casefold(), []).append(record)

    duplicates: list[DuplicateGroup] = []
    for members in grouped.values():
        if len(members) < 2:
            continue
        ordered = sorted(members, key=_rank, reverse=True)
        duplicates.append(DuplicateGroup(display_name=ordered[0].display_name, keep=ordered[0], remove=ordered[1:]))

    duplicates.sort(key=lambda group: group.display_name.casefold())
    return duplicates


def remove_duplicate_apps(graph: GraphSession, groups: Iterable[DuplicateGroup], *, dry_run: bool = False) -> RemovalReport:
    """Delete every non-kept record; one failed delete does not stop the others."""
    report = RemovalReport(dry_run=dry_run)
    for group in groups:
        for record in group.remove:
            if dry_run:
                logger.info(
                    "What-if: would delete {} {} ({}), keeping {}",
                    record.display_name,
                    record.version or "<no version>",
                    record.id,
                    group.keep.version or "<no version>",
                )
                report.removed.append(record)
                continue
            try:
                graph.delete(f"{MOBILE_APPS_PATH}/{record.id}")
            except GraphRequestError as exc:
                logger.error("Failed to delete {} ({}): {}", record.display_name, record.id, exc)
                report.failed.append((record, str(exc)))
                continue
            logger.info("Deleted {} {} ({})", record.display_name, record.version or "<no version>", record.id)
            report.removed.append(record)
    return report
