from __future__ import annotations

import pytest

from m365_admin.services.intune_apps import (
    DEFAULT_VERSION_STRATEGIES,
    MOBILE_APPS_PATH,
    AppRecord,
    find_duplicate_apps,
    list_mobile_apps,
    remove_duplicate_apps,
    resolve_app_version,
)

from fakes import FakeGraph


def _app(app_id: str, name: str, modified: str = "2024-01-01T00:00:00Z", **extra):
    payload = {
        "id": app_id,
        "displayName": name,
        "@odata.type": "#microsoft.graph.win32LobApp",
        "lastModifiedDateTime": modified,
    }
    payload.update(extra)
    return payload


@pytest.mark.parametrize(
    ("app", "expected"),
    [
        ({"displayVersion": "2.1", "productVersion": "9.9"}, ("2.1", "displayVersion")),
        ({"displayVersion": "  ", "productVersion": "9.9"}, ("9.9", "productVersion")),
        ({"msiInformation": {"productVersion": "3.4.5"}}, ("3.4.5", "msiInformation.productVersion")),
        ({"identityVersion": "5.0.1"}, ("5.0.1", "identityVersion")),
        ({"versionNumber": "118"}, ("118", "versionNumber")),
        ({"bundleVersion": "14.2"}, ("14.2", "bundleVersion")),
        ({"fileName": "Setup_v1.2.3.intunewin"}, ("1.2.3", "fileName")),
        ({"displayName": "Mozilla Firefox 118.0.2"}, ("118.0.2", "displayName")),
        ({"displayName": "Company Portal"}, (None, None)),
    ],
)
def test_resolve_app_version_first_strategy_wins(app, expected):
    assert resolve_app_version(app) == expected


def test_strategies_are_replaceable():
    strategies = (("notes", lambda app: app.get("notes")),) + DEFAULT_VERSION_STRATEGIES

    assert resolve_app_version({"notes": "7.7", "displayVersion": "1.0"}, strategies) == ("7.7", "notes")


def test_app_record_from_graph():
    record = AppRecord.from_graph(_app("1", " 7-Zip ", displayVersion="23.01", publisher="Igor Pavlov"))

    assert record.display_name == "7-Zip"
    assert record.app_type == "win32LobApp"
    assert record.version == "23.01"
    assert record.as_row()["LastModified"] == "2024-01-01T00:00:00+00:00"


def test_list_mobile_apps_filters_by_name():
    graph = FakeGraph({MOBILE_APPS_PATH: [_app("1", "7-Zip"), _app("2", "Google Chrome"), _app("3", "7-zip Extra")]})

    records = list_mobile_apps(graph, name_filter="7-ZIP")

    assert [record.id for record in records] == ["1", "3"]


def test_find_duplicates_keeps_highest_version():
    records = [
        AppRecord.from_graph(_app("old", "Chrome", displayVersion="1.9")),
        AppRecord.from_graph(_app("new", "chrome", displayVersion="1.10.0")),
        AppRecord.from_graph(_app("mid", "Chrome", displayVersion="1.10")),
        AppRecord.from_graph(_app("solo", "Zoom", displayVersion="5.0")),
    ]

    groups = find_duplicate_apps(records)

    assert len(groups) == 1
    group = groups[0]
    # 1.10 and 1.10.0 compare equal
    assert group.keep.id in {"new", "mid"}
    assert "old" in {record.id for record in group.remove}
    assert len(group.remove) == 2


def test_find_duplicates_breaks_version_ties_by_last_modified():
    records = [
        AppRecord.from_graph(_app("a", "Teams", "2023-01-01T00:00:00Z")),
        AppRecord.from_graph(_app("b", "Teams", "2024-06-01T00:00:00Z")),
    ]

    (group,) = find_duplicate_apps(records)

    assert group.keep.id == "b"
    assert [record.id for record in group.remove] == ["a"]


def test_versioned_record_beats_unversioned():
    records = [
        AppRecord.from_graph(_app("none", "Acrobat", "2025-01-01T00:00:00Z")),
        AppRecord.from_graph(_app("v", "Acrobat", "2020-01-01T00:00:00Z", displayVersion="23.0")),
    ]

    (group,) = find_duplicate_apps(records)

    assert group.keep.id == "v"


def test_remove_duplicates_dry_run_deletes_nothing():
    records = [AppRecord.from_graph(_app("a", "X", displayVersion="1")), AppRecord.from_graph(_app("b", "X", displayVersion="2"))]
    graph = FakeGraph()

    report = remove_duplicate_apps(graph, find_duplicate_apps(records), dry_run=True)

    assert report.dry_run
    assert [record.id for record in report.removed] == ["a"]
    assert graph.deleted == []


def test_remove_duplicates_continues_after_failure():
    records = [
        AppRecord.from_graph(_app("a1", "A", displayVersion="1")),
        AppRecord.from_graph(_app("a2", "A", displayVersion="2")),
        AppRecord.from_graph(_app("b1", "B", displayVersion="1")),
        AppRecord.from_graph(_app("b2", "B", displayVersion="2")),
    ]
    graph = FakeGraph(fail_deletes={f"{MOBILE_APPS_PATH}/a1"})

    report = remove_duplicate_apps(graph, find_duplicate_apps(records))

    assert not report.succeeded
    assert [record.id for record, _ in report.failed] == ["a1"]
    assert graph.deleted == [f"{MOBILE_APPS_PATH}/b1"]
