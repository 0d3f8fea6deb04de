from __future__ import annotations

import pytest

from m365_admin.config import AdminConfig
from m365_admin.db import init_db, session_scope
from m365_admin.db import repositories
from m365_admin.db.models import PurgeRun
from m365_admin.utils.json_helpers import safe_json_loads_list


def _run(session, **overrides):
    values = {
        "search_name": "Purge-1",
        "content_query": "received<2024-01-01",
        "locations": ["All"],
        "purge_type": "SoftDelete",
    }
    values.update(overrides)
    return repositories.start_purge_run(session, **values)


def test_start_purge_run(db_session):
    run = _run(db_session, locations=["a@contoso.com", "b@contoso.com"])

    assert run.id is not None
    assert run.outcome == "running"
    assert run.total_items_purged == 0
    assert safe_json_loads_list(run.locations) == ["a@contoso.com", "b@contoso.com"]


def test_record_iteration_counts_only_successful_actions(db_session):
    run = _run(db_session)

    repositories.record_iteration(db_session, run, iteration=1, search_status="Completed", items_matched=10,
                                  action_identity="Purge-1_Purge", action_status="Completed")
    repositories.record_iteration(db_session, run, iteration=2, search_status="Completed", items_matched=4,
                                  action_identity="Purge-1_Purge", action_status="Failed")
    repositories.record_iteration(db_session, run, iteration=3, search_status="Completed", items_matched=4)

    assert run.total_items_purged == 10
    assert [entry.iteration for entry in run.iterations] == [1, 2, 3]


def test_finish_purge_run_validates_outcome(db_session):
    run = _run(db_session)

    with pytest.raises(ValueError):
        repositories.finish_purge_run(db_session, run, outcome="exploded")

    repositories.finish_purge_run(db_session, run, outcome="failed", error_message="boom")
    assert run.outcome == "failed"
    assert run.error_message == "boom"
    assert run.finished_at is not None


def test_list_purge_runs_newest_first(db_session):
    first = _run(db_session, search_name="A")
    second = _run(db_session, search_name="B")
    db_session.commit()

    runs = repositories.list_purge_runs(db_session, limit=1)

    assert [run.id for run in runs] == [second.id]
    assert first.id < second.id


def test_repository_lookups_validate_arguments(db_session):
    with pytest.raises(ValueError):
        repositories.get_purge_run(db_session, 0)
    with pytest.raises(ValueError):
        repositories.list_purge_runs(db_session, limit=0)
    assert repositories.get_purge_run(db_session, 999) is None


def test_session_scope_commits_and_rolls_back(temp_config: AdminConfig):
    init_db(config=temp_config)

    with session_scope(temp_config) as session:
        run_id = _run(session).id

    with pytest.raises(RuntimeError):
        with session_scope(temp_config) as session:
            _run(session, search_name="Rolled back")
            raise RuntimeError("abort")

    with session_scope(temp_config) as session:
        names = [run.search_name for run in session.query(PurgeRun).all()]

    assert names == ["Purge-1"]
    assert run_id is not None
