"""Repository helpers for recording purge runs."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional, Sequence

from loguru import logger
from sqlalchemy import select
from sqlalchemy.orm import Session

from m365_admin.utils.json_helpers import safe_json_dumps
from m365_admin.utils.validation import validate_limit, validate_run_id

from .models import PurgeIteration, PurgeRun

RUN_OUTCOMES = {"running", "completed", "failed", "what_if"}


def start_purge_run(
    session: Session,
    *,
    search_name: str,
    content_query: str,
    locations: Sequence[str],
    purge_type: str,
    what_if: bool = False,
) -> PurgeRun:
    run = PurgeRun(
        search_name=search_name,
        content_query=content_query,
        locations=safe_json_dumps(list(locations)),
        purge_type=purge_type,
        what_if=what_if,
        outcome="running",
        total_items_purged=0,
    )
    session.add(run)
    session.flush()
    logger.debug("Recorded purge run {} for search {}", run.id, search_name)
    return run


def record_iteration(
    session: Session,
    run: PurgeRun,
    *,
    iteration: int,
    search_status: str,
    items_matched: int,
    action_identity: str | None = None,
    action_status: str | None = None,
) -> PurgeIteration:
    entry = PurgeIteration(
        iteration=iteration,
        search_status=search_status,
        items_matched=items_matched,
        action_identity=action_identity,
        action_status=action_status,
    )
    run.iterations.append(entry)
    if action_identity and action_status in ("Completed", "PartiallyCompleted"):
        run.total_items_purged += items_matched
    session.flush()
    return entry


def finish_purge_run(session: Session, run: PurgeRun, *, outcome: str, error_message: str | None = None) -> PurgeRun:
    if outcome not in RUN_OUTCOMES:
        raise ValueError(f"Unknown purge run outcome: {outcome}")
    run.outcome = outcome
    run.error_message = error_message
    run.finished_at = datetime.now(timezone.utc)
    session.flush()
    return run


def get_purge_run(session: Session, run_id: int) -> Optional[PurgeRun]:
    is_valid, error_msg = validate_run_id(run_id)
    if not is_valid:
        logger.warning("Invalid run_id in get_purge_run: {}", error_msg)
        raise ValueError(error_msg)
    return session.get(PurgeRun, run_id)


def list_purge_runs(session: Session, limit: int = 50) -> List[PurgeRun]:
    is_valid, error_msg = validate_limit(limit)
    if not is_valid:
        logger.warning("Invalid limit in list_purge_runs: {}", error_msg)
        raise ValueError(error_msg)
    stmt = select(PurgeRun).order_by(PurgeRun.id.desc()).limit(limit)
    return list(session.execute(stmt).scalars())
