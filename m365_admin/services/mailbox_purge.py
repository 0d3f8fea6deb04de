"""Mailbox purge and preview workflows built on compliance searches.

A purge action removes at most a handful of items per mailbox per run, so a
single search + purge pair rarely empties a mailbox. :func:`purge_until_empty`
keeps re-running the search and purging until the search reports zero
matches, or stops at the first ``Failed`` status.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Sequence

from loguru import logger
from sqlalchemy.orm import Session

from m365_admin.db import repositories
from m365_admin.db.models import PurgeRun
from m365_admin.services.compliance import (
    ALL_MAILBOXES,
    ActionJob,
    ActionType,
    ComplianceClient,
    ComplianceJobFailedError,
    PurgeType,
    SearchJob,
)
from m365_admin.services.polling import JobStatus, PollSettings, poll_with_settings

PREVIEW_FIELDS = ("Location", "Sender", "Subject", "Type", "Size", "Received Time", "Data Link")
_PREVIEW_FIELD_SPLIT = re.compile(r";\s*(?=(?:%s):)" % "|".join(re.escape(name) for name in PREVIEW_FIELDS))
_PREVIEW_ITEM_SPLIT = re.compile(r"\}\s*,\s*\{")


@dataclass(slots=True)
class PurgeIterationResult:
    iteration: int
    search: SearchJob
    action: ActionJob | None = None


@dataclass(slots=True)
class PurgeOutcome:
    search_name: str
    succeeded: bool
    what_if: bool = False
    iterations: list[PurgeIterationResult] = field(default_factory=list)
    failure: str | None = None
    run_id: int | None = None

    @property
    def purge_actions(self) -> int:
        return sum(1 for item in self.iterations if item.action is not None)

    @property
    def items_purged(self) -> int:
        return sum(
            item.search.items
            for item in self.iterations
            if item.action is not None and item.action.status.is_success
        )

    @property
    def remaining_items(self) -> int:
        if not self.iterations:
            return 0
        return self.iterations[-1].search.items


@dataclass(slots=True)
class PreviewResult:
    search: SearchJob
    action: ActionJob
    items: list[dict[str, str]]


def _run_search(
    client: ComplianceClient,
    name: str,
    query: str,
    locations: Sequence[str],
    settings: PollSettings,
    *,
    reuse: bool,
) -> SearchJob:
    """Create or restart the search, then block until it finishes.

    An existing search with the same name is reused only once its query and
    mailbox scope match the request; a stopped search is updated to match.

    Raises:
        ValueError: If a running search with this name has a different query or scope
    """
    existing = client.find_search(name) if reuse else None
    if existing is None and reuse:
        client.create_search(name, query, locations)
        client.start_search(name)
        return poll_with_settings(name, client.get_search, settings)

    if existing is not None and not search_matches(existing, query, locations):
        if existing.status in (JobStatus.STARTING, JobStatus.IN_PROGRESS):
            raise ValueError(
                f"Compliance search {name} is running with query '{existing.content_query}' "
                f"in {', '.join(existing.locations) or 'no locations'}; choose another search name"
            )
        logger.warning(
            "Existing search {} uses query '{}' in {}; updating it to '{}' in {}",
            name,
            existing.content_query,
            ", ".join(existing.locations) or "no locations",
            query,
            ", ".join(locations),
        )
        client.update_search(name, query, locations)
        client.start_search(name)
    elif existing is not None and existing.status in (JobStatus.STARTING, JobStatus.IN_PROGRESS):
        logger.info("Reusing running compliance search {}", name)
    else:
        client.start_search(name)
    return poll_with_settings(name, client.get_search, settings)


def search_matches(search: SearchJob, query: str, locations: Sequence[str]) -> bool:
    """True when ``search`` runs ``query`` over exactly ``locations`` (case-insensitive)."""
    if (search.content_query or "").strip() != query.strip():
        return False
    return {item.casefold() for item in search.locations} == {item.casefold() for item in locations}


def purge_until_empty(
    client: ComplianceClient,
    search_name: str,
    query: str,
    *,
    locations: Sequence[str] = (ALL_MAILBOXES,),
    purge_type: PurgeType = PurgeType.SOFT_DELETE,
    settings: PollSettings | None = None,
    what_if: bool = False,
    ledger: Session | None = None,
    remove_search_when_done: bool = False,
) -> PurgeOutcome:
    """Search and purge repeatedly until the search matches nothing.

    Halts without retrying when a search or purge action ends ``Failed``.
    With ``what_if`` the search runs once and nothing is purged.
    """
    settings = settings or PollSettings()
    outcome = PurgeOutcome(search_name=search_name, succeeded=False, what_if=what_if)
    run: PurgeRun | None = None
    if ledger is not None:
        run = repositories.start_purge_run(
            ledger,
            search_name=search_name,
            content_query=query,
            locations=locations,
            purge_type=purge_type.value,
            what_if=what_if,
        )
        outcome.run_id = run.id

    try:
        iteration = 0
        while True:
            iteration += 1
            search = _run_search(client, search_name, query, locations, settings, reuse=iteration == 1)
            step = PurgeIterationResult(iteration=iteration, search=search)
            outcome.iterations.append(step)
            logger.info("Pass {}: search {} is {} with {} items", iteration, search_name, search.status.value, search.items)

            if search.status is JobStatus.FAILED:
                outcome.failure = f"Search {search_name} failed: {search.errors or 'no details'}"
                break
            if search.items == 0:
                outcome.succeeded = True
                break
            if what_if:
                logger.info("What-if: {} items would be purged ({})", search.items, purge_type.value)
                outcome.succeeded = True
                break

            action = client.create_action(search_name, ActionType.PURGE, purge_type=purge_type)
            action = poll_with_settings(action.identity, client.get_action, settings)
            step.action = action
            if run is not None:
                repositories.record_iteration(
                    ledger,
                    run,
                    iteration=iteration,
                    search_status=search.status.value,
                    items_matched=search.items,
                    action_identity=action.identity,
                    action_status=action.status.value,
                )
            if action.status is JobStatus.FAILED:
                outcome.failure = f"Purge action {action.identity} failed: {action.errors or 'no details'}"
                break

        if run is not None and step.action is None:
            repositories.record_iteration(
                ledger,
                run,
                iteration=step.iteration,
                search_status=step.search.status.value,
                items_matched=step.search.items,
            )
    except Exception as exc:
        if run is not None:
            repositories.finish_purge_run(ledger, run, outcome="failed", error_message=str(exc)[:2000])
        raise

    if outcome.failure:
        logger.error(outcome.failure)
    else:
        logger.info(
            "Search {} finished after {} purge action(s); {} items remaining",
            search_name,
            outcome.purge_actions,
            outcome.remaining_items,
        )
        if remove_search_when_done and not what_if:
            client.remove_search(search_name)

    if run is not None:
        final = "failed" if outcome.failure else ("what_if" if what_if else "completed")
        repositories.finish_purge_run(ledger, run, outcome=final, error_message=outcome.failure)
    return outcome


def parse_preview_results(results: str | None) -> list[dict[str, str]]:
    """Parse the ``Results`` text of a Preview action into one dict per item.

    The service renders items as ``{Location: a; Sender: b; ...},{...}``.
    Subjects may themselves contain ``;`` so fields are split only in front
    of known field names.
    """
    if not results:
        return []
    text = results.strip()
    if text.startswith("{"):
        text = text[1:]
    if text.endswith("}"):
        text = text[:-1]
    if not text.strip():
        return []

    items: list[dict[str, str]] = []
    for chunk in _PREVIEW_ITEM_SPLIT.split(text):
        record: dict[str, str] = {}
        for part in _PREVIEW_FIELD_SPLIT.split(chunk.strip()):
            key, sep, value = part.partition(":")
            if not sep:
                continue
            record[key.strip()] = value.strip()
        if record:
            items.append(record)
    return items


def preview_mailbox_items(
    client: ComplianceClient,
    search_name: str,
    query: str,
    *,
    locations: Sequence[str] = (ALL_MAILBOXES,),
    settings: PollSettings | None = None,
) -> PreviewResult:
    """Run the search, attach a Preview action and return the previewed items.

    Raises:
        ComplianceJobFailedError: If the search or the preview action fails
    """
    settings = settings or PollSettings()
    search = _run_search(client, search_name, query, locations, settings, reuse=True)
    if search.status is JobStatus.FAILED:
        raise ComplianceJobFailedError(
            f"Search {search_name} failed: {search.errors or 'no details'}",
            job_name=search_name,
            errors=search.errors,
        )

    action = client.create_action(search_name, ActionType.PREVIEW)
    action = poll_with_settings(action.identity, client.get_action, settings)
    if action.status is JobStatus.FAILED:
        raise ComplianceJobFailedError(
            f"Preview action {action.identity} failed: {action.errors or 'no details'}",
            job_name=action.identity,
            errors=action.errors,
        )

    items = parse_preview_results(action.results)
    logger.info("Preview of {} returned {} of {} matching items", search_name, len(items), search.items)
    return PreviewResult(search=search, action=action, items=items)
