"""Blocking poller for server-side jobs that finish asynchronously.

Compliance searches and search actions run on the service side and are only
observable by asking for their status again. :func:`poll_until_terminal`
repeats a status fetch with a fixed sleep between attempts until the job
reports a terminal status, then hands the final payload back untouched.

Two kinds of "not done" are kept apart:

* the job is still running: retried forever, there is no wall-clock limit;
* the status fetch itself raised one of the ``transient_errors``: retried up
  to ``max_fetch_failures`` consecutive times, after which the last error is
  re-raised.

Any other exception raised by the fetch propagates immediately.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Collection, Protocol, TypeVar

from loguru import logger

DEFAULT_POLL_INTERVAL_SECONDS = 10.0
DEFAULT_MAX_FETCH_FAILURES = 5


class JobStatus(str, Enum):
    """Lifecycle states reported for compliance searches and actions."""

    NOT_STARTED = "NotStarted"
    STARTING = "Starting"
    IN_PROGRESS = "InProgress"
    COMPLETED = "Completed"
    PARTIALLY_COMPLETED = "PartiallyCompleted"
    FAILED = "Failed"

    @classmethod
    def parse(cls, value: object) -> "JobStatus":
        """Normalize a vendor status string.

        Unknown values are treated as still running so the poller keeps going.
        """
        if isinstance(value, JobStatus):
            return value
        text = str(value or "").strip().replace(" ", "").lower()
        return _STATUS_ALIASES.get(text, cls.IN_PROGRESS)

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @property
    def is_success(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.PARTIALLY_COMPLETED)


_STATUS_ALIASES = {
    "": JobStatus.NOT_STARTED,
    "notstarted": JobStatus.NOT_STARTED,
    "created": JobStatus.NOT_STARTED,
    "starting": JobStatus.STARTING,
    "inprogress": JobStatus.IN_PROGRESS,
    "running": JobStatus.IN_PROGRESS,
    "completed": JobStatus.COMPLETED,
    "partiallycompleted": JobStatus.PARTIALLY_COMPLETED,
    "failed": JobStatus.FAILED,
}

TERMINAL_STATUSES: frozenset[JobStatus] = frozenset(
    {JobStatus.COMPLETED, JobStatus.PARTIALLY_COMPLETED, JobStatus.FAILED}
)


class HasStatus(Protocol):
    status: JobStatus


PayloadT = TypeVar("PayloadT", bound=HasStatus)


@dataclass(slots=True)
class PollSettings:
    """Knobs shared by every poll in a run."""

    interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS
    max_fetch_failures: int = DEFAULT_MAX_FETCH_FAILURES
    transient_errors: tuple[type[BaseException], ...] = (ConnectionError, TimeoutError)
    sleep: Callable[[float], None] = time.sleep


def poll_until_terminal(
    handle: str,
    fetch_status: Callable[[str], PayloadT],
    *,
    terminal_statuses: Collection[JobStatus] = TERMINAL_STATUSES,
    interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS,
    max_fetch_failures: int = DEFAULT_MAX_FETCH_FAILURES,
    transient_errors: tuple[type[BaseException], ...] = (ConnectionError, TimeoutError),
    sleep: Callable[[float], None] = time.sleep,
) -> PayloadT:
    """Block until ``fetch_status(handle)`` reports a terminal status.

    Args:
        handle: Job name or identity passed to ``fetch_status``.
        fetch_status: Returns the current job payload; its ``status`` attribute
            is compared against ``terminal_statuses``.
        terminal_statuses: Statuses that end the poll.
        interval_seconds: Fixed delay between fetches.
        max_fetch_failures: Consecutive transient fetch errors tolerated before
            the last one is re-raised.
        transient_errors: Exception types counted as transient fetch failures.
        sleep: Delay function, injectable for tests.

    Returns:
        The payload whose status was terminal, unmodified.
    """
    if max_fetch_failures < 0:
        raise ValueError("max_fetch_failures must be zero or positive")

    attempt = 0
    consecutive_failures = 0
    while True:
        attempt += 1
        try:
            payload = fetch_status(handle)
        except transient_errors as exc:
            consecutive_failures += 1
            if consecutive_failures > max_fetch_failures:
                logger.error(
                    "Status fetch for {} failed {} times in a row; giving up: {}",
                    handle,
                    consecutive_failures,
                    exc,
                )
                raise
            logger.warning(
                "Status fetch for {} failed ({}/{}), retrying in {}s: {}",
                handle,
                consecutive_failures,
                max_fetch_failures,
                interval_seconds,
                exc,
            )
            sleep(interval_seconds)
            continue

        consecutive_failures = 0
        if payload.status in terminal_statuses:
            logger.info("{} reached {} after {} status checks", handle, payload.status.value, attempt)
            return payload

        logger.debug("{} is {}; checking again in {}s", handle, payload.status.value, interval_seconds)
        sleep(interval_seconds)


def poll_with_settings(
    handle: str,
    fetch_status: Callable[[str], PayloadT],
    settings: PollSettings,
    *,
    terminal_statuses: Collection[JobStatus] = TERMINAL_STATUSES,
) -> PayloadT:
    """Run :func:`poll_until_terminal` with the values held by ``settings``."""
    return poll_until_terminal(
        handle,
        fetch_status,
        terminal_statuses=terminal_statuses,
        interval_seconds=settings.interval_seconds,
        max_fetch_failures=settings.max_fetch_failures,
        transient_errors=settings.transient_errors,
        sleep=settings.sleep,
    )
