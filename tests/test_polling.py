from __future__ import annotations

from dataclasses import dataclass

import pytest

from m365_admin.services.polling import (
    TERMINAL_STATUSES,
    JobStatus,
    PollSettings,
    poll_until_terminal,
    poll_with_settings,
)


@dataclass
class _Job:
    status: JobStatus
    note: str = ""


class _StopPolling(Exception):
    pass


def _scripted(results):
    """Return a fetch function that yields ``results`` in order and counts calls."""
    calls: list[str] = []
    pending = list(results)

    def fetch(handle: str):
        calls.append(handle)
        item = pending.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item

    return fetch, calls


def test_returns_terminal_payload_after_running_checks():
    final = _Job(JobStatus.COMPLETED, note="done")
    fetch, calls = _scripted([_Job(JobStatus.IN_PROGRESS), _Job(JobStatus.IN_PROGRESS), final])
    sleeps: list[float] = []

    result = poll_until_terminal("search-1", fetch, interval_seconds=3, sleep=sleeps.append)

    assert result is final
    assert calls == ["search-1"] * 3
    assert sleeps == [3, 3]


def test_failed_is_terminal_and_returned_not_raised():
    fetch, calls = _scripted([_Job(JobStatus.STARTING), _Job(JobStatus.FAILED)])

    result = poll_until_terminal("search-1", fetch, sleep=lambda _: None)

    assert result.status is JobStatus.FAILED
    assert len(calls) == 2


def test_running_job_is_polled_without_limit():
    running = [_Job(JobStatus.IN_PROGRESS)] * 50
    fetch, calls = _scripted(running + [_StopPolling()])

    with pytest.raises(_StopPolling):
        poll_until_terminal("search-1", fetch, max_fetch_failures=0, sleep=lambda _: None)

    assert len(calls) == 51


def test_transient_errors_below_cap_are_retried():
    fetch, calls = _scripted(
        [ConnectionError("reset"), TimeoutError("slow"), _Job(JobStatus.COMPLETED)]
    )
    sleeps: list[float] = []

    result = poll_until_terminal("job", fetch, max_fetch_failures=2, interval_seconds=1, sleep=sleeps.append)

    assert result.status is JobStatus.COMPLETED
    assert len(calls) == 3
    assert sleeps == [1, 1]


def test_transient_errors_beyond_cap_reraise_last_error():
    errors = [ConnectionError(f"reset {index}") for index in range(3)]
    fetch, calls = _scripted(errors + [_Job(JobStatus.COMPLETED)])

    with pytest.raises(ConnectionError, match="reset 2"):
        poll_until_terminal("job", fetch, max_fetch_failures=2, sleep=lambda _: None)

    assert len(calls) == 3


def test_successful_fetch_resets_failure_count():
    fetch, calls = _scripted(
        [
            ConnectionError("a"),
            ConnectionError("b"),
            _Job(JobStatus.IN_PROGRESS),
            ConnectionError("c"),
            ConnectionError("d"),
            _Job(JobStatus.COMPLETED),
        ]
    )

    result = poll_until_terminal("job", fetch, max_fetch_failures=2, sleep=lambda _: None)

    assert result.status is JobStatus.COMPLETED
    assert len(calls) == 6


def test_non_transient_error_propagates_immediately():
    fetch, calls = _scripted([LookupError("missing"), _Job(JobStatus.COMPLETED)])

    with pytest.raises(LookupError):
        poll_until_terminal("job", fetch, max_fetch_failures=5, sleep=lambda _: None)

    assert len(calls) == 1


def test_custom_terminal_statuses():
    fetch, calls = _scripted([_Job(JobStatus.NOT_STARTED), _Job(JobStatus.STARTING)])

    result = poll_until_terminal(
        "job",
        fetch,
        terminal_statuses={JobStatus.STARTING},
        sleep=lambda _: None,
    )

    assert result.status is JobStatus.STARTING
    assert len(calls) == 2


def test_negative_failure_cap_is_rejected():
    with pytest.raises(ValueError):
        poll_until_terminal("job", lambda _: _Job(JobStatus.COMPLETED), max_fetch_failures=-1)


def test_poll_with_settings_uses_declared_transient_errors():
    class Flaky(Exception):
        pass

    fetch, calls = _scripted([Flaky(), _Job(JobStatus.PARTIALLY_COMPLETED)])
    sleeps: list[float] = []
    settings = PollSettings(interval_seconds=7, max_fetch_failures=1, transient_errors=(Flaky,), sleep=sleeps.append)

    result = poll_with_settings("job", fetch, settings)

    assert result.status is JobStatus.PARTIALLY_COMPLETED
    assert sleeps == [7]


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("Completed", JobStatus.COMPLETED),
        ("completed", JobStatus.COMPLETED),
        ("In Progress", JobStatus.IN_PROGRESS),
        ("Running", JobStatus.IN_PROGRESS),
        ("Created", JobStatus.NOT_STARTED),
        (None, JobStatus.NOT_STARTED),
        ("PartiallyCompleted", JobStatus.PARTIALLY_COMPLETED),
        ("Failed", JobStatus.FAILED),
        ("SomethingNew", JobStatus.IN_PROGRESS),
        (JobStatus.STARTING, JobStatus.STARTING),
    ],
)
def test_job_status_parse(raw, expected):
    assert JobStatus.parse(raw) is expected


def test_terminal_and_success_flags():
    assert TERMINAL_STATUSES == {JobStatus.COMPLETED, JobStatus.PARTIALLY_COMPLETED, JobStatus.FAILED}
    assert JobStatus.FAILED.is_terminal and not JobStatus.FAILED.is_success
    assert JobStatus.PARTIALLY_COMPLETED.is_success
    assert not JobStatus.IN_PROGRESS.is_terminal
