"""In-memory stand-ins for the PowerShell process, compliance client and Graph session."""

from __future__ import annotations

import base64
import json
import re
from collections import deque
from typing import Any, Callable, Sequence

from m365_admin.services.compliance import ActionJob, ActionType, PurgeType, SearchJob
from m365_admin.services.graph import GraphRequestError
from m365_admin.services.polling import JobStatus
from m365_admin.services.powershell import PowerShellCommandError

_MARKER = re.compile(r"Write-Output '(__M365_ADMIN_END_[0-9a-f]+__)'")
_PAYLOAD = re.compile(r"FromBase64String\('([^']+)'\)")


class FakeComplianceClient:
    """Scripted compliance service.

    Every ``start_search`` begins a new pass; within a pass ``get_search``
    reports ``InProgress`` for ``running_checks`` calls, then ``Completed``
    with the pass's matched-item count.
    """

    def __init__(
        self,
        counts: Sequence[int],
        *,
        running_checks: int = 1,
        action_statuses: Sequence[JobStatus] | None = None,
        existing: SearchJob | None = None,
        search_status: JobStatus = JobStatus.COMPLETED,
        preview_results: str | None = None,
    ):
        self.counts = list(counts)
        self.running_checks = running_checks
        self.action_statuses = deque(action_statuses or [])
        self.existing = existing
        self.search_status = search_status
        self.preview_results = preview_results
        self.calls: list[tuple[str, Any]] = []
        self.pass_index = -1
        self._checks_this_pass = 0
        self.actions: list[ActionJob] = []

    def find_search(self, name: str) -> SearchJob | None:
        self.calls.append(("find_search", name))
        return self.existing

    def create_search(self, name: str, query: str, locations) -> SearchJob:
        self.calls.append(("create_search", (name, query, list(locations))))
        return SearchJob(name=name, status=JobStatus.NOT_STARTED, content_query=query, locations=list(locations))

    def update_search(self, name: str, query: str, locations) -> None:
        self.calls.append(("update_search", (name, query, list(locations))))

    def start_search(self, name: str) -> None:
        self.calls.append(("start_search", name))
        self.pass_index += 1
        self._checks_this_pass = 0

    def get_search(self, name: str) -> SearchJob:
        self.calls.append(("get_search", name))
        self._checks_this_pass += 1
        if self._checks_this_pass <= self.running_checks:
            return SearchJob(name=name, status=JobStatus.IN_PROGRESS)
        items = self.counts[min(max(self.pass_index, 0), len(self.counts) - 1)]
        return SearchJob(name=name, status=self.search_status, items=items, errors="boom" if self.search_status is JobStatus.FAILED else None)

    def create_action(self, search_name: str, action: ActionType, *, purge_type: PurgeType = PurgeType.SOFT_DELETE) -> ActionJob:
        self.calls.append(("create_action", (search_name, action, purge_type)))
        identity = f"{search_name}_{action.value}_{len(self.actions) + 1}"
        job = ActionJob(identity=identity, name=identity, search_name=search_name, action=action.value, status=JobStatus.NOT_STARTED)
        self.actions.append(job)
        return job

    def get_action(self, identity: str) -> ActionJob:
        self.calls.append(("get_action", identity))
        status = self.action_statuses.popleft() if self.action_statuses else JobStatus.COMPLETED
        action = "Preview" if "_Preview_" in identity else "Purge"
        return ActionJob(
            identity=identity,
            name=identity,
            search_name=identity.split("_")[0],
            action=action,
            status=status,
            results=self.preview_results,
            errors="purge failed" if status is JobStatus.FAILED else None,
        )

    def remove_search(self, name: str) -> None:
        self.calls.append(("remove_search", name))

    def count(self, call_name: str) -> int:
        return sum(1 for name, _ in self.calls if name == call_name)


class FakeSession:
    """Records commands; ``responder`` maps a command to its output rows."""

    def __init__(self, responder: Callable[[str], list[Any]] | None = None):
        self.commands: list[str] = []
        self.responder = responder or (lambda command: [])

    def invoke(self, command: str) -> list[Any]:
        self.commands.append(command)
        return self.responder(command)


class _FakeStdin:
    def __init__(self, process: "FakePowerShellProcess"):
        self._process = process

    def write(self, text: str) -> int:
        self._process.receive(text)
        return len(text)

    def flush(self) -> None:
        pass


class _FakeStdout:
    def __init__(self) -> None:
        self.lines: deque[str] = deque()

    def readline(self) -> str:
        return self.lines.popleft() if self.lines else ""


class FakePowerShellProcess:
    """Imitates ``pwsh -Command -``: decodes each envelope and answers it.

    ``responder`` receives the decoded command and returns the data to wrap,
    or raises :class:`PowerShellCommandError` to produce an error envelope.
    """

    def __init__(self, responder: Callable[[str], Any]):
        self.responder = responder
        self.commands: list[str] = []
        self.raw_lines: list[str] = []
        self.returncode: int | None = None
        self.stdin = _FakeStdin(self)
        self.stdout = _FakeStdout()
        self.args: list[str] | None = None

    def __call__(self, args, **kwargs) -> "FakePowerShellProcess":
        self.args = list(args)
        return self

    def receive(self, text: str) -> None:
        for line in text.splitlines():
            self.raw_lines.append(line)
            if line.strip() == "exit":
                self.returncode = 0
                continue
            marker = _MARKER.search(line)
            payload = _PAYLOAD.search(line)
            if not marker or not payload:
                continue
            command = base64.b64decode(payload.group(1)).decode("utf-8")
            self.commands.append(command)
            try:
                data = self.responder(command)
                envelope = {"ok": True, "data": data}
            except PowerShellCommandError as exc:
                envelope = {"ok": False, "error": str(exc), "category": "InvalidOperation", "fqid": "Fake"}
            self.stdout.lines.append("WARNING: banner noise\n")
            self.stdout.lines.append(json.dumps(envelope) + "\n")
            self.stdout.lines.append(marker.group(1) + "\n")

    def poll(self) -> int | None:
        return self.returncode

    def wait(self, timeout: float | None = None) -> int:
        self.returncode = 0 if self.returncode is None else self.returncode
        return self.returncode

    def kill(self) -> None:
        self.returncode = -9


class FakeGraph:
    """Serves collections from a dict keyed by path and records deletes."""

    def __init__(self, collections=None, objects=None, fail_deletes=()):
        self.collections = collections or {}
        self.objects = objects or {}
        self.fail_deletes = set(fail_deletes)
        self.requests: list[tuple[str, Any]] = []
        self.deleted: list[str] = []

    def iter_collection(self, path, *, params=None):
        self.requests.append((path, params))
        yield from self.collections.get(path, [])

    def get_json(self, path, *, params=None):
        self.requests.append((path, params))
        if path not in self.objects:
            raise GraphRequestError(f"GET {path} returned 404", status_code=404, code="Request_ResourceNotFound")
        return self.objects[path]

    def delete(self, path):
        if path in self.fail_deletes:
            raise GraphRequestError(f"DELETE {path} returned 400", status_code=400)
        self.deleted.append(path)
