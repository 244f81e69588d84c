"""
Test doubles shared by the pipeline tests: an in-memory MetadataSource with
scripted failures, a recording TraceSink, a recording ProgressReporter and
model builders.
"""
import asyncio
import itertools
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Tuple

from action_trace.models.job import Job, Step
from action_trace.models.page import Page
from action_trace.models.span import SpanKind, SpanStatus
from action_trace.models.workflow_run import WorkflowRef, WorkflowRunSummary

BASE = datetime(2024, 3, 1, 12, 0, 0, tzinfo=timezone.utc)

_ids = itertools.count(1000)


def ts(minutes: float) -> datetime:
    return BASE + timedelta(minutes=minutes)


def make_workflow(name: str = "CI", workflow_id: Optional[int] = None, path: str = "") -> WorkflowRef:
    return WorkflowRef(
        id=workflow_id or next(_ids), name=name, repository="octo/repo",
        path=path or f".github/workflows/{name.lower()}.yml",
    )


def make_run(
    run_id: Optional[int] = None,
    name: str = "CI",
    status: Optional[str] = "completed",
    conclusion: Optional[str] = "success",
    started: Optional[float] = 0,
    updated: Optional[float] = 10,
    created: Optional[float] = 0,
    run_number: int = 1,
) -> WorkflowRunSummary:
    return WorkflowRunSummary(
        id=run_id or next(_ids),
        workflow_name=name,
        run_number=run_number,
        status=status,
        conclusion=conclusion,
        created_at=ts(created) if created is not None else None,
        run_started_at=ts(started) if started is not None else None,
        updated_at=ts(updated) if updated is not None else None,
        repository="octo/repo",
    )


def make_step(
    number: int, started: Optional[float], completed: Optional[float],
    conclusion: Optional[str] = "success", name: Optional[str] = None,
) -> Step:
    return Step(
        name=name or f"step {number}",
        number=number,
        status="completed" if completed is not None else "in_progress",
        conclusion=conclusion,
        started_at=ts(started) if started is not None else None,
        completed_at=ts(completed) if completed is not None else None,
    )


def make_job(
    run_id: int,
    name: str = "build",
    started: Optional[float] = 1,
    completed: Optional[float] = 9,
    conclusion: Optional[str] = "success",
    steps: Tuple[Step, ...] = (),
    job_id: Optional[int] = None,
) -> Job:
    return Job(
        id=job_id or next(_ids),
        run_id=run_id,
        name=name,
        status="completed" if completed is not None else "in_progress",
        conclusion=conclusion,
        started_at=ts(started) if started is not None else None,
        completed_at=ts(completed) if completed is not None else None,
        repository="octo/repo",
        steps=steps,
    )


class FakeMetadataSource:
    """
    Serves pre-split pages. Cursors are page indexes as strings.

    ``failures`` maps (call, key, page_index) to a list of exceptions raised on
    successive attempts before the page is served; for list_steps the page
    index is always 0. Every attempt is recorded in ``calls``.
    """

    def __init__(
        self,
        workflows: List[WorkflowRef],
        runs: Dict[int, List[List[WorkflowRunSummary]]],
        jobs: Dict[int, List[List[Job]]],
        steps: Optional[Dict[int, List[Step]]] = None,
        per_page: Optional[int] = None,
        failures: Optional[Dict[tuple, List[Exception]]] = None,
        delay: float = 0.0,
    ) -> None:
        self.workflows = workflows
        self.runs = runs
        self.jobs = jobs
        self.steps = steps or {}
        self.per_page = per_page
        self.failures = {k: list(v) for k, v in (failures or {}).items()}
        self.delay = delay
        self.calls: List[tuple] = []
        self.in_flight = 0
        self.peak_in_flight = 0

    async def _serve(self, call: str, key: object, pages: List[list], cursor: Optional[str]) -> Page:
        index = int(cursor) if cursor else 0
        self.calls.append((call, key, index))
        self.in_flight += 1
        self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
            pending = self.failures.get((call, key, index))
            if pending:
                raise pending.pop(0)
        finally:
            self.in_flight -= 1
        items = pages[index] if index < len(pages) else []
        next_cursor = str(index + 1) if index + 1 < len(pages) else None
        return Page(items=items, next_cursor=next_cursor, per_page=self.per_page)

    def calls_for(self, call: str) -> List[tuple]:
        return [c for c in self.calls if c[0] == call]

    async def list_workflows(self, owner: str, repo: str, cursor: Optional[str] = None) -> Page:
        return await self._serve("list_workflows", f"{owner}/{repo}", [self.workflows], cursor)

    async def list_runs(self, workflow: WorkflowRef, cursor: Optional[str] = None, limit: Optional[int] = None) -> Page:
        return await self._serve("list_runs", workflow.id, self.runs.get(workflow.id, [[]]), cursor)

    async def list_jobs(self, run: WorkflowRunSummary, cursor: Optional[str] = None) -> Page:
        return await self._serve("list_jobs", run.id, self.jobs.get(run.id, [[]]), cursor)

    async def list_steps(self, job: Job) -> List[Step]:
        page = await self._serve("list_steps", job.id, [self.steps.get(job.id, [])], None)
        return list(page.items)


class RecordingSink:
    """TraceSink that records the open/close sequence; optionally fails on a span name."""

    def __init__(self, fail_on: Optional[str] = None) -> None:
        self.events: List[tuple] = []
        self.fail_on = fail_on
        self._handles = itertools.count(1)

    def start_span(self, kind: SpanKind, name: str, start_time: datetime, parent=None, attributes=None):
        if name == self.fail_on:
            raise ConnectionError("collector unreachable")
        handle = (next(self._handles), name)
        self.events.append(("start", name, start_time, parent[1] if parent else None))
        return handle

    def end_span(self, handle, end_time: datetime, status: SpanStatus) -> None:
        self.events.append(("end", handle[1], end_time, status))


class RecordingProgress:
    def __init__(self) -> None:
        self.events: List[tuple] = []

    def on_workflow_start(self, name: str, total_runs: int) -> None:
        self.events.append(("workflow_start", name, total_runs))

    def on_run_completed(self, name: str, index: int, total: int) -> None:
        self.events.append(("run_completed", name, index, total))

    def on_run_skipped(self, name: str, run_id, reason: str) -> None:
        self.events.append(("run_skipped", name, run_id))
