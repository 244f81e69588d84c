"""
Span Builder
============
Pure transformation of one fetched run into a SpanDescriptor tree.

    build(run, jobs, now) -> root descriptor (run span)
        └── job spans (API order)
              └── step spans (by sequence number)

Timing resolution:
    Run start   earliest of run_started_at and every job start; falls back to
                created_at, then ``now``.
    Run end     ``now`` while the run is in progress; otherwise latest of
                updated_at and every job completion; falls back to ``now``.
    Job         own timestamps; a missing start takes the run start, a
                missing completion takes the run end; clamped into the run.
    Step        own timestamps; a missing start takes the job start, a
                missing completion takes the job end; clamped into the job.

Clock skew and partial data are absorbed by clamping rather than rejected,
so every tree is valid: end >= start everywhere and each child lies within
its parent.

Status:
    error  failure-class conclusion (failure, timed_out, cancelled, ...)
    ok     any other conclusion
    unset  no conclusion yet
"""
from datetime import datetime, timezone
from typing import Dict, Iterable, Optional, Sequence, Tuple

from action_trace.core.constants import ERROR_CONCLUSIONS, RUN_STATUS_COMPLETED
from action_trace.models.job import Job, Step
from action_trace.models.span import AttributeValue, SpanDescriptor, SpanKind, SpanStatus
from action_trace.models.workflow_run import WorkflowRunSummary


def _utc(value: datetime) -> datetime:
    """Treat naive timestamps as UTC so they compare with aware ones."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _present(values: Iterable[Optional[datetime]]) -> list:
    return [_utc(v) for v in values if v is not None]


def _clamp(value: datetime, lower: datetime, upper: datetime) -> datetime:
    return max(lower, min(value, upper))


def _interval(
    start: Optional[datetime],
    end: Optional[datetime],
    parent_start: datetime,
    parent_end: datetime,
) -> Tuple[datetime, datetime]:
    """Resolve a child interval inside its parent's bounds."""
    resolved_start = _clamp(_utc(start) if start else parent_start, parent_start, parent_end)
    resolved_end = _clamp(_utc(end) if end else parent_end, parent_start, parent_end)
    return resolved_start, max(resolved_end, resolved_start)


def span_status(conclusion: Optional[str]) -> SpanStatus:
    if not conclusion:
        return SpanStatus.UNSET
    if conclusion.lower() in ERROR_CONCLUSIONS:
        return SpanStatus.ERROR
    return SpanStatus.OK


def _attributes(**values: Optional[AttributeValue]) -> Dict[str, AttributeValue]:
    """Keep only values an exporter can carry; drop the absent ones."""
    return {f"ci.{key}": value for key, value in values.items() if value is not None and value != ""}


def run_in_progress(run: WorkflowRunSummary, jobs: Sequence[Job]) -> bool:
    if run.status:
        return run.status != RUN_STATUS_COMPLETED
    return run.conclusion is None and not any(job.completed_at for job in jobs)


def resolve_run_interval(
    run: WorkflowRunSummary, jobs: Sequence[Job], now: datetime
) -> Tuple[datetime, datetime]:
    """Resolve the run span's (start, end) per the timing policy above."""
    now = _utc(now)
    starts = _present([run.run_started_at, *(job.started_at for job in jobs)])
    if starts:
        start = min(starts)
    elif run.created_at is not None:
        start = _utc(run.created_at)
    else:
        start = now

    if run_in_progress(run, jobs):
        end = now
    else:
        ends = _present([run.updated_at, *(job.completed_at for job in jobs)])
        end = max(ends) if ends else now
    return start, max(end, start)


class SpanBuilder:
    """
    Builds descriptor trees. Holds no state between calls: building twice
    from the same data with the same ``now`` gives equal trees.
    """

    def build(
        self,
        run: WorkflowRunSummary,
        jobs: Sequence[Job],
        now: Optional[datetime] = None,
        workflow_name: Optional[str] = None,
    ) -> SpanDescriptor:
        now = _utc(now) if now else datetime.now(timezone.utc)
        workflow = workflow_name or run.workflow_name
        run_start, run_end = resolve_run_interval(run, jobs, now)

        job_spans = tuple(
            self._build_job(job, run_start, run_end, workflow, run.id) for job in jobs
        )
        name = f"{workflow} #{run.run_number}" if run.run_number else workflow or f"run {run.id}"
        return SpanDescriptor(
            kind=SpanKind.RUN,
            name=name,
            start=run_start,
            end=run_end,
            status=span_status(run.conclusion),
            workflow_name=workflow,
            attributes=_attributes(
                workflow=workflow,
                repository=run.repository,
                run_id=run.id,
                run_number=run.run_number,
                run_attempt=run.run_attempt,
                event=run.event,
                head_branch=run.head_branch,
                head_sha=run.head_sha,
                html_url=run.html_url,
                status=run.status,
                conclusion=run.conclusion,
            ),
            children=job_spans,
        )

    def _build_job(
        self, job: Job, run_start: datetime, run_end: datetime, workflow: str, run_id: int
    ) -> SpanDescriptor:
        start, end = _interval(job.started_at, job.completed_at, run_start, run_end)
        steps = sorted(job.steps, key=lambda step: step.number)
        return SpanDescriptor(
            kind=SpanKind.JOB,
            name=job.name,
            start=start,
            end=end,
            status=span_status(job.conclusion),
            workflow_name=workflow,
            attributes=_attributes(
                workflow=workflow,
                run_id=run_id,
                job_id=job.id,
                runner_name=job.runner_name,
                html_url=job.html_url,
                status=job.status,
                conclusion=job.conclusion,
            ),
            children=tuple(self._build_step(step, start, end, workflow, job.id) for step in steps),
        )

    def _build_step(
        self, step: Step, job_start: datetime, job_end: datetime, workflow: str, job_id: int
    ) -> SpanDescriptor:
        start, end = _interval(step.started_at, step.completed_at, job_start, job_end)
        return SpanDescriptor(
            kind=SpanKind.STEP,
            name=step.name,
            start=start,
            end=end,
            status=span_status(step.conclusion),
            workflow_name=workflow,
            attributes=_attributes(
                workflow=workflow,
                job_id=job_id,
                step_number=step.number,
                status=step.status,
                conclusion=step.conclusion,
            ),
        )


def build_span_tree(
    run: WorkflowRunSummary, jobs: Sequence[Job], now: Optional[datetime] = None
) -> SpanDescriptor:
    """Convenience wrapper around SpanBuilder().build."""
    return SpanBuilder().build(run, jobs, now=now)
