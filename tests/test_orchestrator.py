"""
Trace Pipeline Tests
====================
End-to-end fetch → build → emit with an in-memory source and a recording sink.
"""
import asyncio
from unittest.mock import AsyncMock

import pytest

from action_trace.agents.orchestrator import TracePipeline
from action_trace.agents.run_fetcher import RunFetcher
from action_trace.core.errors import FatalConfigError, Transient, Unauthorized
from action_trace.tracing.emitter import TraceEmitter
from action_trace.utils.request_budget import RequestBudget
from action_trace.utils.retry_policy import RetryPolicy

from fakes import (
    FakeMetadataSource, RecordingProgress, RecordingSink, make_job, make_run, make_step,
    make_workflow, ts,
)


def _pipeline(source, sink=None, progress=None):
    progress = progress or RecordingProgress()
    fetcher = RunFetcher(
        source, RequestBudget(4), retry_policy=RetryPolicy(max_attempts=2), progress=progress,
        sleep=AsyncMock(),
    )
    emitter = TraceEmitter(sink or RecordingSink())
    return TracePipeline(fetcher, emitter, progress=progress, clock=lambda: ts(120)), progress


def _source_with(runs_by_workflow, failures=None):
    workflows, runs, jobs, steps = [], {}, {}, {}
    for workflow, workflow_runs in runs_by_workflow:
        workflows.append(workflow)
        runs[workflow.id] = [workflow_runs]
        for run in workflow_runs:
            job = make_job(run.id, "build", 1, 9)
            jobs[run.id] = [[job]]
            steps[job.id] = [make_step(1, 1, 5), make_step(2, 5, 9)]
    return FakeMetadataSource(workflows, runs, jobs, steps, failures=failures)


def test_every_run_traced_and_reported():
    ci, nightly = make_workflow("CI"), make_workflow("Nightly")
    source = _source_with([(ci, [make_run(), make_run()]), (nightly, [make_run(name="Nightly")])])
    sink = RecordingSink()
    pipeline, progress = _pipeline(source, sink)

    summary = asyncio.run(pipeline.run("octo", "repo"))

    assert summary.repository == "octo/repo"
    assert summary.workflows == 2
    assert summary.runs_processed == 3
    assert summary.runs_skipped == 0
    assert summary.spans_emitted == 3 * 4
    assert summary.requests == len(source.calls)
    assert not summary.partial
    assert len([e for e in sink.events if e[0] == "start"]) == 12
    completed = [e for e in progress.events if e[0] == "run_completed"]
    assert sorted((e[1], e[2], e[3]) for e in completed) == [("CI", 1, 2), ("CI", 2, 2), ("Nightly", 1, 1)]
    assert ("workflow_start", "CI", 2) in progress.events


def test_failed_run_skipped_with_warning(caplog):
    ci = make_workflow("CI")
    good, bad = make_run(), make_run()
    source = _source_with([(ci, [good, bad])], failures={("list_jobs", bad.id, 0): [Transient("503")] * 2})
    pipeline, progress = _pipeline(source)

    summary = asyncio.run(pipeline.run("octo", "repo"))

    assert summary.runs_processed == 1
    assert summary.runs_skipped == 1
    assert summary.partial
    assert summary.skipped[0].startswith(f"CI#{bad.id}")
    assert ("run_skipped", "CI", bad.id) in progress.events
    assert f"#{bad.id}" in caplog.text


def test_export_failure_does_not_stop_fetching():
    ci = make_workflow("CI")
    source = _source_with([(ci, [make_run(run_number=1), make_run(run_number=2)])])
    sink = RecordingSink(fail_on="CI #1")
    pipeline, progress = _pipeline(source, sink)

    summary = asyncio.run(pipeline.run("octo", "repo"))

    assert summary.runs_processed == 2
    assert summary.export_failures == 1
    assert summary.spans_emitted == 4
    assert len([e for e in progress.events if e[0] == "run_completed"]) == 2


def test_in_progress_run_closed_at_pipeline_clock():
    ci = make_workflow("CI")
    run = make_run(status="in_progress", conclusion=None, updated=3)
    job = make_job(run.id, "build", 1, None, conclusion=None)
    source = FakeMetadataSource([ci], {ci.id: [[run]]}, {run.id: [[job]]})
    sink = RecordingSink()
    pipeline, _ = _pipeline(source, sink)

    asyncio.run(pipeline.run("octo", "repo"))

    ends = {e[1]: e[2] for e in sink.events if e[0] == "end"}
    assert ends["CI #1"] == ts(120)
    assert ends["build"] == ts(120)


def test_fatal_listing_error_propagates():
    source = FakeMetadataSource([], {}, {}, failures={("list_workflows", "octo/repo", 0): [Unauthorized("bad")]})
    pipeline, _ = _pipeline(source)

    with pytest.raises(FatalConfigError):
        asyncio.run(pipeline.run("octo", "repo"))


def test_workflow_filter_passed_through():
    ci, docs = make_workflow("CI"), make_workflow("Docs")
    source = _source_with([(ci, [make_run()]), (docs, [make_run(name="Docs")])])
    pipeline, _ = _pipeline(source)

    summary = asyncio.run(pipeline.run("octo", "repo", workflow_filter="docs", max_runs_per_workflow=1))

    assert summary.workflows == 1
    assert summary.runs_processed == 1
    assert not any(c[0] == "list_runs" and c[1] == ci.id for c in source.calls)


def test_unexpected_error_in_one_run_is_contained():
    ci = make_workflow("CI")
    good, bad = make_run(), make_run()
    source = _source_with(
        [(ci, [good, bad])],
        failures={("list_jobs", bad.id, 0): [ValueError("Expecting value: line 1 column 1 (char 0)")]},
    )
    pipeline, progress = _pipeline(source)

    summary = asyncio.run(pipeline.run("octo", "repo"))

    assert summary.runs_processed == 1
    assert summary.runs_skipped == 1
    assert "Expecting value" in summary.skipped[0]
    assert ("run_skipped", "CI", bad.id) in progress.events
    assert ("run_completed", "CI", 1, 2) in progress.events or ("run_completed", "CI", 2, 2) in progress.events
    # no retry for errors outside the source taxonomy
    assert len(source.calls_for("list_jobs")) == 2


def test_unexpected_error_listing_runs_skips_only_that_workflow():
    ci, docs = make_workflow("CI"), make_workflow("Docs")
    source = _source_with(
        [(ci, [make_run()]), (docs, [make_run(name="Docs")])],
        failures={("list_runs", ci.id, 0): [KeyError("workflow_runs")]},
    )
    pipeline, _ = _pipeline(source)

    summary = asyncio.run(pipeline.run("octo", "repo"))

    assert summary.runs_processed == 1
    assert summary.runs_skipped == 1
    assert summary.skipped[0].startswith("CI (run listing)")
