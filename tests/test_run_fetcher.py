"""
Run Fetcher Tests
=================
Pagination caps, retry scoping, backpressure and cancellation against an
in-memory MetadataSource.
"""
import asyncio
from unittest.mock import AsyncMock

import pytest

from action_trace.agents.run_fetcher import RunFetcher
from action_trace.core.errors import (
    FatalConfigError, NotFound, RateLimited, RunLevelFailure, Transient, Unauthorized,
)
from action_trace.models.fetch_result import FetchedRun, RunFailure
from action_trace.utils.request_budget import RequestBudget
from action_trace.utils.retry_policy import RetryPolicy

from fakes import FakeMetadataSource, RecordingProgress, make_job, make_run, make_step, make_workflow


def _collect(fetcher, **kwargs):
    async def run_test():
        return [outcome async for outcome in fetcher.fetch("octo", "repo", **kwargs)]
    return asyncio.run(run_test())


def _fetcher(source, **kwargs):
    kwargs.setdefault("retry_policy", RetryPolicy(max_attempts=3, base_delay=1.0))
    kwargs.setdefault("sleep", AsyncMock())
    return RunFetcher(source, RequestBudget(kwargs.pop("max_concurrent", 4)), **kwargs)


def _single_job_source(workflow, runs, **kwargs):
    """Every run gets one job with one step."""
    jobs, steps = {}, {}
    for run in runs:
        job = make_job(run.id)
        jobs[run.id] = [[job]]
        steps[job.id] = [make_step(1, 1, 2)]
    return FakeMetadataSource([workflow], {workflow.id: _split(runs, 2)}, jobs, steps, **kwargs)


def _split(items, size):
    return [items[i:i + size] for i in range(0, len(items), size)]


def test_run_cap_stops_pagination():
    workflow = make_workflow()
    runs = [make_run() for _ in range(6)]
    source = FakeMetadataSource(
        [workflow],
        {workflow.id: [runs[0:2], runs[2:4], runs[4:6], [make_run()]]},
        jobs={},
    )

    outcomes = _collect(_fetcher(source), max_runs_per_workflow=5)

    assert len(outcomes) == 5
    assert {o.run.id for o in outcomes} == {r.id for r in runs[:5]}
    assert [c[2] for c in source.calls_for("list_runs")] == [0, 1, 2]


def test_short_page_ends_pagination_even_with_cursor():
    workflow = make_workflow()
    runs = [make_run() for _ in range(3)]
    source = FakeMetadataSource(
        [workflow], {workflow.id: [runs, [make_run()]]}, jobs={}, per_page=5,
    )

    outcomes = _collect(_fetcher(source), max_runs_per_workflow=30)

    assert len(outcomes) == 3
    assert len(source.calls_for("list_runs")) == 1


def test_runs_are_fully_hydrated():
    workflow = make_workflow()
    run = make_run()
    build, test = make_job(run.id, "build"), make_job(run.id, "test")
    source = FakeMetadataSource(
        [workflow], {workflow.id: [[run]]},
        jobs={run.id: [[build], [test]]},
        steps={build.id: [make_step(1, 1, 2), make_step(2, 2, 3)], test.id: [make_step(1, 3, 4)]},
    )

    (outcome,) = _collect(_fetcher(source))

    assert isinstance(outcome, FetchedRun)
    assert [j.name for j in outcome.jobs] == ["build", "test"]
    assert [len(j.steps) for j in outcome.jobs] == [2, 1]
    assert outcome.step_count == 3
    assert (outcome.index, outcome.total) == (1, 1)


def test_rate_limited_job_page_retried_without_affecting_other_runs():
    workflow = make_workflow()
    run_x, run_y = make_run(), make_run()
    x_jobs = [make_job(run_x.id, "a"), make_job(run_x.id, "b"), make_job(run_x.id, "c")]
    y_job = make_job(run_y.id, "only")
    sleep = AsyncMock()
    source = FakeMetadataSource(
        [workflow], {workflow.id: [[run_x, run_y]]},
        jobs={run_x.id: [x_jobs[:2], x_jobs[2:]], run_y.id: [[y_job]]},
        failures={("list_jobs", run_x.id, 1): [RateLimited(retry_after=2.0)]},
    )
    fetcher = _fetcher(source, sleep=sleep)

    outcomes = {o.run.id: o for o in _collect(fetcher)}

    assert all(isinstance(o, FetchedRun) for o in outcomes.values())
    assert [j.id for j in outcomes[run_x.id].jobs] == [j.id for j in x_jobs]
    assert [j.id for j in outcomes[run_y.id].jobs] == [y_job.id]
    sleep.assert_awaited_once_with(2.0)
    assert fetcher.budget.retries == 1
    assert source.calls_for("list_jobs").count(("list_jobs", run_x.id, 1)) == 2


def test_retry_exhaustion_fails_only_that_run():
    workflow = make_workflow()
    good, bad = make_run(), make_run()
    source = _single_job_source(
        workflow, [good, bad],
        failures={("list_jobs", bad.id, 0): [Transient("502")] * 3},
    )

    outcomes = _collect(_fetcher(source))

    by_id = {o.run.id if isinstance(o, FetchedRun) else o.run_id: o for o in outcomes}
    assert isinstance(by_id[good.id], FetchedRun)
    failure = by_id[bad.id]
    assert isinstance(failure, RunFailure)
    assert isinstance(failure.error, RunLevelFailure)
    assert isinstance(failure.error.cause, Transient)
    assert failure.workflow_name == workflow.name
    assert len(source.calls_for("list_jobs")) == 1 + 3


def test_step_failure_fails_the_run():
    workflow = make_workflow()
    run = make_run()
    job = make_job(run.id)
    source = FakeMetadataSource(
        [workflow], {workflow.id: [[run]]}, jobs={run.id: [[job]]},
        failures={("list_steps", job.id, 0): [NotFound("job gone")]},
    )

    (outcome,) = _collect(_fetcher(source))

    assert isinstance(outcome, RunFailure)
    assert outcome.run_id == run.id
    # permanent errors are not retried
    assert len(source.calls_for("list_steps")) == 1


def test_run_listing_failure_skips_workflow_only():
    broken, healthy = make_workflow("Broken"), make_workflow("Healthy")
    run = make_run(name="Healthy")
    job = make_job(run.id)
    source = FakeMetadataSource(
        [broken, healthy],
        {broken.id: [[make_run()]], healthy.id: [[run]]},
        jobs={run.id: [[job]]},
        failures={("list_runs", broken.id, 0): [Unauthorized("no access")]},
    )

    outcomes = _collect(_fetcher(source))

    failures = [o for o in outcomes if isinstance(o, RunFailure)]
    assert len(failures) == 1
    assert failures[0].workflow_name == "Broken"
    assert failures[0].run_id is None
    assert [o.run.id for o in outcomes if isinstance(o, FetchedRun)] == [run.id]


@pytest.mark.parametrize("error", [Unauthorized("bad token"), NotFound("no repo"), Transient("down")])
def test_workflow_listing_failure_is_fatal(error):
    source = FakeMetadataSource(
        [], {}, {}, failures={("list_workflows", "octo/repo", 0): [error] * 5},
    )

    with pytest.raises(FatalConfigError):
        _collect(_fetcher(source))


def test_workflow_filter_by_name_or_file():
    ci, release, docs = make_workflow("CI"), make_workflow("Release"), make_workflow("Docs", path=".github/workflows/pages.yml")
    source = FakeMetadataSource(
        [ci, release, docs],
        {ci.id: [[make_run()]], release.id: [[make_run()]], docs.id: [[make_run()]]},
        jobs={},
    )
    fetcher = _fetcher(source)

    outcomes = _collect(fetcher, workflow_filter=["ci", "pages.yml"])

    assert {o.workflow_name for o in outcomes} == {"CI", "Docs"}
    assert [w.name for w in fetcher.workflows] == ["CI", "Docs"]


def test_invalid_run_cap_rejected():
    source = FakeMetadataSource([], {}, {})

    with pytest.raises(FatalConfigError):
        _collect(_fetcher(source), max_runs_per_workflow=0)


def test_concurrent_requests_bounded_by_budget():
    workflows = [make_workflow(f"wf{i}") for i in range(3)]
    runs, jobs, steps = {}, {}, {}
    for workflow in workflows:
        runs[workflow.id] = [[make_run() for _ in range(4)]]
        for run in runs[workflow.id][0]:
            run_jobs = [make_job(run.id) for _ in range(3)]
            jobs[run.id] = [run_jobs]
            for job in run_jobs:
                steps[job.id] = [make_step(1, 1, 2)]
    source = FakeMetadataSource(workflows, runs, jobs, steps, delay=0.001)
    fetcher = _fetcher(source, max_concurrent=2, max_runs_in_flight=8)

    outcomes = _collect(fetcher)

    assert len(outcomes) == 12
    assert source.peak_in_flight <= 2
    assert fetcher.budget.peak_in_flight <= 2
    assert fetcher.budget.requests == len(source.calls)


def test_progress_notified_when_workflow_runs_listed():
    workflow = make_workflow("CI")
    progress = RecordingProgress()
    source = _single_job_source(workflow, [make_run(), make_run(), make_run()])

    _collect(_fetcher(source, progress=progress))

    assert progress.events == [("workflow_start", "CI", 3)]


def test_cancellation_drops_unfinished_runs():
    workflow = make_workflow()
    runs = [make_run() for _ in range(4)]
    source = _single_job_source(workflow, runs, delay=0.01)
    fetcher = _fetcher(source, max_runs_in_flight=1)

    async def run_test():
        outcomes = []
        async for outcome in fetcher.fetch("octo", "repo"):
            outcomes.append(outcome)
            fetcher.cancel()
        return outcomes

    outcomes = asyncio.run(run_test())

    assert len(outcomes) == 1
    assert isinstance(outcomes[0], FetchedRun)
    assert len(outcomes[0].jobs[0].steps) == 1
    assert fetcher.cancelled
    started = {c[1] for c in source.calls_for("list_jobs")}
    assert runs[2].id not in started
    assert runs[3].id not in started
