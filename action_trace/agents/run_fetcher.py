"""
Run Fetcher
===========
Walks workflows → runs → jobs → steps against a MetadataSource and streams
one fully hydrated run at a time.

Flow:
    1. List workflows (paginated). Failure here is fatal.
    2. Per workflow (concurrently), list runs until max_runs_per_workflow
       are collected. No page is requested once the cap is reached.
    3. Per run (bounded by max_runs_in_flight), list jobs page by page, then
       list every job's steps concurrently.
    4. A run is yielded only after all its jobs and steps resolved.

Backpressure:
    Every request holds a slot of the shared RequestBudget, so the number of
    outbound requests in flight never exceeds its bound no matter how many
    workflows, runs or jobs are being processed.

Failure scoping:
    Retryable errors (RateLimited, Transient) are retried per RetryPolicy.
    When a run-scoped call gives up, or anything else goes wrong while one
    run is hydrated, that run is reported as a RunFailure and the others
    continue. A failed run listing skips that workflow only.

Cancellation:
    cancel() (or setting the shared event) stops new requests and wakes any
    retry sleep. Runs that were not fully hydrated are never yielded.
"""
import asyncio
import logging
import time
from typing import (
    Any, AsyncIterator, Awaitable, Callable, Hashable, Iterable, List, Optional,
    Set, Union,
)

from action_trace.core.config import TRACE_MAX_RUNS, TRACE_MAX_RUNS_IN_FLIGHT
from action_trace.core.errors import (
    FatalConfigError, FetchCancelled, MetadataSourceError, NotFound, RunLevelFailure,
    Unauthorized,
)
from action_trace.models.fetch_result import FetchedRun, RunFailure, RunOutcome
from action_trace.models.job import Job
from action_trace.models.page import Page
from action_trace.models.workflow_run import WorkflowRef, WorkflowRunSummary
from action_trace.services.metadata_source import MetadataSource
from action_trace.services.progress import NullProgressReporter, ProgressReporter, safe_notify
from action_trace.utils.request_budget import RequestBudget
from action_trace.utils.retry_policy import RetryPolicy

logger = logging.getLogger(__name__)

# Marks the end of one workflow producer on the outcome queue
_DONE = object()

PageFetcher = Callable[[Optional[str], Optional[int]], Awaitable[Page[Any]]]


async def _gather_or_cancel(tasks: List["asyncio.Task[Any]"]) -> List[Any]:
    """Gather tasks; if one fails, cancel its siblings before re-raising."""
    try:
        return await asyncio.gather(*tasks)
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


def _normalise_filter(workflow_filter: Union[str, Iterable[str], None]) -> Set[str]:
    if workflow_filter is None:
        return set()
    if isinstance(workflow_filter, str):
        workflow_filter = [workflow_filter]
    return {name.strip().lower() for name in workflow_filter if name and name.strip()}


class RunFetcher:
    """
    Streams FetchedRun / RunFailure outcomes for a repository.

    Usage:
        fetcher = RunFetcher(source, RequestBudget(6))
        async for outcome in fetcher.fetch("owner", "repo", max_runs_per_workflow=30):
            ...
    """

    def __init__(
        self,
        source: MetadataSource,
        budget: RequestBudget,
        retry_policy: Optional[RetryPolicy] = None,
        progress: Optional[ProgressReporter] = None,
        max_runs_in_flight: int = TRACE_MAX_RUNS_IN_FLIGHT,
        cancel_event: Optional[asyncio.Event] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.source = source
        self.budget = budget
        self.retry_policy = retry_policy or RetryPolicy()
        self.progress = progress or NullProgressReporter()
        self.max_runs_in_flight = max(1, max_runs_in_flight)
        self.cancel_event = cancel_event or asyncio.Event()
        self._sleep = sleep or self._interruptible_sleep
        self._clock = clock
        self.workflows: List[WorkflowRef] = []

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------
    def cancel(self) -> None:
        self.cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def _check_cancelled(self) -> None:
        if self.cancel_event.is_set():
            raise FetchCancelled("Fetch cancelled")

    async def _interruptible_sleep(self, delay: float) -> None:
        """Sleep for ``delay`` seconds unless cancellation arrives first."""
        try:
            await asyncio.wait_for(self.cancel_event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return

    # ------------------------------------------------------------------
    # Request plumbing
    # ------------------------------------------------------------------
    async def _call(self, label: str, fn: Callable[..., Awaitable[Any]], *args: Any, **kwargs: Any) -> Any:
        """Run one source call inside a budget slot, retrying per policy."""
        started = self._clock()
        attempt = 0
        while True:
            self._check_cancelled()
            attempt += 1
            try:
                async with self.budget.slot():
                    return await fn(*args, **kwargs)
            except MetadataSourceError as e:
                delay = self.retry_policy.next_delay(attempt, self._clock() - started, e)
                if delay is None:
                    logger.debug("%s: giving up after %d attempt(s): %s", label, attempt, e)
                    raise
                logger.warning(
                    "%s failed (attempt %d/%d): %s; retrying in %.1fs",
                    label, attempt, self.retry_policy.max_attempts, e, delay,
                )
                self.budget.record_retry()
                await self._sleep(delay)

    async def _paginate(
        self,
        label: str,
        fetch_page: PageFetcher,
        limit: Optional[int] = None,
        key: Optional[Callable[[Any], Hashable]] = None,
    ) -> List[Any]:
        """
        Follow cursors until the source runs dry or ``limit`` items are held.

        Items whose ``key`` was already seen (listings shifting between
        pages) are dropped and do not count toward the limit.
        """
        items: List[Any] = []
        seen: Set[Hashable] = set()
        cursor: Optional[str] = None
        page_number = 0
        while True:
            remaining = None if limit is None else limit - len(items)
            page_number += 1
            page = await self._call(f"{label} (page {page_number})", fetch_page, cursor, remaining)
            for item in page.items:
                if key is not None:
                    item_key = key(item)
                    if item_key in seen:
                        continue
                    seen.add(item_key)
                items.append(item)
                if limit is not None and len(items) >= limit:
                    return items
            if page.is_last:
                return items
            cursor = page.next_cursor

    # ------------------------------------------------------------------
    # Hierarchy walk
    # ------------------------------------------------------------------
    async def list_workflows(
        self, owner: str, repo: str, workflow_filter: Union[str, Iterable[str], None] = None
    ) -> List[WorkflowRef]:
        """List (and optionally filter) workflows. Any failure is fatal."""
        try:
            workflows = await self._paginate(
                f"workflows of {owner}/{repo}",
                lambda cursor, _: self.source.list_workflows(owner, repo, cursor=cursor),
                key=lambda w: w.id,
            )
        except (Unauthorized, NotFound) as e:
            raise FatalConfigError(f"Cannot list workflows for {owner}/{repo}: {e}") from e
        except MetadataSourceError as e:
            raise FatalConfigError(
                f"Listing workflows for {owner}/{repo} failed after retries: {e}"
            ) from e

        wanted = _normalise_filter(workflow_filter)
        if wanted:
            workflows = [
                w for w in workflows
                if w.name.lower() in wanted or w.path.rsplit("/", 1)[-1].lower() in wanted
            ]
            if not workflows:
                logger.warning("No workflow in %s/%s matches %s", owner, repo, sorted(wanted))
        logger.info("Found %d workflow(s) in %s/%s", len(workflows), owner, repo)
        return workflows

    async def list_runs(self, workflow: WorkflowRef, max_runs: int) -> List[WorkflowRunSummary]:
        return await self._paginate(
            f"runs of {workflow.name}",
            lambda cursor, remaining: self.source.list_runs(workflow, cursor=cursor, limit=remaining),
            limit=max_runs,
            key=lambda r: r.id,
        )

    async def hydrate_run(self, run: WorkflowRunSummary) -> List[Job]:
        """Fetch every job of ``run`` and every step of those jobs."""
        jobs: List[Job] = await self._paginate(
            f"jobs of run {run.id}",
            lambda cursor, _: self.source.list_jobs(run, cursor=cursor),
            key=lambda j: j.id,
        )
        step_tasks = [
            asyncio.create_task(self._call(f"steps of job {job.id}", self.source.list_steps, job))
            for job in jobs
        ]
        steps = await _gather_or_cancel(step_tasks)
        return [job.with_steps(job_steps) for job, job_steps in zip(jobs, steps)]

    # ------------------------------------------------------------------
    # Producers
    # ------------------------------------------------------------------
    async def _produce_run(
        self,
        workflow: WorkflowRef,
        run: WorkflowRunSummary,
        index: int,
        total: int,
        queue: "asyncio.Queue[Any]",
        run_slots: asyncio.Semaphore,
    ) -> None:
        async with run_slots:
            try:
                jobs = await self.hydrate_run(run)
            except FetchCancelled:
                return
            except Exception as e:
                failure = RunLevelFailure(workflow.name, run.id, e)
                logger.warning("Skipping %s", failure, exc_info=not isinstance(e, MetadataSourceError))
                await queue.put(RunFailure(workflow.name, run.id, failure, index, total))
                return
        await queue.put(FetchedRun(workflow.name, run, tuple(jobs), index, total))

    async def _produce_workflow(
        self,
        workflow: WorkflowRef,
        max_runs: int,
        queue: "asyncio.Queue[Any]",
        run_slots: asyncio.Semaphore,
    ) -> None:
        try:
            try:
                runs = await self.list_runs(workflow, max_runs)
            except FetchCancelled:
                raise
            except Exception as e:
                failure = RunLevelFailure(workflow.name, None, e)
                logger.warning("Skipping workflow %s: %s", workflow.name, failure,
                               exc_info=not isinstance(e, MetadataSourceError))
                await queue.put(RunFailure(workflow.name, None, failure))
                return

            total = len(runs)
            safe_notify(self.progress.on_workflow_start, workflow.name, total)
            run_tasks = [
                asyncio.create_task(
                    self._produce_run(workflow, run, index, total, queue, run_slots)
                )
                for index, run in enumerate(runs, start=1)
            ]
            await _gather_or_cancel(run_tasks)
        except FetchCancelled:
            logger.info("Workflow %s interrupted", workflow.name)
        except Exception as e:
            await queue.put(e)
        finally:
            await queue.put(_DONE)

    async def fetch(
        self,
        owner: str,
        repo: str,
        workflow_filter: Union[str, Iterable[str], None] = None,
        max_runs_per_workflow: int = TRACE_MAX_RUNS,
    ) -> AsyncIterator[RunOutcome]:
        """
        Yield one outcome per sampled run, in the order runs finish fetching.

        Raises
        ------
        FatalConfigError
            If the workflow listing fails or the run cap is invalid.
        FetchCancelled
            If cancellation arrives before the workflow listing completes.
        """
        if max_runs_per_workflow < 1:
            raise FatalConfigError("max_runs_per_workflow must be >= 1")

        self.workflows = await self.list_workflows(owner, repo, workflow_filter)
        queue: "asyncio.Queue[Any]" = asyncio.Queue()
        run_slots = asyncio.Semaphore(self.max_runs_in_flight)
        producers = [
            asyncio.create_task(self._produce_workflow(wf, max_runs_per_workflow, queue, run_slots))
            for wf in self.workflows
        ]
        pending = len(producers)
        try:
            while pending:
                item = await queue.get()
                if item is _DONE:
                    pending -= 1
                    continue
                if isinstance(item, BaseException):
                    raise item
                yield item
        finally:
            for task in producers:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*producers, return_exceptions=True)
