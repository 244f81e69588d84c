"""
Trace Pipeline
==============
Drives one invocation: RunFetcher → SpanBuilder → TraceEmitter.

Per outcome streamed from the fetcher:
    FetchedRun  → build the span tree, emit it, report run N of M completed
    RunFailure  → warn, report the skip, keep going

A run is handed to the builder only once the fetcher has every job and step
for it, so the emitter never sees partial trees. Export failures are counted
and logged by the emitter and never stop the fetch.

The invocation fails only when the initial workflow listing fails
(FatalConfigError propagates). Cancellation ends the loop early and is
recorded in the summary.
"""
import logging
from datetime import datetime
from typing import Callable, Iterable, Optional, Union

from action_trace.agents.run_fetcher import RunFetcher
from action_trace.core.config import TRACE_MAX_RUNS
from action_trace.core.errors import FetchCancelled
from action_trace.models.fetch_result import FetchedRun, RunFailure
from action_trace.models.trace_summary import TraceSummary
from action_trace.services.progress import NullProgressReporter, ProgressReporter, safe_notify
from action_trace.tracing.emitter import TraceEmitter
from action_trace.tracing.span_builder import SpanBuilder

logger = logging.getLogger(__name__)


class TracePipeline:
    """
    Usage:
        pipeline = TracePipeline(fetcher, emitter, progress=LoggingProgressReporter())
        summary = await pipeline.run("owner", "repo", max_runs_per_workflow=30)
    """

    def __init__(
        self,
        fetcher: RunFetcher,
        emitter: TraceEmitter,
        builder: Optional[SpanBuilder] = None,
        progress: Optional[ProgressReporter] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.fetcher = fetcher
        self.emitter = emitter
        self.builder = builder or SpanBuilder()
        self.progress = progress or NullProgressReporter()
        # None → SpanBuilder resolves "now" itself at build time
        self._clock = clock

    def _handle_fetched(self, outcome: FetchedRun, summary: TraceSummary) -> None:
        now = self._clock() if self._clock else None
        root = self.builder.build(outcome.run, outcome.jobs, now=now, workflow_name=outcome.workflow_name)
        if not self.emitter.emit(root):
            summary.export_failures += 1
        summary.runs_processed += 1
        logger.debug("Run %d of %s: %d job(s), %d step(s)",
                     outcome.run.id, outcome.workflow_name, len(outcome.jobs), outcome.step_count)
        safe_notify(self.progress.on_run_completed, outcome.workflow_name, outcome.index, outcome.total)

    def _handle_failure(self, outcome: RunFailure, summary: TraceSummary) -> None:
        summary.runs_skipped += 1
        target = f"#{outcome.run_id}" if outcome.run_id is not None else " (run listing)"
        summary.skipped.append(f"{outcome.workflow_name}{target}: {outcome.reason}")
        logger.warning("Skipped %s%s: %s", outcome.workflow_name, target, outcome.reason)
        safe_notify(self.progress.on_run_skipped, outcome.workflow_name, outcome.run_id, outcome.reason)

    async def run(
        self,
        owner: str,
        repo: str,
        workflow_filter: Union[str, Iterable[str], None] = None,
        max_runs_per_workflow: int = TRACE_MAX_RUNS,
    ) -> TraceSummary:
        """
        Trace up to ``max_runs_per_workflow`` runs of every workflow.

        Raises
        ------
        FatalConfigError
            When the repository's workflows cannot be listed.
        """
        summary = TraceSummary(repository=f"{owner}/{repo}")
        spans_before = self.emitter.spans_emitted
        try:
            async for outcome in self.fetcher.fetch(
                owner, repo, workflow_filter=workflow_filter,
                max_runs_per_workflow=max_runs_per_workflow,
            ):
                if isinstance(outcome, FetchedRun):
                    self._handle_fetched(outcome, summary)
                else:
                    self._handle_failure(outcome, summary)
        except FetchCancelled:
            logger.warning("Interrupted before the workflow listing completed")
        finally:
            summary.workflows = len(self.fetcher.workflows)
            summary.cancelled = self.fetcher.cancelled
            summary.spans_emitted = self.emitter.spans_emitted - spans_before
            summary.requests = self.fetcher.budget.requests
            summary.retries = self.fetcher.budget.retries

        if summary.partial:
            logger.warning("Partial trace: %s", summary.describe())
        else:
            logger.info("Done: %s", summary.describe())
        return summary
