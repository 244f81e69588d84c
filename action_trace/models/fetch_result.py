"""
Fetch Results
=============
Per-run outcomes streamed out of the RunFetcher.

FetchedRun    a fully hydrated run: summary + jobs, each job owning its steps
RunFailure    a run (or a workflow's run listing) that could not be hydrated

``index``/``total`` locate the run within its workflow's sampled runs and
are what the progress reporter displays.
"""
from dataclasses import dataclass, field
from typing import Optional, Tuple, Union

from action_trace.models.job import Job
from action_trace.models.workflow_run import WorkflowRunSummary


@dataclass(frozen=True)
class FetchedRun:
    """Run summary with every job and step resolved."""
    workflow_name: str
    run: WorkflowRunSummary
    jobs: Tuple[Job, ...]
    index: int = 1
    total: int = 1

    @property
    def step_count(self) -> int:
        return sum(len(job.steps) for job in self.jobs)


@dataclass(frozen=True)
class RunFailure:
    """A run skipped after retry exhaustion or a permanent error."""
    workflow_name: str
    run_id: Optional[int]
    error: BaseException = field(compare=False)
    index: int = 0
    total: int = 0

    @property
    def reason(self) -> str:
        return f"{type(self.error).__name__}: {self.error}"


RunOutcome = Union[FetchedRun, RunFailure]
