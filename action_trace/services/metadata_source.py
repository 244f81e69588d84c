"""
Metadata Source
===============
Interface the fetch pipeline consumes to walk workflows → runs → jobs → steps.

Every call may raise one of:
    RateLimited(retry_after) : retryable, honour the hint
    Transient(cause)         : retryable with backoff
    NotFound                 : permanent
    Unauthorized             : permanent

Cursors are opaque: callers pass back ``Page.next_cursor`` verbatim and
never assume a page size.
"""
from typing import List, Optional, Protocol

from action_trace.models.job import Job, Step
from action_trace.models.page import Page
from action_trace.models.workflow_run import WorkflowRef, WorkflowRunSummary


class MetadataSource(Protocol):
    async def list_workflows(
        self, owner: str, repo: str, cursor: Optional[str] = None
    ) -> Page[WorkflowRef]: ...

    async def list_runs(
        self, workflow: WorkflowRef, cursor: Optional[str] = None, limit: Optional[int] = None
    ) -> Page[WorkflowRunSummary]: ...

    async def list_jobs(
        self, run: WorkflowRunSummary, cursor: Optional[str] = None
    ) -> Page[Job]: ...

    async def list_steps(self, job: Job) -> List[Step]: ...
