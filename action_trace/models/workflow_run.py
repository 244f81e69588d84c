"""
Workflow Run Models
===================
Pydantic models for the top two levels of the Actions hierarchy.

WorkflowRef           one workflow definition (grouping key for runs)
WorkflowRunSummary    one execution of a workflow

Timestamps are optional: a queued run has no run_started_at, and some
payloads omit updated_at. Models are frozen once fetched.
"""
from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict


class WorkflowRef(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    repository: str = ""        # owner/repo
    path: str = ""
    state: str = "active"

    @classmethod
    def from_api(cls, payload: Dict[str, Any], repository: str = "") -> "WorkflowRef":
        return cls(
            id=payload["id"],
            name=payload.get("name") or str(payload["id"]),
            repository=repository,
            path=payload.get("path") or "",
            state=payload.get("state") or "active",
        )


class WorkflowRunSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    workflow_name: str
    run_number: int = 0
    status: Optional[str] = None
    conclusion: Optional[str] = None
    created_at: Optional[datetime] = None
    run_started_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    # Descriptive metadata carried onto the run span
    repository: str = ""
    workflow_id: Optional[int] = None
    event: str = ""
    head_branch: Optional[str] = None
    head_sha: Optional[str] = None
    html_url: str = ""
    run_attempt: int = 1

    @classmethod
    def from_api(cls, payload: Dict[str, Any], repository: str = "") -> "WorkflowRunSummary":
        repo = payload.get("repository") or {}
        return cls(
            id=payload["id"],
            workflow_name=payload.get("name") or "",
            run_number=payload.get("run_number") or 0,
            status=payload.get("status"),
            conclusion=payload.get("conclusion"),
            created_at=payload.get("created_at"),
            run_started_at=payload.get("run_started_at"),
            updated_at=payload.get("updated_at"),
            repository=repo.get("full_name") or repository,
            workflow_id=payload.get("workflow_id"),
            event=payload.get("event") or "",
            head_branch=payload.get("head_branch"),
            head_sha=payload.get("head_sha"),
            html_url=payload.get("html_url") or "",
            run_attempt=payload.get("run_attempt") or 1,
        )
