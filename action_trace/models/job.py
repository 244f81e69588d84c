"""
Job and Step Models
===================
A run owns its jobs; a job owns an ordered sequence of steps.

Fields:
    started_at      may be absent for queued jobs
    completed_at    absent while running or when cancelled before completion
    conclusion      None until the job/step finishes
    number          step sequence number, defines order within the job
    steps_listed    True once steps are known, even when there are none
"""
from datetime import datetime
from typing import Any, Dict, Iterable, Optional, Tuple

from pydantic import BaseModel, ConfigDict


class Step(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    number: int
    status: Optional[str] = None
    conclusion: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @classmethod
    def from_api(cls, payload: Dict[str, Any]) -> "Step":
        return cls(
            name=payload.get("name") or f"step {payload.get('number', 0)}",
            number=payload.get("number") or 0,
            status=payload.get("status"),
            conclusion=payload.get("conclusion"),
            started_at=payload.get("started_at"),
            completed_at=payload.get("completed_at"),
        )


class Job(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    run_id: int
    name: str
    status: Optional[str] = None
    conclusion: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    runner_name: Optional[str] = None
    html_url: str = ""
    repository: str = ""
    steps: Tuple[Step, ...] = ()
    steps_listed: bool = False

    @classmethod
    def from_api(cls, payload: Dict[str, Any], repository: str = "") -> "Job":
        """Build a Job; steps embedded in the payload (job listings) are kept."""
        steps = payload.get("steps")
        return cls(
            id=payload["id"],
            run_id=payload.get("run_id") or 0,
            name=payload.get("name") or str(payload["id"]),
            status=payload.get("status"),
            conclusion=payload.get("conclusion"),
            started_at=payload.get("started_at"),
            completed_at=payload.get("completed_at"),
            runner_name=payload.get("runner_name"),
            html_url=payload.get("html_url") or "",
            repository=repository,
            steps=tuple(Step.from_api(s) for s in steps or []),
            steps_listed=steps is not None,
        )

    def with_steps(self, steps: Iterable[Step]) -> "Job":
        """Return a copy of this job owning ``steps``."""
        return self.model_copy(update={"steps": tuple(steps), "steps_listed": True})
