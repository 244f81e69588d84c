"""
Trace Summary Model
===================
Pydantic model describing the outcome of one invocation.

Fields:
    repository            owner/repo that was traced
    workflows             number of workflows traced (after filtering)
    runs_processed        runs whose span tree was built and handed to the sink
    runs_skipped          runs (or run listings) dropped after retries
    spans_emitted         spans opened and closed against the sink
    export_failures       trees the sink rejected (logged, not fatal)
    spans_dropped         spans the exporter failed to deliver in the background
    requests              outbound metadata requests issued
    retries               retry sleeps taken across all requests
    cancelled             True if the operator interrupted the pipeline
    skipped               "workflow#run_id: reason" per skipped unit
"""
from typing import List

from pydantic import BaseModel


class TraceSummary(BaseModel):
    repository: str = ""
    workflows: int = 0
    runs_processed: int = 0
    runs_skipped: int = 0
    spans_emitted: int = 0
    export_failures: int = 0
    spans_dropped: int = 0
    requests: int = 0
    retries: int = 0
    cancelled: bool = False
    skipped: List[str] = []

    @property
    def partial(self) -> bool:
        return (
            self.runs_skipped > 0 or self.export_failures > 0 or self.spans_dropped > 0
            or self.cancelled
        )

    def describe(self) -> str:
        text = (
            f"{self.repository}: {self.runs_processed} run(s) traced, "
            f"{self.runs_skipped} skipped across {self.workflows} workflow(s)"
        )
        if self.export_failures:
            text += f", {self.export_failures} export failure(s)"
        if self.spans_dropped:
            text += f", {self.spans_dropped} span(s) not delivered"
        if self.cancelled:
            text += " (interrupted)"
        return text
