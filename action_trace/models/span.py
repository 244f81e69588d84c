"""
Span Descriptor Model
=====================
Derived entity built by the SpanBuilder, never fetched.

A descriptor tree is the complete, immutable description of one run's
trace: the root is the run span, its children are job spans, their
children are step spans. Parent linkage is positional (a span's parent is
the descriptor whose ``children`` contains it); no free-floating ids.

Invariants:
    end >= start for every span
    every child interval lies within its parent's interval
"""
from datetime import datetime
from enum import Enum
from typing import Dict, Iterator, Tuple, Union

from pydantic import BaseModel, ConfigDict

AttributeValue = Union[bool, int, float, str]


class SpanKind(str, Enum):
    RUN = "run"
    JOB = "job"
    STEP = "step"


class SpanStatus(str, Enum):
    OK = "ok"
    ERROR = "error"
    UNSET = "unset"


class SpanDescriptor(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: SpanKind
    name: str
    start: datetime
    end: datetime
    status: SpanStatus = SpanStatus.UNSET
    workflow_name: str = ""
    attributes: Dict[str, AttributeValue] = {}
    children: Tuple["SpanDescriptor", ...] = ()

    @property
    def duration_seconds(self) -> float:
        return (self.end - self.start).total_seconds()

    def walk(self) -> Iterator["SpanDescriptor"]:
        """Yield this span and every descendant, depth-first pre-order."""
        yield self
        for child in self.children:
            yield from child.walk()

    def span_count(self) -> int:
        return sum(1 for _ in self.walk())


SpanDescriptor.model_rebuild()
