"""
Trace Sink
Interface the emitter drives to materialise spans in a tracing backend.

Handles are opaque to the core; a sink returns whatever it needs to end the
span and to parent children under it.
"""
from datetime import datetime
from typing import Any, Dict, Optional, Protocol

from action_trace.models.span import AttributeValue, SpanKind, SpanStatus

SpanHandle = Any


class TraceSink(Protocol):
    def start_span(
        self,
        kind: SpanKind,
        name: str,
        start_time: datetime,
        parent: Optional[SpanHandle] = None,
        attributes: Optional[Dict[str, AttributeValue]] = None,
    ) -> SpanHandle: ...

    def end_span(self, handle: SpanHandle, end_time: datetime, status: SpanStatus) -> None: ...
