"""
Trace Emitter
=============
Replays a SpanDescriptor tree against a TraceSink.

Order:
    Depth-first. Each span is opened with its resolved start time under the
    currently open parent before any of its children are opened, and closed
    with its resolved end time after all of its children are closed. Open and
    close therefore follow a stack discipline.

Serialisation:
    All sink access happens under one lock, so trees coming from different
    runs never interleave inside the exporter.

Failure policy:
    Tracing is best-effort. A sink exception is logged as an ExportFailure,
    spans already opened for that tree are closed, and emit() returns False.
    Nothing propagates to the fetch pipeline.
"""
import logging
import threading
from typing import List, Optional, Tuple

from action_trace.core.errors import ExportFailure
from action_trace.models.span import SpanDescriptor
from action_trace.tracing.sink import SpanHandle, TraceSink

logger = logging.getLogger(__name__)


class TraceEmitter:
    def __init__(self, sink: TraceSink, lock: Optional[threading.Lock] = None) -> None:
        self.sink = sink
        self._lock = lock or threading.Lock()
        self.spans_emitted = 0
        self.failures = 0

    def emit(self, root: SpanDescriptor) -> bool:
        """Open and close every span of ``root``. Returns False on export failure."""
        open_spans: List[Tuple[SpanHandle, SpanDescriptor]] = []
        with self._lock:
            try:
                emitted = self._emit_span(root, None, open_spans)
            except Exception as e:
                self.failures += 1
                failure = ExportFailure(f"Exporting trace '{root.name}' failed: {e}")
                logger.error("%s", failure)
                self._close_abandoned(open_spans)
                return False
        self.spans_emitted += emitted
        logger.debug("Emitted %d span(s) for %s", emitted, root.name)
        return True

    def _emit_span(
        self,
        node: SpanDescriptor,
        parent: Optional[SpanHandle],
        open_spans: List[Tuple[SpanHandle, SpanDescriptor]],
    ) -> int:
        handle = self.sink.start_span(
            node.kind, node.name, node.start, parent=parent, attributes=dict(node.attributes)
        )
        open_spans.append((handle, node))
        emitted = 1
        for child in node.children:
            emitted += self._emit_span(child, handle, open_spans)
        self.sink.end_span(handle, node.end, node.status)
        open_spans.pop()
        return emitted

    def _close_abandoned(self, open_spans: List[Tuple[SpanHandle, SpanDescriptor]]) -> None:
        """Close spans left open by a failure, innermost first."""
        while open_spans:
            handle, node = open_spans.pop()
            try:
                self.sink.end_span(handle, node.end, node.status)
            except Exception as e:
                logger.debug("Could not close span %s after export failure: %s", node.name, e)
