"""
OpenTelemetry Sink
==================
TraceSink over the OpenTelemetry SDK.

Each run span starts a fresh trace (empty parent context); job and step
spans are parented with ``trace.set_span_in_context``. Start and end times
are passed explicitly because the spans describe work that already
happened.

Span identity:
    Trace and span ids are derived from the GitHub ids on the span
    (run id and attempt, job id, step number) through DeterministicIdGenerator,
    so tracing the same run again produces the same trace in the backend
    rather than a duplicate.

Exporters:
    otlp      : OTLP/gRPC to OTEL_EXPORTER_OTLP_ENDPOINT (default localhost:4317)
    otlp-http : OTLP/HTTP, ``/v1/traces`` appended to the endpoint if missing
    console   : pretty-printed spans on stdout, useful for a dry run

Export happens in the background (BatchSpanProcessor). ExportTracker counts
the spans the exporter rejected; shutdown() reports that number.

The service name is ``owner/repo`` so every traced repository shows up as
its own service in the backend.
"""
import hashlib
import logging
import threading
from datetime import datetime
from typing import Dict, Optional, Sequence, Tuple

from opentelemetry import trace
from opentelemetry.context import Context
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter as GrpcSpanExporter
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter as HttpSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import ReadableSpan, TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor, ConsoleSpanExporter, SpanExporter, SpanExportResult,
)
from opentelemetry.sdk.trace.id_generator import IdGenerator, RandomIdGenerator
from opentelemetry.trace import SpanKind as OtelSpanKind
from opentelemetry.trace import Status, StatusCode

from action_trace.core.constants import EXPORTERS, TRACER_NAME, TRACER_VERSION
from action_trace.core.errors import FatalConfigError
from action_trace.models.span import AttributeValue, SpanKind, SpanStatus
from action_trace.tracing.sink import SpanHandle

logger = logging.getLogger(__name__)

_NS_PER_SECOND = 1_000_000_000


def to_ns(value: datetime) -> int:
    """Epoch nanoseconds without float rounding."""
    whole_seconds = int(value.replace(microsecond=0).timestamp())
    return whole_seconds * _NS_PER_SECOND + value.microsecond * 1_000


def create_exporter(exporter: str = "otlp", endpoint: Optional[str] = None) -> SpanExporter:
    if exporter == "console":
        return ConsoleSpanExporter()
    if exporter == "otlp":
        if endpoint:
            return GrpcSpanExporter(endpoint=endpoint, insecure=endpoint.startswith("http://"))
        return GrpcSpanExporter()
    if exporter == "otlp-http":
        if endpoint:
            url = endpoint.rstrip("/")
            if not url.endswith("/v1/traces"):
                url += "/v1/traces"
            return HttpSpanExporter(endpoint=url)
        return HttpSpanExporter()
    raise FatalConfigError(f"Unknown exporter '{exporter}' (expected one of {', '.join(EXPORTERS)})")


def derive_trace_id(seed: str) -> int:
    """128-bit trace id from the first 32 hex chars of sha256(seed)."""
    return int(hashlib.sha256(seed.encode()).hexdigest()[:32], 16) or 1


def derive_span_id(seed: str, suffix: str = "") -> int:
    """64-bit span id from the first 16 hex chars of sha256("seed:suffix")."""
    return int(hashlib.sha256(f"{seed}:{suffix}".encode()).hexdigest()[:16], 16) or 1


def span_ids_for(
    kind: SpanKind, attributes: Dict[str, AttributeValue]
) -> Tuple[Optional[int], Optional[int]]:
    """
    (trace_id, span_id) for a span, derived from the GitHub ids it carries.

    The trace id only matters for run spans; jobs and steps inherit it from
    their parent. Returns (None, None) when the ids are missing.
    """
    if kind == SpanKind.RUN:
        run_id = attributes.get("ci.run_id")
        if run_id is None:
            return None, None
        seed = f"run:{run_id}:{attributes.get('ci.run_attempt') or 1}"
        return derive_trace_id(seed), derive_span_id(seed, "run")
    job_id = attributes.get("ci.job_id")
    if job_id is None:
        return None, None
    if kind == SpanKind.JOB:
        return None, derive_span_id(f"job:{job_id}", "job")
    step_number = attributes.get("ci.step_number")
    if step_number is None:
        return None, None
    return None, derive_span_id(f"job:{job_id}", f"step:{step_number}")


class DeterministicIdGenerator(IdGenerator):
    """
    Hands the SDK the ids queued by ``use()`` for the next span, then falls
    back to random ids. Callers must serialise use() + start_span.
    """

    def __init__(self) -> None:
        self._random = RandomIdGenerator()
        self._trace_id: Optional[int] = None
        self._span_id: Optional[int] = None

    def use(self, trace_id: Optional[int], span_id: Optional[int]) -> None:
        self._trace_id = trace_id
        self._span_id = span_id

    def generate_trace_id(self) -> int:
        trace_id, self._trace_id = self._trace_id, None
        return trace_id or self._random.generate_trace_id()

    def generate_span_id(self) -> int:
        span_id, self._span_id = self._span_id, None
        return span_id or self._random.generate_span_id()


class ExportTracker(SpanExporter):
    """Wraps an exporter and counts spans whose export did not succeed."""

    def __init__(self, exporter: SpanExporter) -> None:
        self.exporter = exporter
        self.failed_spans = 0
        self._lock = threading.Lock()

    def _record_failure(self, count: int) -> None:
        with self._lock:
            self.failed_spans += count

    def export(self, spans: Sequence[ReadableSpan]) -> SpanExportResult:
        try:
            result = self.exporter.export(spans)
        except Exception:
            self._record_failure(len(spans))
            raise
        if result != SpanExportResult.SUCCESS:
            self._record_failure(len(spans))
        return result

    def shutdown(self) -> None:
        self.exporter.shutdown()

    def force_flush(self, timeout_millis: int = 30000) -> bool:
        return self.exporter.force_flush(timeout_millis)


def setup_tracer_provider(
    service_name: str,
    exporter: str = "otlp",
    endpoint: Optional[str] = None,
    span_exporter: Optional[SpanExporter] = None,
) -> TracerProvider:
    """Build a TracerProvider with a batch processor around the chosen exporter."""
    resource = Resource.create({
        "service.name": service_name,
        "service.version": TRACER_VERSION,
    })
    provider = TracerProvider(resource=resource, id_generator=DeterministicIdGenerator())
    provider.add_span_processor(
        BatchSpanProcessor(span_exporter or create_exporter(exporter, endpoint))
    )
    return provider


def create_trace_sink(
    service_name: str,
    exporter: str = "otlp",
    endpoint: Optional[str] = None,
    span_exporter: Optional[SpanExporter] = None,
) -> "OtelTraceSink":
    """Provider, tracked exporter and sink in one go; what the CLI uses."""
    tracker = ExportTracker(span_exporter or create_exporter(exporter, endpoint))
    provider = setup_tracer_provider(service_name, span_exporter=tracker)
    logger.info("Tracing initialised: service=%s exporter=%s endpoint=%s",
                service_name, exporter if span_exporter is None else type(span_exporter).__name__,
                endpoint or "default")
    return OtelTraceSink(provider, tracker)


class OtelTraceSink:
    """
    Usage:
        sink = create_trace_sink("owner/repo", exporter="otlp")
        ...
        spans_dropped = sink.shutdown()
    """

    def __init__(self, provider: TracerProvider, tracker: Optional[ExportTracker] = None) -> None:
        self.provider = provider
        self.tracker = tracker
        self._tracer = provider.get_tracer(TRACER_NAME, TRACER_VERSION)
        id_generator = getattr(provider, "id_generator", None)
        self._ids = id_generator if isinstance(id_generator, DeterministicIdGenerator) else None

    def start_span(
        self,
        kind: SpanKind,
        name: str,
        start_time: datetime,
        parent: Optional[SpanHandle] = None,
        attributes: Optional[Dict[str, AttributeValue]] = None,
    ) -> SpanHandle:
        context = trace.set_span_in_context(parent) if parent is not None else Context()
        span_attributes: Dict[str, AttributeValue] = {"ci.span_kind": kind.value}
        span_attributes.update(attributes or {})
        if self._ids is not None:
            self._ids.use(*span_ids_for(kind, span_attributes))
        return self._tracer.start_span(
            name,
            context=context,
            kind=OtelSpanKind.INTERNAL,
            attributes=span_attributes,
            start_time=to_ns(start_time),
        )

    def end_span(self, handle: SpanHandle, end_time: datetime, status: SpanStatus) -> None:
        if status == SpanStatus.ERROR:
            handle.set_status(Status(StatusCode.ERROR))
        elif status == SpanStatus.OK:
            handle.set_status(Status(StatusCode.OK))
        handle.end(end_time=to_ns(end_time))

    def shutdown(self) -> int:
        """Flush pending spans, stop the exporter, return how many spans it rejected."""
        if not self.provider.force_flush():
            logger.warning("Timed out flushing spans to the exporter")
        self.provider.shutdown()
        return self.tracker.failed_spans if self.tracker else 0
