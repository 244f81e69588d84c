"""
Errors
======
Exception hierarchy for the trace pipeline.

Taxonomy:
    MetadataSourceError    anything raised by a MetadataSource call
        RateLimited        upstream asked us to slow down (retryable)
        Transient          timeout, 5xx, connection reset (retryable)
        NotFound           owner/repo/run/job does not exist (permanent)
        Unauthorized       missing or rejected credential (permanent)
        MalformedResponse  body could not be decoded or validated (permanent)
    FatalConfigError       aborts the invocation, no partial output
    RunLevelFailure        one run could not be hydrated; it is skipped
    ExportFailure          the trace sink rejected a span; logged only
"""
from typing import Optional


class ActionTraceError(Exception):
    """Base exception for all gh-action-trace errors."""


# ---------------------------------------------------------------------------
# Metadata source errors
# ---------------------------------------------------------------------------
class MetadataSourceError(ActionTraceError):
    """Raised by a MetadataSource when a listing call fails."""

    retryable = False


class RateLimited(MetadataSourceError):
    """Upstream rate limit hit. ``retry_after`` is in seconds when known."""

    retryable = True

    def __init__(self, retry_after: Optional[float] = None, message: str = "") -> None:
        self.retry_after = retry_after
        super().__init__(message or f"Rate limited (retry after {retry_after}s)")


class Transient(MetadataSourceError):
    """Timeout, 5xx or dropped connection."""

    retryable = True

    def __init__(self, cause: object = None, message: str = "") -> None:
        self.cause = cause
        super().__init__(message or f"Transient failure: {cause}")


class NotFound(MetadataSourceError):
    """The requested resource does not exist."""


class Unauthorized(MetadataSourceError):
    """The credential was missing, expired or lacks the required scope."""


class MalformedResponse(MetadataSourceError):
    """The response body was not JSON or did not match the expected shape."""


# ---------------------------------------------------------------------------
# Pipeline errors
# ---------------------------------------------------------------------------
class FatalConfigError(ActionTraceError):
    """Bad owner/repo, bad credential or invalid settings."""


class RunLevelFailure(ActionTraceError):
    """A run-scoped call failed permanently or exhausted its retries."""

    def __init__(self, workflow_name: str, run_id: Optional[int], cause: BaseException) -> None:
        self.workflow_name = workflow_name
        self.run_id = run_id
        self.cause = cause
        target = f"run {run_id}" if run_id is not None else "run listing"
        super().__init__(f"{workflow_name}: {target} failed: {cause}")


class ExportFailure(ActionTraceError):
    """The trace sink failed while opening or closing a span."""


class FetchCancelled(ActionTraceError):
    """The operator interrupted the pipeline; no new requests are issued."""
