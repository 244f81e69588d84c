"""
Constants
Centralised storage for API headers, page sizes and conclusion classes.
"""
TRACER_NAME = "gh-action-trace"
TRACER_VERSION = "0.3.0"

GITHUB_API_VERSION = "2022-11-28"
GITHUB_ACCEPT = "application/vnd.github+json"
USER_AGENT = f"{TRACER_NAME}/{TRACER_VERSION}"

# GitHub caps per_page at 100 for every Actions listing
MAX_PAGE_SIZE = 100

RUN_STATUS_COMPLETED = "completed"

# Conclusions surfaced as span errors. Cancelled counts for visibility.
ERROR_CONCLUSIONS = frozenset({
    "failure",
    "timed_out",
    "cancelled",
    "startup_failure",
    "action_required",
})

EXPORTERS = ("otlp", "otlp-http", "console")
