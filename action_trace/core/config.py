"""
Configuration
=============
Loads environment variables from .env file using python-dotenv.

Environment Variables:
    GITHUB_TOKEN                     Token for the GitHub REST API (optional)
    GITHUB_ACCESS_TOKEN              Fallback name for the token
    GITHUB_API_URL                   API root (default: https://api.github.com)
    TRACE_MAX_RUNS                   Runs sampled per workflow (default: 30)
    TRACE_MAX_CONCURRENT_REQUESTS    Global in-flight request bound (default: 6)
    TRACE_MAX_RUNS_IN_FLIGHT         Runs hydrated concurrently (default: 4)
    TRACE_RETRY_ATTEMPTS             Attempts per request incl. the first (default: 5)
    TRACE_RETRY_BASE_DELAY           First backoff delay in seconds (default: 1.0)
    TRACE_RETRY_MAX_DELAY            Backoff ceiling in seconds (default: 60.0)
    TRACE_RATE_LIMIT_MAX_WAIT        Longest retry-after we honour (default: 300.0)
    HTTP_TIMEOUT_SECONDS             Per-request timeout (default: 20.0)
    TRACE_EXPORTER                   otlp | otlp-http | console (default: otlp)
    OTEL_EXPORTER_OTLP_ENDPOINT      Collector endpoint for the OTLP exporters
    LOG_LEVEL                        Root log level (default: INFO)
    LOG_DIR                          When set, also log to a dated file there

Rate-limit budget:
    Unauthenticated callers get 60 requests/hour from GitHub, authenticated
    ones 5000. The concurrency bound keeps bursts small; the retry policy
    honours the retry-after hint when the budget runs out.
"""
import os
from dotenv import load_dotenv

load_dotenv()

GITHUB_TOKEN = os.getenv("GITHUB_TOKEN") or os.getenv("GITHUB_ACCESS_TOKEN")
GITHUB_API_URL = os.getenv("GITHUB_API_URL", "https://api.github.com")

# Sampling
TRACE_MAX_RUNS = int(os.getenv("TRACE_MAX_RUNS", 30))

# Backpressure
TRACE_MAX_CONCURRENT_REQUESTS = int(os.getenv("TRACE_MAX_CONCURRENT_REQUESTS", 6))
TRACE_MAX_RUNS_IN_FLIGHT = int(os.getenv("TRACE_MAX_RUNS_IN_FLIGHT", 4))

# Retry policy
TRACE_RETRY_ATTEMPTS = int(os.getenv("TRACE_RETRY_ATTEMPTS", 5))
TRACE_RETRY_BASE_DELAY = float(os.getenv("TRACE_RETRY_BASE_DELAY", 1.0))
TRACE_RETRY_MAX_DELAY = float(os.getenv("TRACE_RETRY_MAX_DELAY", 60.0))
TRACE_RATE_LIMIT_MAX_WAIT = float(os.getenv("TRACE_RATE_LIMIT_MAX_WAIT", 300.0))

HTTP_TIMEOUT_SECONDS = float(os.getenv("HTTP_TIMEOUT_SECONDS", 20.0))

# Export
TRACE_EXPORTER = os.getenv("TRACE_EXPORTER", "otlp")
OTEL_EXPORTER_OTLP_ENDPOINT = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_DIR = os.getenv("LOG_DIR")
