"""
gh-action-trace
===============
Create traces for GitHub Actions runs from the metadata the GitHub API
exposes: one trace per workflow run, a span per job, a span per step.

Usage:
    python main.py --owner octo-org --repo octo-repo --runs 30
    gh-action-trace -o octo-org -r octo-repo --workflow CI --exporter console

Exit codes:
    0    traces emitted (possibly partial; skipped runs are reported)
    1    workflows could not be listed, or the configuration is invalid
    130  interrupted
"""
import argparse
import asyncio
import logging
import signal
import sys
from typing import List, Optional

from action_trace.agents.orchestrator import TracePipeline
from action_trace.agents.run_fetcher import RunFetcher
from action_trace.core import config
from action_trace.core.constants import EXPORTERS, TRACER_NAME, TRACER_VERSION
from action_trace.core.errors import FatalConfigError
from action_trace.models.trace_summary import TraceSummary
from action_trace.services.github_source import GitHubMetadataSource
from action_trace.services.progress import LoggingProgressReporter
from action_trace.services.summary_writer import SummaryWriter
from action_trace.tracing.emitter import TraceEmitter
from action_trace.tracing.otel_sink import create_trace_sink
from action_trace.utils.logging_config import setup_logging
from action_trace.utils.request_budget import RequestBudget
from action_trace.utils.retry_policy import RetryPolicy

logger = logging.getLogger("main")

EXIT_OK = 0
EXIT_FATAL = 1
EXIT_INTERRUPTED = 130


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=TRACER_NAME,
        description="Create traces for GitHub Action runs by retrieving run metadata from the GitHub API.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {TRACER_VERSION}")
    parser.add_argument("-o", "--owner", required=True, help="Organization or owner of the repository")
    parser.add_argument("-r", "--repo", required=True, help="Name of the repository")
    parser.add_argument(
        "-t", "--token", default=None,
        help="Token for the GitHub API (default: $GITHUB_TOKEN or $GITHUB_ACCESS_TOKEN)",
    )
    parser.add_argument(
        "--runs", type=int, default=config.TRACE_MAX_RUNS,
        help=f"Number of runs to retrieve per workflow (default: {config.TRACE_MAX_RUNS})",
    )
    parser.add_argument(
        "-w", "--workflow", action="append", default=None, metavar="NAME",
        help="Only trace this workflow (name or file name); repeatable",
    )
    parser.add_argument(
        "--exporter", choices=EXPORTERS, default=config.TRACE_EXPORTER,
        help=f"Span exporter (default: {config.TRACE_EXPORTER})",
    )
    parser.add_argument(
        "--endpoint", default=config.OTEL_EXPORTER_OTLP_ENDPOINT,
        help="Collector endpoint for the OTLP exporters (default: $OTEL_EXPORTER_OTLP_ENDPOINT)",
    )
    parser.add_argument(
        "--concurrency", type=int, default=config.TRACE_MAX_CONCURRENT_REQUESTS,
        help="Maximum concurrent API requests",
    )
    parser.add_argument(
        "--runs-in-flight", type=int, default=config.TRACE_MAX_RUNS_IN_FLIGHT,
        help="Maximum runs hydrated at once",
    )
    parser.add_argument("--summary-json", default=None, metavar="PATH", help="Write a JSON summary here")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser


def resolve_token(cli_token: Optional[str]) -> Optional[str]:
    token = cli_token or config.GITHUB_TOKEN
    if not token:
        logger.warning("No token provided, falling back to no-auth (60 requests/hour)")
    return token


def _install_signal_handlers(fetcher: RunFetcher) -> None:
    """First interrupt stops new requests; a second one aborts immediately."""
    loop = asyncio.get_running_loop()
    main_task = asyncio.current_task()

    def _on_signal() -> None:
        if not fetcher.cancelled:
            logger.warning("Interrupt received: finishing in-flight requests (interrupt again to abort)")
            fetcher.cancel()
        elif main_task is not None:
            main_task.cancel()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _on_signal)
        except (NotImplementedError, RuntimeError):
            # Not available on this platform; KeyboardInterrupt still applies
            pass


async def trace_repository(args: argparse.Namespace) -> TraceSummary:
    if args.runs < 1:
        raise FatalConfigError("--runs must be >= 1")
    if args.concurrency < 1:
        raise FatalConfigError("--concurrency must be >= 1")

    token = resolve_token(args.token)
    sink = create_trace_sink(f"{args.owner}/{args.repo}", args.exporter, args.endpoint)
    progress = LoggingProgressReporter()
    budget = RequestBudget(args.concurrency)

    try:
        async with GitHubMetadataSource(token=token) as source:
            fetcher = RunFetcher(
                source,
                budget,
                retry_policy=RetryPolicy(),
                progress=progress,
                max_runs_in_flight=args.runs_in_flight,
            )
            _install_signal_handlers(fetcher)
            pipeline = TracePipeline(fetcher, TraceEmitter(sink), progress=progress)
            summary = await pipeline.run(
                args.owner, args.repo,
                workflow_filter=args.workflow,
                max_runs_per_workflow=args.runs,
            )
    finally:
        spans_dropped = sink.shutdown()

    if spans_dropped:
        summary.spans_dropped = spans_dropped
        logger.warning("%d span(s) were not delivered by the exporter", spans_dropped)
    return summary


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(logging.DEBUG if args.verbose else config.LOG_LEVEL, config.LOG_DIR)

    try:
        summary = asyncio.run(trace_repository(args))
    except FatalConfigError as e:
        logger.error("%s", e)
        return EXIT_FATAL
    except (KeyboardInterrupt, asyncio.CancelledError):
        logger.error("Aborted")
        return EXIT_INTERRUPTED

    if args.summary_json:
        SummaryWriter.write_summary(summary, args.summary_json)
    if summary.runs_skipped:
        logger.warning("%d run(s) skipped:\n  %s", summary.runs_skipped, "\n  ".join(summary.skipped))
    return EXIT_INTERRUPTED if summary.cancelled else EXIT_OK


def run() -> None:
    sys.exit(main())


if __name__ == "__main__":
    run()
