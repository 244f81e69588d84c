"""
Progress Reporting
==================
Fire-and-forget progress events for display.

The pipeline never blocks on a reporter and never fails because of one:
``safe_notify`` logs and swallows reporter exceptions.

Events:
    on_workflow_start(name, total_runs)  : runs for a workflow were listed
    on_run_completed(name, index, total) : run N of M was traced
    on_run_skipped(name, run_id, reason) : run N was dropped after retries
"""
import logging
from typing import Any, Callable, Dict, Optional, Protocol

logger = logging.getLogger(__name__)


class ProgressReporter(Protocol):
    def on_workflow_start(self, name: str, total_runs: int) -> None: ...

    def on_run_completed(self, name: str, index: int, total: int) -> None: ...

    def on_run_skipped(self, name: str, run_id: Optional[int], reason: str) -> None: ...


class NullProgressReporter:
    """Discards every event."""

    def on_workflow_start(self, name: str, total_runs: int) -> None:
        pass

    def on_run_completed(self, name: str, index: int, total: int) -> None:
        pass

    def on_run_skipped(self, name: str, run_id: Optional[int], reason: str) -> None:
        pass


class LoggingProgressReporter:
    """
    Renders progress as log lines, one per event.

    Each workflow gets a ``[i/N]`` prefix in the order its runs were listed,
    mirroring a per-workflow progress bar.
    """

    def __init__(self, log: Optional[logging.Logger] = None) -> None:
        self._log = log or logger
        self._prefixes: Dict[str, str] = {}
        self._completed: Dict[str, int] = {}

    def _prefix(self, name: str) -> str:
        return self._prefixes.get(name, "[?]")

    def on_workflow_start(self, name: str, total_runs: int) -> None:
        self._prefixes[name] = f"[{len(self._prefixes) + 1}]"
        self._completed[name] = 0
        self._log.info("%s Processing workflow/%s (%d runs)", self._prefix(name), name, total_runs)

    def on_run_completed(self, name: str, index: int, total: int) -> None:
        self._completed[name] = self._completed.get(name, 0) + 1
        done = self._completed[name]
        self._log.info("%s workflow/%s run %d/%d traced (%d/%d done)",
                       self._prefix(name), name, index, total, done, total)
        if done == total:
            self._log.info("%s Completed workflow %s", self._prefix(name), name)

    def on_run_skipped(self, name: str, run_id: Optional[int], reason: str) -> None:
        target = f"run {run_id}" if run_id is not None else "run listing"
        self._log.warning("%s workflow/%s %s skipped: %s", self._prefix(name), name, target, reason)


def safe_notify(callback: Callable[..., Any], *args: Any) -> None:
    """Invoke a reporter callback without letting it disturb the pipeline."""
    try:
        callback(*args)
    except Exception as e:
        logger.warning("Progress reporter %s failed: %s", getattr(callback, "__name__", callback), e)
