"""
Summary Writer
==============
Serializes the final TraceSummary into a JSON file for later inspection.
"""
import json
import logging
import os

from action_trace.models.trace_summary import TraceSummary

logger = logging.getLogger(__name__)


class SummaryWriter:
    """
    Service responsible for writing the invocation summary to disk.
    Writing is best-effort: a failure is logged and reported as False.
    """

    @staticmethod
    def write_summary(summary: TraceSummary, output_path: str = "trace_summary.json") -> bool:
        """
        Write ``summary`` as JSON to ``output_path``.
        """
        try:
            data = {
                "repository": summary.repository,
                "final_results": {
                    "workflows": summary.workflows,
                    "runs_processed": summary.runs_processed,
                    "runs_skipped": summary.runs_skipped,
                    "spans_emitted": summary.spans_emitted,
                    "export_failures": summary.export_failures,
                    "spans_dropped": summary.spans_dropped,
                    "cancelled": summary.cancelled,
                    "summary": summary.describe(),
                },
                "requests": {
                    "issued": summary.requests,
                    "retries": summary.retries,
                },
                "skipped": list(summary.skipped),
            }

            directory = os.path.dirname(output_path)
            if directory:
                os.makedirs(directory, exist_ok=True)
            with open(output_path, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)

            logger.info("Trace summary written to %s", output_path)
            return True
        except (OSError, TypeError, ValueError) as e:
            logger.error("Failed to write trace summary to %s: %s", output_path, e)
            return False
