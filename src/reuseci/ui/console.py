"""Console output formatting utilities for ReuseCI."""

from __future__ import annotations

import sys
import threading
from typing import TYPE_CHECKING, List, Optional

if TYPE_CHECKING:
    from reuseci.runner import PipelineResult


class Console:
    """Centralized console output formatting."""

    def __init__(self, debug: bool = False, quiet: bool = False):
        """
        Initialize console formatter.

        Args:
            debug: If True, show detailed output including stack traces
            quiet: If True, suppress progress output (errors still print)
        """
        self.debug = debug
        self.quiet = quiet
        # jobs report from worker threads; keep multi-line blocks together
        self._lock = threading.Lock()

    def _out(self, *lines: str) -> None:
        if self.quiet:
            return
        with self._lock:
            for line in lines:
                print(line)

    def print_header(self, title: str) -> None:
        """Print a section header."""
        self._out(f"\n{title}", "-" * len(title))

    def print_run_started(self, reference: str, digest: str, job_count: int) -> None:
        """Print run start information."""
        self._out("\nRUN STARTED", f"Pipeline: {reference}", f"Digest: {digest}", f"Jobs: {job_count}", "")

    def print_plan(self, levels: List[List[str]]) -> None:
        """Print the job graph, one line per level."""
        lines = [f"  level {i}: {', '.join(level)}" for i, level in enumerate(levels)]
        self._out("PLAN", *lines)

    def print_job_start(self, name: str) -> None:
        """Print job start message."""
        self._out(f"\nJOB STARTED: {name}")

    def print_step(self, job: str, name: str) -> None:
        """Print step start message."""
        self._out(f"[{job}] STEP: {name}")

    def print_job_finished(self, name: str, status: str, error: Optional[str] = None) -> None:
        lines = [f"[{name}] STATUS: {status}"]
        if error:
            first = error.split("\n")[0]
            lines.append(f"[{name}] Error: {error if self.debug else first}")
        self._out(*lines)

    def print_job_skipped(self, name: str, reason: str) -> None:
        """Print job skipped message."""
        self._out(f"[{name}] STATUS: skipped ({reason})")

    def print_published(self, reference: str, digest: str, created: bool = True) -> None:
        note = "published" if created else "unchanged"
        self._out(f"{note}: {reference} ({digest[:19]}...)")

    def print_results(self, result: "PipelineResult") -> None:
        """Print final results summary."""
        lines = ["", "=" * 40, "RESULTS", "=" * 40]
        for job in result.jobs:
            lines.append(f"  {job.name}: {job.status.value.upper()}")
        lines.append("-" * 40)
        status = result.status.value.upper()
        if result.cancelled:
            status += " (cancelled)"
        lines.append(f"  pipeline: {status}")
        self._out(*lines)

    def print_error(
        self,
        title: str,
        message: str,
        details: Optional[list[str]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        """
        Print structured error message.

        Args:
            title: Error title
            message: Main error message
            details: Optional list of detail lines
            suggestion: Optional suggestion for user
        """
        with self._lock:
            print(f"\nERROR: {title}", file=sys.stderr)
            print(f"{message}", file=sys.stderr)
            if details:
                for detail in details:
                    print(f"  {detail}", file=sys.stderr)
            if suggestion:
                print(f"\n{suggestion}", file=sys.stderr)

    def print_exception(self, exc: BaseException) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            import traceback
            traceback.print_exception(type(exc), exc, exc.__traceback__)
        else:
            print(f"Error: {exc}", file=sys.stderr)

    def print_info(self, message: str) -> None:
        """Print informational message."""
        self._out(message)

    def print_debug(self, message: str) -> None:
        """Print debug message (only if debug mode enabled)."""
        if self.debug:
            print(f"[DEBUG] {message}", file=sys.stderr)


# Global console instance (will be initialized by CLI)
_console: Optional[Console] = None


def get_console() -> Console:
    """Get the global console instance."""
    global _console
    if _console is None:
        _console = Console()
    return _console


def set_console(console: Console) -> None:
    """Set the global console instance."""
    global _console
    _console = console
