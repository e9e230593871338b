"""Console output formatting utilities for verifyci."""

from __future__ import annotations

import sys
import threading
from typing import Optional

from ..model import EventDescriptor, JobResult, JobSpec, JobStatus, PipelineDefinition, RunReport
from ..report import render_report


class Console:
    """Centralized console output formatting."""

    def __init__(self, debug: bool = False, log_lines: int = 20):
        """
        Initialize console formatter.

        Args:
            debug: If True, show detailed output including stack traces and full job logs
            log_lines: How many trailing log lines to show for a job that did not pass
        """
        self.debug = debug
        self.log_lines = log_lines
        # jobs report from worker threads
        self._lock = threading.Lock()

    def _print(self, *lines: str, file=None) -> None:
        with self._lock:
            for line in lines:
                print(line, file=file or sys.stdout)

    def print_run_started(
        self,
        repository: str,
        pipeline: str,
        trigger: EventDescriptor,
        job_count: int,
    ) -> None:
        """Print run start information."""
        self._print(
            "\nRUN STARTED",
            f"Repository: {repository}",
            f"Pipeline: {pipeline}",
            f"Trigger: {trigger.event_kind.value} {trigger.ref}",
            f"Jobs: {job_count}",
            "",
        )

    def print_job_start(self, spec: JobSpec) -> None:
        """Print job start message."""
        extras = ", ".join(sorted(spec.required_components))
        toolchain = f"{spec.toolchain} + {extras}" if extras else str(spec.toolchain)
        self._print(f"JOB STARTED: {spec.display_name} [{toolchain}]")

    def print_job_result(self, spec: JobSpec, result: JobResult) -> None:
        """Print one job's outcome; failing jobs get the tail of their log."""
        if result.status is JobStatus.PASSED:
            self._print(f"JOB PASSED: {spec.display_name} ({result.duration:.1f}s)")
            return

        lines = [f"JOB {result.status.value.upper()}: {spec.display_name}"]
        if result.exit_code is not None:
            lines.append(f"Exit code: {result.exit_code}")
        if result.reason is not None:
            lines.append(f"Reason: {result.reason.value}")
        if result.message:
            if self.debug:
                lines.append(f"Error details: {result.message}")
            else:
                lines.append(f"Error: {result.message.splitlines()[0]}")

        text = result.log.decode("utf-8", errors="replace").rstrip()
        if text:
            log_lines = text.splitlines()
            if not self.debug:
                log_lines = log_lines[-self.log_lines:]
            lines.append("Log:")
            lines.extend(f"  | {line}" for line in log_lines)
        self._print(*lines)

    def print_report(self, report: RunReport, pipeline: PipelineDefinition | None = None) -> None:
        """Print final results summary."""
        self._print("\n" + "=" * 40, "RESULTS", "=" * 40, render_report(report, pipeline))

    def print_plan(self, pipeline: PipelineDefinition, trigger: EventDescriptor) -> None:
        """Print the jobs of a pipeline and whether `trigger` would start it."""
        triggered = pipeline.triggers.matches(trigger)
        events = ", ".join(sorted(e.value for e in pipeline.triggers.events))
        lines = [
            f"\nPIPELINE: {pipeline.name}",
            f"On: {events}" + (f" (branches: {', '.join(pipeline.triggers.branches)})" if pipeline.triggers.branches else ""),
            f"{trigger.event_kind.value} {trigger.ref}: {'would run' if triggered else 'not triggered'}",
        ]
        for spec in pipeline.jobs:
            components = f" +{','.join(sorted(spec.required_components))}" if spec.required_components else ""
            policy = " (advisory)" if spec.advisory else ""
            lines.append(f"  {spec.name}: {spec.toolchain}{components} -> {spec.command}{policy}")
        self._print(*lines)

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
        lines = [f"\nERROR: {title}", message]
        if details:
            lines.extend(f"  {detail}" for detail in details)
        if suggestion:
            lines.append(f"\n{suggestion}")
        self._print(*lines, file=sys.stderr)

    def print_exception(self, exc: Exception) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            import traceback
            traceback.print_exception(exc)
        else:
            self._print(f"Error: {exc}", file=sys.stderr)

    def print_info(self, message: str) -> None:
        """Print informational message."""
        self._print(message)

    def print_debug(self, message: str) -> None:
        """Print debug message (only if debug mode enabled)."""
        if self.debug:
            self._print(f"[DEBUG] {message}", file=sys.stderr)


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
