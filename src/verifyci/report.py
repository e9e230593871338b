# report.py
from __future__ import annotations

from typing import Any, Dict, Iterable, List

from .model import (
    EventDescriptor,
    FailPolicy,
    JobResult,
    JobStatus,
    PipelineDefinition,
    RunReport,
    RunStatus,
)


def overall_status(pipeline: PipelineDefinition, results: Iterable[JobResult]) -> RunStatus:
    """FAILED iff some hard-fail job did not pass. Advisory jobs never gate."""
    for r in results:
        spec = pipeline.job(r.job_name)
        if spec.fail_policy is FailPolicy.HARD_FAIL and r.status is not JobStatus.PASSED:
            return RunStatus.FAILED
    return RunStatus.PASSED


def build_report(
    pipeline: PipelineDefinition,
    trigger: EventDescriptor,
    results: Iterable[JobResult],
    *,
    cancelled: bool = False,
) -> RunReport:
    by_name = {r.job_name: r for r in results}
    # declared order, whatever the completion order was
    ordered = tuple(by_name[j.name] for j in pipeline.jobs if j.name in by_name)
    return RunReport(
        pipeline=pipeline.name,
        trigger=trigger,
        results=ordered,
        overall_status=overall_status(pipeline, ordered),
        cancelled=cancelled,
    )


def not_triggered(pipeline: PipelineDefinition, trigger: EventDescriptor) -> RunReport:
    return RunReport(
        pipeline=pipeline.name,
        trigger=trigger,
        results=(),
        overall_status=RunStatus.NOT_TRIGGERED,
    )


# ---------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------

def _status_label(r: JobResult) -> str:
    label = r.status.value.upper()
    if r.reason is not None:
        label += f" ({r.reason.value})"
    elif r.status is JobStatus.FAILED and r.exit_code is not None:
        label += f" (exit {r.exit_code})"
    return label


def render_report(report: RunReport, pipeline: PipelineDefinition | None = None) -> str:
    """Human readable summary: one line per job, then the overall result."""
    trigger = f"{report.trigger.event_kind.value} {report.trigger.ref}"
    lines: List[str] = [f"Pipeline: {report.pipeline} ({trigger})"]

    if report.overall_status is RunStatus.NOT_TRIGGERED:
        lines.append("Not triggered by this event; nothing to run.")
        return "\n".join(lines)

    jobs = pipeline.jobs if pipeline is not None else ()
    titles = {j.name: j.display_name for j in jobs}
    advisory = {j.name for j in jobs if j.advisory}

    width = max((len(titles.get(r.job_name, r.job_name)) for r in report.results), default=0)
    for r in report.results:
        title = titles.get(r.job_name, r.job_name)
        note = "  [advisory]" if r.job_name in advisory else ""
        lines.append(f"  {title:<{width}}  {_status_label(r):<22} {r.duration:6.1f}s{note}")

    overall = report.overall_status.value.upper()
    if report.cancelled:
        overall += " (cancelled)"
    lines.append(f"Overall: {overall}")
    return "\n".join(lines)


def _decode_tail(log: bytes, limit: int) -> str:
    if limit and len(log) > limit:
        log = log[-limit:]
    return log.decode("utf-8", errors="replace")


def report_to_dict(report: RunReport, *, log_tail: int = 4000) -> Dict[str, Any]:
    """JSON-friendly form of a report (logs trimmed to their last bytes)."""
    return {
        "pipeline": report.pipeline,
        "trigger": {
            "event_kind": report.trigger.event_kind.value,
            "ref": report.trigger.ref,
            "metadata": dict(report.trigger.metadata),
        },
        "overall_status": report.overall_status.value,
        "cancelled": report.cancelled,
        "results": [
            {
                "job_name": r.job_name,
                "status": r.status.value,
                "exit_code": r.exit_code,
                "duration": round(r.duration, 3),
                "reason": r.reason.value if r.reason is not None else None,
                "message": r.message,
                "log": _decode_tail(r.log, log_tail),
            }
            for r in report.results
        ],
    }
