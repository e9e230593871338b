# errors.py
from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(eq=False)
class CIError(Exception):
    """
    Structured verifyci error with enough context for:
      - clean CLI output
      - per-job classification in the run report
      - debugging without full tracebacks
    """
    kind: str
    message: str
    details: dict = field(default_factory=dict)

    def __str__(self) -> str:
        lines = [f"{self.kind}: {self.message}"]
        for k, v in self.details.items():
            lines.append(f"{k}={v}")
        return "\n".join(lines)


# ----------------------------------------------------------------------
# Definition-time errors (fatal to starting a run)
# ----------------------------------------------------------------------

class DefinitionError(CIError):
    pass


class DuplicateJobName(DefinitionError):
    def __init__(self, name: str):
        super().__init__(
            kind="duplicate_job_name",
            message=f"Duplicate job name: {name}",
            details={"job": name},
        )


class EmptyPipeline(DefinitionError):
    def __init__(self, pipeline: str):
        super().__init__(
            kind="empty_pipeline",
            message=f"Pipeline '{pipeline}' has no jobs",
            details={"pipeline": pipeline},
        )


class WorkflowError(CIError):
    """Raised when a workflow file cannot be loaded into a pipeline."""

    def __init__(self, message: str, **details):
        super().__init__(kind="workflow", message=message, details=details)


# ----------------------------------------------------------------------
# Provisioning errors (local to one job)
# ----------------------------------------------------------------------

class ProvisioningError(CIError):
    pass


class UnresolvableVersion(ProvisioningError):
    def __init__(self, selector: str, reason: str = ""):
        details = {"selector": selector}
        if reason:
            details["reason"] = reason
        super().__init__(
            kind="unresolvable_version",
            message=f"Cannot resolve toolchain version '{selector}'",
            details=details,
        )


class MissingComponent(ProvisioningError):
    def __init__(self, component: str, version: str):
        super().__init__(
            kind="missing_component",
            message=f"Component '{component}' is not available for toolchain {version}",
            details={"component": component, "version": version},
        )


class InstallFailure(ProvisioningError):
    def __init__(self, version: str, reason: str):
        super().__init__(
            kind="install_failure",
            message=f"Failed to install toolchain {version}",
            details={"version": version, "reason": reason},
        )


# ----------------------------------------------------------------------
# Execution errors
# ----------------------------------------------------------------------

class ExecutionError(CIError):
    """The command could not be launched (not: it ran and exited nonzero)."""

    def __init__(self, message: str, log: bytes = b"", **details):
        super().__init__(kind="launch_failure", message=message, details=details)
        self.log = log


class _Interrupted(CIError):
    def __init__(self, kind: str, message: str, log: bytes = b""):
        super().__init__(kind=kind, message=message, details={})
        self.log = log


class JobTimeout(_Interrupted):
    def __init__(self, timeout: float, log: bytes = b""):
        super().__init__("timeout", f"Command timed out after {timeout:g}s", log)


class JobCancelled(_Interrupted):
    def __init__(self, log: bytes = b""):
        super().__init__("cancelled", "Run was cancelled", log)
