# model.py
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from fnmatch import fnmatch
from typing import Dict, Mapping, Optional, Tuple

from .errors import DuplicateJobName, EmptyPipeline


# ---------------------------------------------------------------------
# Toolchain selection
# ---------------------------------------------------------------------

class VersionKind(str, Enum):
    PINNED = "pinned"
    LATEST_STABLE = "latest_stable"


@dataclass(frozen=True)
class ToolchainVersion:
    """Which toolchain a job runs against: a pinned version or latest stable."""
    kind: VersionKind
    version: str | None = None

    def __post_init__(self) -> None:
        if self.kind is VersionKind.PINNED and not self.version:
            raise ValueError("a pinned toolchain needs a version")

    def __str__(self) -> str:
        return self.version if self.kind is VersionKind.PINNED else "stable"


LATEST_STABLE = ToolchainVersion(VersionKind.LATEST_STABLE)


def pinned(version: str) -> ToolchainVersion:
    return ToolchainVersion(VersionKind.PINNED, version)


class FailPolicy(str, Enum):
    HARD_FAIL = "hard_fail"
    ADVISORY = "advisory"


# ---------------------------------------------------------------------
# Jobs + pipelines
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class JobSpec:
    """One independent verification job (build, format check, test, lint...)."""
    name: str
    command: str
    toolchain: ToolchainVersion = LATEST_STABLE
    required_components: frozenset[str] = frozenset()
    fail_policy: FailPolicy = FailPolicy.HARD_FAIL

    title: str | None = None                   # e.g. "Verify the MSRV"
    env: Mapping[str, str] = field(default_factory=dict)
    cwd: str | None = None                     # relative to the checkout
    timeout: float | None = None               # seconds, None = no limit

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("job name must not be empty")
        if not self.command.strip():
            raise ValueError(f"job({self.name!r}) must have a command")
        # accept any iterable / mapping, store immutable-ish copies
        object.__setattr__(self, "required_components", frozenset(self.required_components))
        object.__setattr__(self, "env", {k: str(v) for k, v in dict(self.env).items()})

    @property
    def display_name(self) -> str:
        return self.title or self.name

    @property
    def advisory(self) -> bool:
        return self.fail_policy is FailPolicy.ADVISORY


class EventKind(str, Enum):
    PUSH = "push"
    PULL_REQUEST = "pull_request"


@dataclass(frozen=True)
class EventDescriptor:
    """A repository event that may start a pipeline run."""
    event_kind: EventKind
    ref: str = "HEAD"
    metadata: Mapping[str, str] = field(default_factory=dict)

    @property
    def branch(self) -> str:
        for prefix in ("refs/heads/", "refs/tags/"):
            if self.ref.startswith(prefix):
                return self.ref[len(prefix):]
        return self.ref


@dataclass(frozen=True)
class TriggerConditions:
    events: frozenset[EventKind] = frozenset({EventKind.PUSH, EventKind.PULL_REQUEST})
    branches: Optional[Tuple[str, ...]] = None   # fnmatch patterns, None = any

    def __post_init__(self) -> None:
        object.__setattr__(self, "events", frozenset(EventKind(e) for e in self.events))
        if self.branches is not None:
            object.__setattr__(self, "branches", tuple(self.branches))

    def matches(self, event: EventDescriptor) -> bool:
        if event.event_kind not in self.events:
            return False
        if not self.branches:
            return True
        return any(fnmatch(event.ref, p) or fnmatch(event.branch, p) for p in self.branches)


@dataclass(frozen=True)
class PipelineDefinition:
    """
    Ordered, validated set of jobs plus the events that start a run.

    Raises DuplicateJobName / EmptyPipeline at construction time.
    """
    name: str
    jobs: Tuple[JobSpec, ...]
    triggers: TriggerConditions = field(default_factory=TriggerConditions)

    def __post_init__(self) -> None:
        jobs = tuple(self.jobs)
        if not jobs:
            raise EmptyPipeline(self.name)
        seen: set[str] = set()
        for j in jobs:
            if j.name in seen:
                raise DuplicateJobName(j.name)
            seen.add(j.name)
        object.__setattr__(self, "jobs", jobs)

    def __len__(self) -> int:
        return len(self.jobs)

    def job(self, name: str) -> JobSpec:
        for j in self.jobs:
            if j.name == name:
                return j
        raise KeyError(name)


# ---------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------

class JobStatus(str, Enum):
    PASSED = "passed"
    FAILED = "failed"
    ERRORED = "errored"


class ErrorReason(str, Enum):
    PROVISIONING = "provisioning"
    LAUNCH = "launch"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"
    INTERNAL = "internal"


@dataclass(frozen=True)
class JobResult:
    job_name: str
    status: JobStatus
    exit_code: int | None = None
    duration: float = 0.0
    log: bytes = b""
    reason: ErrorReason | None = None   # only set for ERRORED
    message: str | None = None

    @property
    def passed(self) -> bool:
        return self.status is JobStatus.PASSED


class RunStatus(str, Enum):
    PASSED = "passed"
    FAILED = "failed"
    NOT_TRIGGERED = "not_triggered"


@dataclass(frozen=True)
class RunReport:
    pipeline: str
    trigger: EventDescriptor
    results: Tuple[JobResult, ...]
    overall_status: RunStatus
    cancelled: bool = False

    @property
    def passed(self) -> bool:
        return self.overall_status is not RunStatus.FAILED

    def result(self, job_name: str) -> JobResult:
        for r in self.results:
            if r.job_name == job_name:
                return r
        raise KeyError(job_name)

    def by_status(self) -> Dict[JobStatus, list[str]]:
        out: Dict[JobStatus, list[str]] = {s: [] for s in JobStatus}
        for r in self.results:
            out[r.status].append(r.job_name)
        return out
