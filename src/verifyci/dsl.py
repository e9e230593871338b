# src/verifyci/dsl.py
from __future__ import annotations

from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Union

from .model import (
    LATEST_STABLE,
    EventKind,
    FailPolicy,
    JobSpec,
    PipelineDefinition,
    ToolchainVersion,
    TriggerConditions,
    pinned,
)

Toolchain = Union[ToolchainVersion, str]


def _toolchain(value: Toolchain) -> ToolchainVersion:
    # "stable" / "latest" read naturally in workflow files, anything else is a pin
    if isinstance(value, ToolchainVersion):
        return value
    if value in ("stable", "latest", "latest_stable"):
        return LATEST_STABLE
    return pinned(value)


# ---------------------------------------------------------------------
# Functional Job helper
# ---------------------------------------------------------------------

def job(
    name: str,
    command: str,
    *,
    toolchain: Toolchain = LATEST_STABLE,
    components: Optional[Iterable[str]] = None,
    advisory: bool = False,
    title: str | None = None,
    env: Optional[Dict[str, str]] = None,
    cwd: str | None = None,
    timeout: float | None = None,
) -> JobSpec:
    return JobSpec(
        name=name,
        command=command,
        toolchain=_toolchain(toolchain),
        required_components=frozenset(components or ()),
        fail_policy=FailPolicy.ADVISORY if advisory else FailPolicy.HARD_FAIL,
        title=title,
        env=env or {},
        cwd=cwd,
        timeout=timeout,
    )


# ---------------------------------------------------------------------
# Builder API
# ---------------------------------------------------------------------

class JobBuilder:
    def __init__(self, name: str):
        self.name = name
        self._command: str | None = None
        self._toolchain: ToolchainVersion = LATEST_STABLE
        self._components: set[str] = set()
        self._policy = FailPolicy.HARD_FAIL
        self._title: str | None = None
        self._env: dict[str, str] = {}
        self._cwd: str | None = None
        self._timeout: float | None = None

    def run(self, command: str, cwd: str | None = None):
        self._command = command
        self._cwd = cwd
        return self

    def on_toolchain(self, toolchain: Toolchain):
        self._toolchain = _toolchain(toolchain)
        return self

    def with_components(self, *components: str):
        self._components.update(components)
        return self

    def with_env(self, **env):
        # force values to str for env compatibility
        self._env.update({k: str(v) for k, v in env.items()})
        return self

    def titled(self, title: str):
        self._title = title
        return self

    def advisory(self, enabled: bool = True):
        self._policy = FailPolicy.ADVISORY if enabled else FailPolicy.HARD_FAIL
        return self

    def timeout(self, seconds: float | None):
        self._timeout = seconds
        return self

    def build(self) -> JobSpec:
        if not self._command:
            raise ValueError(f"Job '{self.name}' has no command")
        return JobSpec(
            name=self.name,
            command=self._command,
            toolchain=self._toolchain,
            required_components=frozenset(self._components),
            fail_policy=self._policy,
            title=self._title,
            env=self._env,
            cwd=self._cwd,
            timeout=self._timeout,
        )


def build(name: str) -> JobBuilder:
    """Convenience: build('test').run('cargo test').build()"""
    return JobBuilder(name)


# ---------------------------------------------------------------------
# Matrix
# ---------------------------------------------------------------------

class Matrix:
    """
    Minimal matrix expander.

    Example:
        matrix("rust", ["1.39.0", "stable"]).jobs(
            lambda v: job(f"build-{v}", "cargo build", toolchain=v)
        )
    """
    def __init__(self, key: str, values: Iterable[Any]):
        self.key = key
        self.values = list(values)

    def jobs(self, builder: Callable[[Any], JobSpec]) -> List[JobSpec]:
        return [builder(v) for v in self.values]


def matrix(key: str, values: Iterable[Any]) -> Matrix:
    return Matrix(key, values)


# ---------------------------------------------------------------------
# Pipeline helper (single-file story)
# ---------------------------------------------------------------------

def pipeline(
    name: str,
    *jobs: Union[JobSpec, Sequence[JobSpec]],
    on: Iterable[Union[EventKind, str]] = (EventKind.PUSH, EventKind.PULL_REQUEST),
    branches: Optional[Iterable[str]] = None,
) -> PipelineDefinition:
    """
    Pipeline definition helper. Matrix expansions may be passed as lists.

        from verifyci.dsl import pipeline, job, pinned

        def define_pipeline():
            return pipeline(
                "build",
                job("msrv_build", "cargo build", toolchain=pinned("1.39.0")),
                job("test", "cargo test"),
            )
    """
    flat: List[JobSpec] = []
    for j in jobs:
        if isinstance(j, JobSpec):
            flat.append(j)
        else:
            flat.extend(j)
    triggers = TriggerConditions(
        events=frozenset(EventKind(e) for e in on),
        branches=tuple(branches) if branches is not None else None,
    )
    return PipelineDefinition(name=name, jobs=tuple(flat), triggers=triggers)
