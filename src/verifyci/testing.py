# testing.py
"""In-memory collaborators for exercising the orchestrator without rustup or real commands."""
from __future__ import annotations

import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Tuple

from .errors import InstallFailure, JobCancelled, UnresolvableVersion
from .executor import CommandExecutor, CommandOutcome
from .model import ToolchainVersion, VersionKind
from .toolchain import ToolchainSource


class FakeSource(ToolchainSource):
    """In-memory toolchain source that records installs/releases."""

    def __init__(
        self,
        stable: str | Iterable[str] = "1.80.0",
        pinned: Iterable[str] = ("1.39.0",),
        components: Dict[str, Iterable[str]] | None = None,
        fail_install: Iterable[str] = (),
        install_delay: float = 0.0,
    ):
        # an iterable of stable versions simulates drift between resolutions
        self._stable = iter([stable]) if isinstance(stable, str) else iter(stable)
        self._last_stable: str | None = None
        self.pinned = set(pinned)
        self.components = {v: set(c) for v, c in (components or {}).items()}
        self.fail_install = set(fail_install)
        self.install_delay = install_delay
        self.resolve_calls = 0
        self.installs: List[Tuple[str, frozenset, Path]] = []
        self.releases: List[Tuple[str, Path]] = []
        self._lock = threading.Lock()

    def resolve(self, selector: ToolchainVersion) -> str:
        with self._lock:
            self.resolve_calls += 1
            if selector.kind is VersionKind.LATEST_STABLE:
                self._last_stable = next(self._stable, self._last_stable)
                return self._last_stable
        if selector.version not in self.pinned:
            raise UnresolvableVersion(str(selector), reason="unknown version")
        return selector.version

    def has_component(self, version: str, component: str) -> bool:
        return component in self.components.get(version, set())

    def install(self, version: str, components: frozenset, scratch: Path, *, timeout=None, cancel=None) -> Dict[str, str]:
        with self._lock:
            self.installs.append((version, components, scratch))
        # a slow download that still honors cancellation
        if self.install_delay and (cancel or threading.Event()).wait(self.install_delay):
            raise JobCancelled(log=b"downloading")
        if version in self.fail_install:
            raise InstallFailure(version, "disk full")
        return {"FAKE_TOOLCHAIN": version}

    def release(self, version: str, scratch: Path) -> None:
        with self._lock:
            self.releases.append((version, scratch))


@dataclass
class Script:
    exit_code: int = 0
    delay: float = 0.0
    output: bytes = b""
    raises: Exception | None = None


class ScriptedExecutor(CommandExecutor):
    """Executor whose commands finish after a scripted delay, cancel-aware."""

    def __init__(self, scripts: Dict[str, Script] | None = None):
        self.scripts = scripts or {}
        self.calls: List[dict] = []
        self.started = threading.Event()
        self._lock = threading.Lock()

    def execute(self, command, *, cwd, env, timeout=None, cancel=None):
        script = self.scripts.get(command, Script())
        with self._lock:
            self.calls.append({"command": command, "cwd": Path(cwd), "env": dict(env), "timeout": timeout})
        self.started.set()
        if script.delay:
            waiter = cancel or threading.Event()
            if waiter.wait(script.delay):
                raise JobCancelled(log=b"partial")
        if script.raises is not None:
            raise script.raises
        return CommandOutcome(exit_code=script.exit_code, log=script.output)

    @property
    def commands(self) -> List[str]:
        return [c["command"] for c in self.calls]
