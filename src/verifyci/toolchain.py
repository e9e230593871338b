# toolchain.py
from __future__ import annotations

import os
import platform
import re
import shutil
import subprocess
import tempfile
import threading
import tomllib
import urllib.error
import urllib.request
from pathlib import Path
from typing import Callable, Dict, Iterable, Optional

from . import settings
from .errors import InstallFailure, JobCancelled, JobTimeout, MissingComponent, ProvisioningError, UnresolvableVersion
from .executor import SubprocessExecutor
from .log import get_logger
from .model import ToolchainVersion, VersionKind

logger = get_logger("verifyci.toolchain")

# concrete release numbers, as opposed to channel names like "stable"
_RELEASE = re.compile(r"(\d+\.\d+\.\d+)")


# ---------------------------------------------------------------------
# Toolchain sources (the external collaborator)
# ---------------------------------------------------------------------

class ToolchainSource:
    """
    Where toolchains come from.

    resolve() turns a selector into a concrete version, install() makes that
    version (plus components) usable from a job's scratch directory and
    returns the env overrides that select it.
    """

    def resolve(self, selector: ToolchainVersion) -> str:
        raise NotImplementedError

    def has_component(self, version: str, component: str) -> bool:
        raise NotImplementedError

    def install(
        self,
        version: str,
        components: frozenset[str],
        scratch: Path,
        *,
        timeout: float | None = None,
        cancel: threading.Event | None = None,
    ) -> Dict[str, str]:
        raise NotImplementedError

    def release(self, version: str, scratch: Path) -> None:
        pass

    def reset(self) -> None:
        """Forget anything that may change between runs (e.g. what "stable" is)."""


_TRIPLES = {
    ("Linux", "x86_64"): "x86_64-unknown-linux-gnu",
    ("Linux", "aarch64"): "aarch64-unknown-linux-gnu",
    ("Darwin", "x86_64"): "x86_64-apple-darwin",
    ("Darwin", "arm64"): "aarch64-apple-darwin",
    ("Windows", "AMD64"): "x86_64-pc-windows-msvc",
}


def host_triple() -> str:
    if settings.HOST_TRIPLE:
        return settings.HOST_TRIPLE
    return _TRIPLES.get((platform.system(), platform.machine()), "x86_64-unknown-linux-gnu")


def _fetch_url(url: str) -> bytes:
    req = urllib.request.Request(url, method="GET")
    with urllib.request.urlopen(req, timeout=60) as response:
        return response.read()


class RustupSource(ToolchainSource):
    """
    Rust toolchains via the channel manifests + rustup.

    Equivalent of actions-rs/toolchain with `profile: minimal`:
      - versions resolve through channel-rust-<channel>.toml
      - components are checked against the manifest for the host triple
      - install runs `rustup toolchain install` and binds the job to it via
        RUSTUP_TOOLCHAIN, with a private CARGO_TARGET_DIR so builds never
        write into the checkout
    """

    def __init__(
        self,
        *,
        dist_url: str | None = None,
        triple: str | None = None,
        profile: str = "minimal",
        isolate_home: bool = False,
        fetch: Callable[[str], bytes] = _fetch_url,
        rustup: str = "rustup",
        runner: SubprocessExecutor | None = None,
    ):
        self.dist_url = (dist_url or settings.RUST_DIST_URL).rstrip("/")
        self.triple = triple or host_triple()
        self.profile = profile
        self.isolate_home = isolate_home
        self.rustup = rustup
        self.runner = runner or SubprocessExecutor()
        self._fetch = fetch
        self._manifests: Dict[str, dict] = {}
        self._lock = threading.Lock()

    def reset(self) -> None:
        # channel manifests move with every release, concrete versions never do
        with self._lock:
            for key in [k for k in self._manifests if not _RELEASE.fullmatch(k)]:
                del self._manifests[key]

    def _manifest(self, channel: str) -> dict:
        with self._lock:
            if channel in self._manifests:
                return self._manifests[channel]

        url = f"{self.dist_url}/channel-rust-{channel}.toml"
        logger.debug("fetching manifest %s", url)
        try:
            raw = self._fetch(url)
        except urllib.error.HTTPError as e:
            if e.code == 404:
                raise UnresolvableVersion(channel, reason="no such release")
            raise UnresolvableVersion(channel, reason=f"HTTP {e.code} {e.reason}")
        except urllib.error.URLError as e:
            raise UnresolvableVersion(channel, reason=f"network error: {e.reason}")
        except OSError as e:
            # read timeouts and resets surface after urlopen succeeded
            raise UnresolvableVersion(channel, reason=f"network error: {e}")

        try:
            manifest = tomllib.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, tomllib.TOMLDecodeError) as e:
            raise UnresolvableVersion(channel, reason=f"invalid manifest: {e}")

        with self._lock:
            self._manifests[channel] = manifest
        return manifest

    def resolve(self, selector: ToolchainVersion) -> str:
        channel = "stable" if selector.kind is VersionKind.LATEST_STABLE else selector.version
        manifest = self._manifest(channel)
        raw = manifest.get("pkg", {}).get("rustc", {}).get("version", "")
        # "1.39.0 (4560ea788 2019-11-04)"
        m = _RELEASE.match(raw)
        if not m:
            raise UnresolvableVersion(channel, reason="manifest has no rustc version")
        version = m.group(1)
        # later lookups by concrete version reuse the same manifest
        with self._lock:
            self._manifests.setdefault(version, manifest)
        return version

    def has_component(self, version: str, component: str) -> bool:
        manifest = self._manifest(version)
        name = manifest.get("renames", {}).get(component, {}).get("to", component)
        targets = manifest.get("pkg", {}).get(name, {}).get("target", {})
        for triple in (self.triple, "*"):
            if targets.get(triple, {}).get("available"):
                return True
        return False

    def install(
        self,
        version: str,
        components: frozenset[str],
        scratch: Path,
        *,
        timeout: float | None = None,
        cancel: threading.Event | None = None,
    ) -> Dict[str, str]:
        env: Dict[str, str] = {
            "RUSTUP_TOOLCHAIN": version,
            "CARGO_TARGET_DIR": str(scratch / "target"),
        }
        if self.isolate_home:
            env["RUSTUP_HOME"] = str(scratch / "rustup")
            env["CARGO_HOME"] = str(scratch / "cargo")

        cmd = [self.rustup, "toolchain", "install", version, "--profile", self.profile]
        for c in sorted(components):
            cmd.extend(["--component", c])

        proc_env = os.environ.copy()
        proc_env.update(env)
        proc_env.pop("RUSTUP_TOOLCHAIN", None)
        logger.info("installing toolchain %s (%s)", version, ", ".join(sorted(components)) or "no components")
        # JobCancelled / JobTimeout pass through: the job, not the install, is over
        try:
            outcome = self.runner.run(cmd, env=proc_env, timeout=timeout, cancel=cancel)
        except FileNotFoundError:
            raise InstallFailure(version, f"{self.rustup} not found, install rustup or fix PATH")
        if outcome.exit_code != 0:
            raise InstallFailure(version, outcome.log.decode("utf-8", errors="replace")[-2000:].strip())
        return env


def _tool_version(tool: str) -> Optional[str]:
    """Best-effort version discovery for a binary on PATH."""
    for flag in ("--version", "-V", "version"):
        try:
            completed = subprocess.run([tool, flag], text=True, capture_output=True, check=False)
        except OSError:
            return None
        text = (completed.stdout or "").strip() or (completed.stderr or "").strip()
        if completed.returncode == 0 and text:
            m = re.search(r"(\d+\.\d+(?:\.\d+)?)", text)
            if m:
                return m.group(1)
    return None


COMPONENT_BINARIES = {
    "rustfmt": "rustfmt",
    "clippy": "cargo-clippy",
}


class HostToolchainSource(ToolchainSource):
    """
    Use whatever is already installed on the host.

    Latest stable resolves to the host version; a pinned version only
    resolves if the host happens to have exactly that version.
    """

    def __init__(self, tool: str = "cargo", *, scratch_dirs: Dict[str, str] | None = None):
        self.tool = tool
        self.scratch_dirs = {"CARGO_TARGET_DIR": "target"} if scratch_dirs is None else dict(scratch_dirs)

    def resolve(self, selector: ToolchainVersion) -> str:
        version = _tool_version(self.tool)
        if version is None:
            raise UnresolvableVersion(str(selector), reason=f"{self.tool} not found on PATH")
        if selector.kind is VersionKind.PINNED and selector.version != version:
            raise UnresolvableVersion(str(selector), reason=f"host has {self.tool} {version}")
        return version

    def has_component(self, version: str, component: str) -> bool:
        return shutil.which(COMPONENT_BINARIES.get(component, component)) is not None

    def install(
        self,
        version: str,
        components: frozenset[str],
        scratch: Path,
        *,
        timeout: float | None = None,
        cancel: threading.Event | None = None,
    ) -> Dict[str, str]:
        return {var: str(scratch / sub) for var, sub in self.scratch_dirs.items()}


# ---------------------------------------------------------------------
# Provisioned environments
# ---------------------------------------------------------------------

class ToolchainEnvironment:
    """
    A provisioned toolchain bound to exactly one job execution.

    Use as a context manager; release() runs on every exit path and is
    safe to call more than once.
    """

    def __init__(
        self,
        source: ToolchainSource,
        version: str,
        components: frozenset[str],
        scratch: Path,
        env: Dict[str, str],
    ):
        self.source = source
        self.version = version
        self.components = components
        self.scratch = scratch
        self.env = dict(env)
        self.env.setdefault("VERIFYCI_TOOLCHAIN", version)
        self.env.setdefault("VERIFYCI_SCRATCH", str(scratch))
        self.released = False
        self._lock = threading.Lock()

    def release(self) -> None:
        with self._lock:
            if self.released:
                return
            self.released = True
        try:
            self.source.release(self.version, self.scratch)
        finally:
            shutil.rmtree(self.scratch, ignore_errors=True)
            logger.debug("released toolchain %s (%s)", self.version, self.scratch)

    def __enter__(self) -> ToolchainEnvironment:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.release()

    def __repr__(self) -> str:
        state = "released" if self.released else "active"
        return f"<ToolchainEnvironment {self.version} {sorted(self.components)} {state}>"


class ToolchainProvisioner:
    """
    provision(selector, components) -> ToolchainEnvironment

    Resolution is memoized until reset(), so "latest stable" means the same
    concrete version for every job of one run.
    """

    def __init__(self, source: ToolchainSource, *, scratch_root: str | Path | None = None):
        self.source = source
        root = scratch_root if scratch_root is not None else settings.SCRATCH_ROOT
        self.scratch_root = Path(root) if root else None
        # a failed resolution is remembered too, so siblings agree on the answer
        self._resolved: Dict[ToolchainVersion, str | ProvisioningError] = {}
        self._lock = threading.Lock()

    def reset(self) -> None:
        with self._lock:
            self._resolved.clear()
            self.source.reset()

    def resolve(self, selector: ToolchainVersion) -> str:
        # held across the source call so concurrent jobs never see two answers
        with self._lock:
            if selector not in self._resolved:
                try:
                    self._resolved[selector] = self.source.resolve(selector)
                except ProvisioningError as e:
                    self._resolved[selector] = e
            answer = self._resolved[selector]
        if isinstance(answer, ProvisioningError):
            raise answer
        return answer

    def provision(
        self,
        selector: ToolchainVersion,
        components: Iterable[str] = (),
        *,
        job: str | None = None,
        timeout: float | None = None,
        cancel: threading.Event | None = None,
    ) -> ToolchainEnvironment:
        """
        Resolve, check components, then install into a fresh scratch dir.

        Raises ProvisioningError, or JobCancelled / JobTimeout when the
        install is interrupted. Scratch is removed on every failure.
        """
        components = frozenset(components)
        version = self.resolve(selector)

        for c in sorted(components):
            if not self.source.has_component(version, c):
                raise MissingComponent(c, version)

        if self.scratch_root is not None:
            self.scratch_root.mkdir(parents=True, exist_ok=True)
        prefix = f"verifyci-{job}-" if job else "verifyci-"
        scratch = Path(tempfile.mkdtemp(prefix=prefix, dir=self.scratch_root))

        try:
            env = self.source.install(version, components, scratch, timeout=timeout, cancel=cancel)
        except (ProvisioningError, JobCancelled, JobTimeout):
            shutil.rmtree(scratch, ignore_errors=True)
            raise
        except Exception as e:
            shutil.rmtree(scratch, ignore_errors=True)
            raise InstallFailure(version, str(e)) from e

        logger.info("provisioned %s for %s", version, job or "job")
        return ToolchainEnvironment(self.source, version, components, scratch, env)
