# executor.py
from __future__ import annotations

import os
import signal
import subprocess
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional, Sequence

from . import settings
from .errors import ExecutionError, JobCancelled, JobTimeout
from .log import get_logger

logger = get_logger("verifyci.executor")

# POSIX shells report "cannot execute" / "command not found" with these
SHELL_LAUNCH_CODES = {126: "command not executable", 127: "command not found"}


@dataclass(frozen=True)
class CommandOutcome:
    exit_code: int
    log: bytes


class CommandExecutor:
    """Run one shell command inside a provisioned environment."""

    def execute(
        self,
        command: str,
        *,
        cwd: Path,
        env: Mapping[str, str],
        timeout: float | None = None,
        cancel: threading.Event | None = None,
    ) -> CommandOutcome:
        raise NotImplementedError


class SubprocessExecutor(CommandExecutor):
    """
    Executes through the shell, stdout+stderr merged into one log.

    The process is polled so a cancel event or timeout can stop it:
    terminate first, kill after `grace` seconds.
    """

    def __init__(
        self,
        *,
        poll_interval: float = 0.1,
        grace: float = 5.0,
        max_log_bytes: int | None = None,
    ):
        self.poll_interval = poll_interval
        self.grace = grace
        self.max_log_bytes = max_log_bytes if max_log_bytes is not None else settings.MAX_LOG_BYTES

    def _tail(self, data: bytes | None) -> bytes:
        data = data or b""
        if self.max_log_bytes and len(data) > self.max_log_bytes:
            return data[-self.max_log_bytes:]
        return data

    def _signal(self, proc: subprocess.Popen, sig: int) -> None:
        # the shell runs in its own session, signal the whole group
        if os.name == "posix":
            try:
                os.killpg(proc.pid, sig)
            except ProcessLookupError:
                pass
            return
        if sig == signal.SIGTERM:
            proc.terminate()
        else:
            proc.kill()

    def _stop(self, proc: subprocess.Popen, chunks: list[bytes]) -> None:
        self._signal(proc, signal.SIGTERM)
        try:
            out, _ = proc.communicate(timeout=self.grace)
        except subprocess.TimeoutExpired:
            self._signal(proc, getattr(signal, "SIGKILL", signal.SIGTERM))
            out, _ = proc.communicate()
        if out:
            chunks.append(out)

    def _spawn(self, args, *, cwd: Path | None, env: Mapping[str, str], shell: bool) -> subprocess.Popen:
        proc = subprocess.Popen(
            args,
            shell=shell,
            cwd=str(cwd) if cwd is not None else None,
            env=dict(env),
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            start_new_session=(os.name == "posix"),
        )
        logger.debug("started pid=%s: %s", proc.pid, args)
        return proc

    def _wait(
        self,
        proc: subprocess.Popen,
        *,
        timeout: float | None,
        cancel: threading.Event | None,
    ) -> bytes:
        """Collect output until exit; JobCancelled / JobTimeout stop the process group."""
        deadline: Optional[float] = time.monotonic() + timeout if timeout else None
        chunks: list[bytes] = []

        while True:
            if cancel is not None and cancel.is_set():
                self._stop(proc, chunks)
                raise JobCancelled(log=self._tail(b"".join(chunks)))

            wait = self.poll_interval
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    self._stop(proc, chunks)
                    raise JobTimeout(timeout, log=self._tail(b"".join(chunks)))
                wait = min(wait, remaining)

            try:
                # retrying communicate() after TimeoutExpired loses no output
                out, _ = proc.communicate(timeout=wait)
            except subprocess.TimeoutExpired:
                continue
            if out:
                chunks.append(out)
            return self._tail(b"".join(chunks))

    def run(
        self,
        argv: Sequence[str],
        *,
        env: Mapping[str, str],
        cwd: Path | None = None,
        timeout: float | None = None,
        cancel: threading.Event | None = None,
    ) -> CommandOutcome:
        """
        Run an argv without a shell and with exactly `env`.

        Used for tool invocations (e.g. rustup) rather than job commands, so
        launch errors surface as the OSError from Popen.
        """
        proc = self._spawn(list(argv), cwd=cwd, env=env, shell=False)
        log = self._wait(proc, timeout=timeout, cancel=cancel)
        return CommandOutcome(exit_code=proc.returncode, log=log)

    def execute(
        self,
        command: str,
        *,
        cwd: Path,
        env: Mapping[str, str],
        timeout: float | None = None,
        cancel: threading.Event | None = None,
    ) -> CommandOutcome:
        cwd = Path(cwd)
        if not cwd.is_dir():
            raise ExecutionError(f"cwd not found: {cwd}", cwd=str(cwd))

        full_env = os.environ.copy()
        full_env.update(env)

        try:
            proc = self._spawn(command, cwd=cwd, env=full_env, shell=True)
        except OSError as e:
            raise ExecutionError(f"could not launch command: {e}", cmd=command) from e

        log = self._wait(proc, timeout=timeout, cancel=cancel)
        code = proc.returncode
        if code in SHELL_LAUNCH_CODES:
            raise ExecutionError(SHELL_LAUNCH_CODES[code], log=log, cmd=command, exit_code=code)
        return CommandOutcome(exit_code=code, log=log)
