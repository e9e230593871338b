from __future__ import annotations

import threading
import time

import pytest

from verifyci.errors import ExecutionError, JobCancelled, JobTimeout
from verifyci.executor import SubprocessExecutor


@pytest.fixture
def executor():
    return SubprocessExecutor(poll_interval=0.02, grace=1.0)


def test_zero_exit_with_merged_log(executor, tmp_path):
    out = executor.execute("echo out; echo err 1>&2", cwd=tmp_path, env={})
    assert out.exit_code == 0
    assert b"out" in out.log
    assert b"err" in out.log


def test_nonzero_exit_is_an_outcome_not_an_error(executor, tmp_path):
    out = executor.execute("echo broken; exit 1", cwd=tmp_path, env={})
    assert out.exit_code == 1
    assert out.log.strip() == b"broken"


def test_runs_in_cwd_with_env(executor, tmp_path):
    (tmp_path / "marker.txt").write_text("here")
    out = executor.execute('cat marker.txt; printf "%s" "$VERIFYCI_TOOLCHAIN"', cwd=tmp_path, env={"VERIFYCI_TOOLCHAIN": "1.39.0"})
    assert out.log == b"here1.39.0"


def test_missing_binary_is_launch_failure(executor, tmp_path):
    with pytest.raises(ExecutionError) as exc:
        executor.execute("definitely-not-a-real-tool-xyz --check", cwd=tmp_path, env={})
    assert exc.value.details["exit_code"] == 127


def test_missing_cwd_is_launch_failure(executor, tmp_path):
    with pytest.raises(ExecutionError):
        executor.execute("true", cwd=tmp_path / "nope", env={})


def test_timeout_kills_the_command(executor, tmp_path):
    start = time.monotonic()
    with pytest.raises(JobTimeout) as exc:
        executor.execute("echo started; sleep 30", cwd=tmp_path, env={}, timeout=0.3)
    assert time.monotonic() - start < 10
    assert b"started" in exc.value.log


def test_cancel_stops_a_running_command(executor, tmp_path):
    cancel = threading.Event()
    timer = threading.Timer(0.3, cancel.set)
    timer.start()
    start = time.monotonic()
    try:
        with pytest.raises(JobCancelled):
            executor.execute("sleep 30", cwd=tmp_path, env={}, cancel=cancel)
    finally:
        timer.cancel()
    assert time.monotonic() - start < 10


def test_log_keeps_the_tail(tmp_path):
    executor = SubprocessExecutor(max_log_bytes=10)
    out = executor.execute("printf 0123456789abcdef", cwd=tmp_path, env={})
    assert out.log == b"6789abcdef"
