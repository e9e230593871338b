# git.py
# Small, focused wrapper around the Git CLI.
# The CLI uses it to fill in trigger defaults (ref, sha) and the run header;
# the orchestrator itself never looks inside the checkout.

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import Optional


def _git(args: list[str], cwd: Optional[str | Path] = None) -> str:
    """
    Execute a git command and return its stdout as a clean string.

    Raises subprocess.CalledProcessError on a non-zero exit and
    FileNotFoundError when git is not installed.
    """
    out = subprocess.check_output(
        ["git", *args],
        cwd=cwd,
        text=True,
        stderr=subprocess.DEVNULL,
    )
    return out.strip()


def head_sha(cwd: Optional[str | Path] = None) -> str:
    """Full SHA of HEAD, recorded in the trigger metadata for provenance."""
    return _git(["rev-parse", "HEAD"], cwd=cwd)


def current_ref(cwd: Optional[str | Path] = None) -> str:
    """
    Full ref of the checked out branch, e.g. refs/heads/main.

    Falls back to the HEAD sha on a detached head.
    """
    ref = _git(["rev-parse", "--symbolic-full-name", "HEAD"], cwd=cwd)
    if not ref or ref == "HEAD":
        return head_sha(cwd=cwd)
    return ref


def remote_url(remote: str = "origin", cwd: Optional[str | Path] = None) -> str:
    return _git(["remote", "get-url", remote], cwd=cwd)


def repo_name(cwd: Optional[str | Path] = None) -> str:
    """Repository name for display: remote basename, else the directory name."""
    try:
        url = remote_url(cwd=cwd)
        return url.rstrip("/").split("/")[-1].removesuffix(".git")
    except (subprocess.CalledProcessError, FileNotFoundError):
        return Path(cwd or ".").resolve().name
