# verifyci_workflow.py
# build pipeline for a Rust crate: MSRV build, rustfmt, tests, clippy.
# Every job is independent; run with `verifyci run --checkout path/to/crate`.
from __future__ import annotations

from verifyci.dsl import job, pipeline, pinned

MSRV = "1.39.0"


def define_pipeline():
    return pipeline(
        "build",
        job(
            "msrv_build",
            "cargo build",
            toolchain=pinned(MSRV),
            title="Verify the MSRV",
        ),
        job(
            "check_fmt",
            "cargo fmt --all -- --check",
            components=["rustfmt"],
            title="Check formatting",
        ),
        job(
            "test",
            "cargo test",
            title="Run tests",
        ),
        job(
            "lint",
            "cargo clippy -- -D warnings",
            components=["clippy"],
            title="Run lints",
        ),
        on=["push", "pull_request"],
    )
