# settings.py
from __future__ import annotations

import os

LOG_LEVEL = os.environ.get("VERIFYCI_LOG_LEVEL", "WARNING")
JOB_TIMEOUT = float(os.environ["VERIFYCI_JOB_TIMEOUT"]) if os.environ.get("VERIFYCI_JOB_TIMEOUT") else None
SCRATCH_ROOT = os.environ.get("VERIFYCI_SCRATCH_ROOT") or None
RUST_DIST_URL = os.environ.get("VERIFYCI_RUST_DIST_URL", "https://static.rust-lang.org/dist")
HOST_TRIPLE = os.environ.get("VERIFYCI_HOST_TRIPLE") or None
MAX_LOG_BYTES = int(os.environ.get("VERIFYCI_MAX_LOG_BYTES", str(1024 * 1024)))
