# conftest.py
from __future__ import annotations

import pytest

from verifyci.testing import FakeSource
from verifyci.toolchain import ToolchainProvisioner


@pytest.fixture
def fake_source():
    return FakeSource(
        components={"1.80.0": {"rustfmt", "clippy"}, "1.39.0": {"rustfmt"}},
    )


@pytest.fixture
def scratch_root(tmp_path):
    root = tmp_path / "scratch"
    root.mkdir()
    return root


@pytest.fixture
def provisioner(fake_source, scratch_root):
    return ToolchainProvisioner(fake_source, scratch_root=scratch_root)


@pytest.fixture
def checkout(tmp_path):
    root = tmp_path / "checkout"
    root.mkdir()
    (root / "Cargo.toml").write_text('[package]\nname = "demo"\n')
    return root
