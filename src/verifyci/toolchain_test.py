from __future__ import annotations

import io
import sys
import threading
import time
import urllib.error

import pytest

from verifyci.errors import InstallFailure, JobCancelled, MissingComponent, ProvisioningError, UnresolvableVersion
from verifyci.executor import SubprocessExecutor
from verifyci.model import LATEST_STABLE, pinned
from verifyci.testing import FakeSource
from verifyci.toolchain import HostToolchainSource, RustupSource, ToolchainProvisioner


# ---------------------------------------------------------------------
# ToolchainProvisioner
# ---------------------------------------------------------------------

def test_provision_returns_isolated_environment(provisioner, fake_source, scratch_root):
    env = provisioner.provision(pinned("1.39.0"), {"rustfmt"}, job="msrv_build")
    assert env.version == "1.39.0"
    assert env.components == frozenset({"rustfmt"})
    assert env.scratch.parent == scratch_root
    assert env.scratch.name.startswith("verifyci-msrv_build-")
    assert env.env["FAKE_TOOLCHAIN"] == "1.39.0"
    assert env.env["VERIFYCI_TOOLCHAIN"] == "1.39.0"
    assert env.env["VERIFYCI_SCRATCH"] == str(env.scratch)
    env.release()


def test_each_provision_gets_its_own_scratch(provisioner):
    a = provisioner.provision(LATEST_STABLE, job="a")
    b = provisioner.provision(LATEST_STABLE, job="b")
    try:
        assert a.scratch != b.scratch
        assert a.scratch.is_dir() and b.scratch.is_dir()
    finally:
        a.release()
        b.release()


def test_release_is_idempotent_and_removes_scratch(provisioner, fake_source):
    with provisioner.provision(LATEST_STABLE) as env:
        (env.scratch / "target").mkdir()
    assert env.released
    assert not env.scratch.exists()
    env.release()
    assert len(fake_source.releases) == 1


def test_latest_stable_is_memoized_until_reset(scratch_root):
    source = FakeSource(stable=["1.80.0", "1.81.0"])
    prov = ToolchainProvisioner(source, scratch_root=scratch_root)

    assert prov.resolve(LATEST_STABLE) == "1.80.0"
    assert prov.resolve(LATEST_STABLE) == "1.80.0"
    assert source.resolve_calls == 1

    # a later run may legitimately see a newer stable
    prov.reset()
    assert prov.resolve(LATEST_STABLE) == "1.81.0"


def test_failed_resolution_holds_for_the_whole_run(scratch_root):
    class Flaky(FakeSource):
        def resolve(self, selector):
            if self.resolve_calls == 0:
                self.resolve_calls += 1
                raise UnresolvableVersion("stable", reason="network error: timed out")
            return super().resolve(selector)

    source = Flaky()
    prov = ToolchainProvisioner(source, scratch_root=scratch_root)
    for _ in range(2):
        with pytest.raises(UnresolvableVersion):
            prov.provision(LATEST_STABLE)
    assert source.resolve_calls == 1

    prov.reset()
    assert prov.resolve(LATEST_STABLE) == "1.80.0"


def test_unknown_pinned_version_is_unresolvable(provisioner, fake_source):
    with pytest.raises(UnresolvableVersion) as exc:
        provisioner.provision(pinned("0.0.1"))
    assert isinstance(exc.value, ProvisioningError)
    assert fake_source.installs == []


def test_missing_component(provisioner, fake_source, scratch_root):
    with pytest.raises(MissingComponent) as exc:
        provisioner.provision(pinned("1.39.0"), {"clippy"})
    assert exc.value.details == {"component": "clippy", "version": "1.39.0"}
    assert fake_source.installs == []
    assert list(scratch_root.iterdir()) == []


def test_install_failure_cleans_up_scratch(scratch_root):
    source = FakeSource(fail_install={"1.80.0"})
    prov = ToolchainProvisioner(source, scratch_root=scratch_root)
    with pytest.raises(InstallFailure):
        prov.provision(LATEST_STABLE)
    assert list(scratch_root.iterdir()) == []


def test_unexpected_install_error_is_wrapped(scratch_root):
    class Broken(FakeSource):
        def install(self, version, components, scratch, **kw):
            raise OSError("no space left on device")

    prov = ToolchainProvisioner(Broken(), scratch_root=scratch_root)
    with pytest.raises(InstallFailure) as exc:
        prov.provision(LATEST_STABLE)
    assert "no space left" in exc.value.details["reason"]
    assert list(scratch_root.iterdir()) == []


# ---------------------------------------------------------------------
# RustupSource (manifest resolution; install is not exercised here)
# ---------------------------------------------------------------------

STABLE_MANIFEST = b"""
manifest-version = "2"
date = "2024-10-17"

[pkg.rustc]
version = "1.82.0 (f6e511eec 2024-10-15)"

[pkg.rustc.target.x86_64-unknown-linux-gnu]
available = true

[pkg.rustfmt-preview]
version = "1.8.0-stable (f6e511eec 2024-10-15)"

[pkg.rustfmt-preview.target.x86_64-unknown-linux-gnu]
available = true

[pkg.clippy-preview]
version = "0.1.82 (f6e511eec 2024-10-15)"

[pkg.clippy-preview.target.x86_64-unknown-linux-gnu]
available = false

[pkg.rust-src]
version = "1.82.0 (f6e511eec 2024-10-15)"

[pkg.rust-src.target."*"]
available = true

[renames.rustfmt]
to = "rustfmt-preview"

[renames.clippy]
to = "clippy-preview"
"""


class FakeDist:
    def __init__(self, manifests):
        self.manifests = manifests
        self.urls = []

    def __call__(self, url):
        self.urls.append(url)
        channel = url.rsplit("channel-rust-", 1)[1].removesuffix(".toml")
        if channel not in self.manifests:
            raise urllib.error.HTTPError(url, 404, "Not Found", {}, io.BytesIO(b""))
        return self.manifests[channel]


def _rustup(manifests):
    dist = FakeDist(manifests)
    return RustupSource(dist_url="https://dist.example/", triple="x86_64-unknown-linux-gnu", fetch=dist), dist


def test_rustup_resolves_stable_from_manifest():
    source, dist = _rustup({"stable": STABLE_MANIFEST})
    assert source.resolve(LATEST_STABLE) == "1.82.0"
    assert dist.urls == ["https://dist.example/channel-rust-stable.toml"]


def test_rustup_component_lookup_follows_renames_and_targets():
    source, dist = _rustup({"stable": STABLE_MANIFEST})
    version = source.resolve(LATEST_STABLE)
    assert source.has_component(version, "rustfmt")
    assert not source.has_component(version, "clippy")  # not available on this target
    assert source.has_component(version, "rust-src")    # target "*"
    assert not source.has_component(version, "miri")
    # resolved version reuses the stable manifest
    assert len(dist.urls) == 1


def test_rustup_unknown_version_is_unresolvable():
    source, _ = _rustup({})
    with pytest.raises(UnresolvableVersion) as exc:
        source.resolve(pinned("9.99.0"))
    assert exc.value.details["reason"] == "no such release"


def test_rustup_invalid_manifest():
    source, _ = _rustup({"1.39.0": b"this is = = not toml"})
    with pytest.raises(UnresolvableVersion):
        source.resolve(pinned("1.39.0"))


@pytest.mark.parametrize("error", [TimeoutError("The read operation timed out"), ConnectionResetError(104, "reset")])
def test_rustup_read_errors_are_unresolvable(error):
    def fetch(url):
        raise error

    source = RustupSource(triple="x86_64-unknown-linux-gnu", fetch=fetch)
    with pytest.raises(UnresolvableVersion) as exc:
        source.resolve(LATEST_STABLE)
    assert exc.value.details["reason"].startswith("network error")


def test_reset_picks_up_a_new_stable_release(scratch_root):
    source, dist = _rustup({"stable": STABLE_MANIFEST, "1.39.0": STABLE_MANIFEST.replace(b"1.82.0", b"1.39.0")})
    prov = ToolchainProvisioner(source, scratch_root=scratch_root)
    assert prov.resolve(LATEST_STABLE) == "1.82.0"
    assert prov.resolve(pinned("1.39.0")) == "1.39.0"

    dist.manifests["stable"] = STABLE_MANIFEST.replace(b"1.82.0", b"1.83.0")
    prov.reset()
    assert prov.resolve(LATEST_STABLE) == "1.83.0"
    assert prov.resolve(pinned("1.39.0")) == "1.39.0"
    # releases never change, only the channel is fetched again
    assert dist.urls.count("https://dist.example/channel-rust-stable.toml") == 2
    assert dist.urls.count("https://dist.example/channel-rust-1.39.0.toml") == 1


def fake_rustup(tmp_path, body):
    script = tmp_path / "rustup"
    script.write_text("#!/bin/sh\n" + body)
    script.chmod(0o755)
    return RustupSource(
        triple="x86_64-unknown-linux-gnu",
        rustup=str(script),
        fetch=lambda url: b"",
        runner=SubprocessExecutor(poll_interval=0.02, grace=1.0),
    )


def test_rustup_install_binds_toolchain(tmp_path):
    source = fake_rustup(tmp_path, 'echo "$@"\n')
    env = source.install("1.39.0", frozenset({"rustfmt"}), tmp_path)
    assert env == {"RUSTUP_TOOLCHAIN": "1.39.0", "CARGO_TARGET_DIR": str(tmp_path / "target")}


def test_rustup_install_failure_carries_output(tmp_path):
    source = fake_rustup(tmp_path, "echo 'error: toolchain 1.39.0 is not installable' >&2\nexit 1\n")
    with pytest.raises(InstallFailure) as exc:
        source.install("1.39.0", frozenset(), tmp_path)
    assert "not installable" in exc.value.details["reason"]


def test_rustup_install_stops_on_cancel(tmp_path):
    source = fake_rustup(tmp_path, "sleep 30\n")
    cancel = threading.Event()
    timer = threading.Timer(0.2, cancel.set)
    timer.start()
    start = time.monotonic()
    try:
        with pytest.raises(JobCancelled):
            source.install("1.39.0", frozenset(), tmp_path, cancel=cancel)
    finally:
        timer.cancel()
    assert time.monotonic() - start < 5


def test_rustup_missing_binary_is_install_failure(tmp_path):
    source = RustupSource(rustup=str(tmp_path / "no-rustup-here"), fetch=lambda url: b"")
    with pytest.raises(InstallFailure) as exc:
        source.install("1.39.0", frozenset(), tmp_path)
    assert "not found" in exc.value.details["reason"]


def test_provisioner_with_rustup_source_reports_missing_component(scratch_root):
    source, _ = _rustup({"stable": STABLE_MANIFEST})
    prov = ToolchainProvisioner(source, scratch_root=scratch_root)
    with pytest.raises(MissingComponent):
        prov.provision(LATEST_STABLE, {"clippy"})


# ---------------------------------------------------------------------
# HostToolchainSource
# ---------------------------------------------------------------------

def test_host_source_resolves_tool_version():
    version = "%d.%d.%d" % sys.version_info[:3]
    source = HostToolchainSource(sys.executable)
    assert source.resolve(LATEST_STABLE) == version
    assert source.resolve(pinned(version)) == version


def test_host_source_rejects_other_pins():
    source = HostToolchainSource(sys.executable)
    with pytest.raises(UnresolvableVersion):
        source.resolve(pinned("0.0.1"))


def test_host_source_missing_tool():
    source = HostToolchainSource("definitely-not-a-real-tool-xyz")
    with pytest.raises(UnresolvableVersion):
        source.resolve(LATEST_STABLE)


def test_host_source_components_are_binaries_on_path(tmp_path):
    source = HostToolchainSource(sys.executable)
    assert source.has_component("3", "sh")
    assert not source.has_component("3", "definitely-not-a-real-tool-xyz")
    assert source.install("3", frozenset(), tmp_path) == {"CARGO_TARGET_DIR": str(tmp_path / "target")}
