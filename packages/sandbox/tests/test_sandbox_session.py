"""Tests for SessionProvisioner: boot, deterministic setup, guaranteed teardown."""

from __future__ import annotations

import pytest

from reviewbox_sandbox.errors import ExecutionTimeout, PlatformError, ProvisioningError
from reviewbox_sandbox.models import CheckoutTarget, ExecResult
from reviewbox_sandbox.session import FORK_REMOTE, SessionProvisioner
from reviewbox_sandbox.settings import SandboxSettings
from reviewbox_sandbox.store import EnvironmentStore

SAME_ORIGIN = CheckoutTarget(
    head_ref="feature/x",
    base_ref="main",
    head_clone_url="https://github.com/acme/widgets.git",
    head_full_name="acme/widgets",
    base_full_name="acme/widgets",
)

FORK_ORIGIN = CheckoutTarget(
    head_ref="patch-1",
    base_ref="main",
    head_clone_url="https://github.com/someone/widgets.git",
    head_full_name="someone/widgets",
    base_full_name="acme/widgets",
)


def _provisioner(platform, **overrides):
    settings = SandboxSettings(**overrides)
    store = EnvironmentStore(platform, settings, sleep=lambda _s: None, clock=lambda: 1.0)
    return SessionProvisioner(platform, store, settings)


@pytest.fixture
def imaged(platform):
    platform.add_image()
    return platform


class TestProvision:
    def test_boots_session_on_fresh_fork(self, imaged):
        prov = _provisioner(imaged)
        with prov.provision() as session:
            assert session.root == "review-tmp-1000"
            assert imaged.volumes["review-tmp-1000"].parent == "review-base-snapshot"
            assert session.memory == "4GiB"
            assert session.timeout == "15m"

    def test_fork_and_session_torn_down_after_success(self, imaged):
        prov = _provisioner(imaged)
        with prov.provision() as session:
            session_id = session.id

        assert imaged.killed_sessions == [session_id]
        assert imaged.deleted_volumes == ["review-tmp-1000"]
        assert [c.ok for c in prov.cleanup] == [True, True]

    def test_teardown_runs_exactly_once_when_body_raises(self, imaged):
        prov = _provisioner(imaged)
        with pytest.raises(RuntimeError):
            with prov.provision():
                raise RuntimeError("agent crashed")

        assert imaged.deleted_volumes == ["review-tmp-1000"]
        assert len(imaged.killed_sessions) == 1

    def test_teardown_on_keyboard_interrupt(self, imaged):
        prov = _provisioner(imaged)
        with pytest.raises(KeyboardInterrupt):
            with prov.provision():
                raise KeyboardInterrupt

        assert imaged.deleted_volumes == ["review-tmp-1000"]

    def test_teardown_on_execution_timeout(self, imaged):
        imaged.on("sleep", ExecutionTimeout("sleep 999", 1.0))
        prov = _provisioner(imaged)
        with pytest.raises(ExecutionTimeout):
            with prov.provision() as session:
                imaged.execute(session, "sleep 999", timeout=1.0)

        assert imaged.deleted_volumes == ["review-tmp-1000"]

    def test_session_boot_failure_still_destroys_fork(self, imaged):
        imaged.fail_session_create = PlatformError("no capacity", status=503)
        prov = _provisioner(imaged)

        with pytest.raises(ProvisioningError, match="no capacity"):
            with prov.provision():
                pytest.fail("body must not run")

        assert imaged.deleted_volumes == ["review-tmp-1000"]
        assert imaged.killed_sessions == []

    def test_missing_image_fails_before_allocating_anything(self, platform):
        prov = _provisioner(platform)
        with pytest.raises(ProvisioningError):
            with prov.provision():
                pytest.fail("body must not run")
        assert platform.created_volumes == []

    def test_fork_delete_failure_is_recorded_not_raised(self, imaged):
        imaged.fail_volume_delete["review-tmp-1000"] = PlatformError("locked", status=423)
        prov = _provisioner(imaged)

        with prov.provision():
            pass

        assert [c.ok for c in prov.cleanup] == [True, False]
        assert "locked" in prov.cleanup[1].diagnostic

    def test_without_fork_boots_on_image_directly(self, imaged):
        prov = _provisioner(imaged, use_fork=False)
        with prov.provision() as session:
            assert session.root == "review-base-snapshot"
        assert imaged.created_volumes == []
        assert imaged.deleted_volumes == []


class TestSetup:
    def test_same_origin_checkout(self, imaged):
        """branch on the base repository, fetched from origin."""
        prov = _provisioner(imaged)
        with prov.provision() as session:
            result = prov.setup(session, SAME_ORIGIN)

        assert result.ready is True
        assert result.deps_installed is True
        assert not imaged.ran("git remote add")
        assert imaged.ran("git fetch origin feature/x:refs/remotes/origin/feature/x --depth 200")
        assert imaged.ran("git fetch origin main:refs/remotes/origin/main --depth 200")
        assert imaged.ran("git checkout -B feature/x origin/feature/x")
        assert imaged.deleted_volumes == ["review-tmp-1000"]

    def test_fork_origin_adds_remote(self, imaged):
        """head lives on a fork, fetched through its own remote."""
        prov = _provisioner(imaged)
        with prov.provision() as session:
            prov.setup(session, FORK_ORIGIN)

        assert imaged.ran(f"git remote add {FORK_REMOTE} https://github.com/someone/widgets.git")
        assert imaged.ran(f"git remote set-url {FORK_REMOTE} https://github.com/someone/widgets.git")
        assert imaged.ran(f"git fetch {FORK_REMOTE} patch-1:refs/remotes/{FORK_REMOTE}/patch-1 --depth 200")
        assert imaged.ran("git fetch origin main:refs/remotes/origin/main")
        assert imaged.ran(f"git checkout -B patch-1 {FORK_REMOTE}/patch-1")

    def test_both_fetches_run_in_one_joined_command(self, imaged):
        prov = _provisioner(imaged)
        with prov.provision() as session:
            prov.setup(session, SAME_ORIGIN)

        fetch = next(c for c in imaged.commands if "git fetch" in c)
        assert fetch.count("git fetch") == 2
        assert "wait $head && wait $base" in fetch

    def test_install_runs_after_checkout(self, imaged):
        prov = _provisioner(imaged)
        with prov.provision() as session:
            prov.setup(session, SAME_ORIGIN)

        checkout = next(i for i, c in enumerate(imaged.commands) if "git checkout -B" in c)
        install = next(i for i, c in enumerate(imaged.commands) if "pnpm install" in c)
        assert checkout < install
        assert "--prefer-offline" in imaged.commands[install]
        assert "NODE_OPTIONS=--max-old-space-size=2560" in imaged.commands[install]

    def test_install_heap_follows_session_memory(self, imaged):
        prov = _provisioner(imaged, memory="2GiB")
        with prov.provision() as session:
            prov.setup(session, SAME_ORIGIN)

        install = next(c for c in imaged.commands if "pnpm install" in c)
        assert "--max-old-space-size=1280" in install
        assert "--max-old-space-size=2560" not in install

    def test_branch_override(self, imaged):
        prov = _provisioner(imaged)
        with prov.provision() as session:
            prov.setup(session, SAME_ORIGIN, branch_override="hotfix")

        assert imaged.ran("git checkout -B hotfix origin/hotfix")

    def test_install_failure_degrades_instead_of_failing(self, imaged):
        """the agent still gets a session; it just learns deps are missing."""
        imaged.on("pnpm install", ExecResult(1, "ERR_PNPM_OUTDATED_LOCKFILE"))
        prov = _provisioner(imaged)
        with prov.provision() as session:
            result = prov.setup(session, SAME_ORIGIN)

        assert result.ready is True
        assert result.deps_installed is False
        assert "ERR_PNPM_OUTDATED_LOCKFILE" in result.deps_output

    def test_fetch_failure_is_fatal_and_fork_destroyed_once(self, imaged):
        imaged.on("git fetch", ExecResult(128, "fatal: couldn't find remote ref feature/x"))
        prov = _provisioner(imaged)

        with pytest.raises(ProvisioningError, match="Failed to fetch branches"):
            with prov.provision() as session:
                prov.setup(session, SAME_ORIGIN)

        assert imaged.deleted_volumes == ["review-tmp-1000"]
        assert not imaged.ran("git checkout -B")

    def test_checkout_failure_is_fatal(self, imaged):
        imaged.on("git checkout -B", ExecResult(1, "error: pathspec"))
        prov = _provisioner(imaged)

        with pytest.raises(ProvisioningError, match="Failed to checkout PR branch"):
            with prov.provision() as session:
                prov.setup(session, SAME_ORIGIN)

        assert not imaged.ran("pnpm install")
        assert imaged.deleted_volumes == ["review-tmp-1000"]
