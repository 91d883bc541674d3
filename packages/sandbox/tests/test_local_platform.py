"""Tests for LocalPlatform against a temporary directory."""

from __future__ import annotations

import shutil

import pytest

from reviewbox_sandbox.errors import ExecutionTimeout, PlatformError, SnapshotInUse
from reviewbox_sandbox.local import LocalPlatform
from reviewbox_sandbox.settings import SandboxSettings
from reviewbox_sandbox.store import EnvironmentStore

pytestmark = pytest.mark.skipif(shutil.which("bash") is None, reason="LocalPlatform needs bash")


@pytest.fixture
def local(tmp_path):
    return LocalPlatform(tmp_path / "platform")


def _seed_image(local: LocalPlatform, slug: str = "base-snap") -> None:
    local.create_volume("build", "ord", "1GB", "builtin:debian-13")
    session = local.create_session("build", "ord", "1GiB", "5m")
    local.execute(session, "mkdir -p data/repo && echo hello > data/repo/README.md")
    local.kill_session(session.id)
    local.snapshot_volume("build", slug)


class TestVolumes:
    def test_builtin_volume_starts_empty(self, local):
        volume = local.create_volume("v1", "ord", "1GB", "builtin:debian-13")
        assert volume.parent is None
        assert list((local.root / "volumes" / "v1").iterdir()) == []
        assert local.get_volume("v1") == volume

    def test_duplicate_volume_rejected(self, local):
        local.create_volume("v1", "ord", "1GB", "builtin:debian-13")
        with pytest.raises(PlatformError) as exc:
            local.create_volume("v1", "ord", "1GB", "builtin:debian-13")
        assert exc.value.status == 409

    def test_fork_copies_snapshot_without_touching_it(self, local):
        _seed_image(local)
        fork = local.create_volume("review-tmp-1", "ord", "1GB", "base-snap")
        session = local.create_session(fork.slug, "ord", "1GiB", "5m")

        local.execute(session, "echo changed > data/repo/README.md")

        assert local.read_file(session, "data/repo/README.md") == "changed\n"
        assert (local.root / "snapshots" / "base-snap" / "data" / "repo" / "README.md").read_text() == "hello\n"
        assert fork.parent == "base-snap"

    def test_session_on_snapshot_leaves_snapshot_untouched(self, local):
        _seed_image(local)
        snapshot_readme = local.root / "snapshots" / "base-snap" / "data" / "repo" / "README.md"
        session = local.create_session("base-snap", "ord", "1GiB", "5m")

        local.execute(session, "echo changed > data/repo/README.md && touch data/repo/f.txt")

        assert local.read_file(session, "data/repo/README.md") == "changed\n"
        assert snapshot_readme.read_text() == "hello\n"
        assert not (snapshot_readme.parent / "f.txt").exists()

        local.kill_session(session.id)
        assert list((local.root / "scratch").iterdir()) == []
        fresh = local.create_session("base-snap", "ord", "1GiB", "5m")
        assert local.read_file(fresh, "data/repo/README.md") == "hello\n"

    def test_list_volumes_filters_by_search(self, local):
        local.create_volume("review-tmp-1", "ord", "1GB", "builtin:debian-13")
        local.create_volume("review-base", "ord", "1GB", "builtin:debian-13")
        assert [v.slug for v in local.list_volumes(search="review-tmp")] == ["review-tmp-1"]

    def test_volume_in_use_cannot_be_deleted(self, local):
        local.create_volume("v1", "ord", "1GB", "builtin:debian-13")
        session = local.create_session("v1", "ord", "1GiB", "5m")
        with pytest.raises(PlatformError, match="live session"):
            local.delete_volume("v1")
        local.kill_session(session.id)
        local.delete_volume("v1")
        assert local.get_volume("v1") is None


class TestSnapshots:
    def test_snapshot_with_dependents_is_in_use(self, local):
        _seed_image(local)
        local.create_volume("review-tmp-1", "ord", "1GB", "base-snap")

        with pytest.raises(SnapshotInUse):
            local.delete_snapshot("base-snap")

        local.delete_volume("review-tmp-1")
        local.delete_snapshot("base-snap")
        assert local.get_snapshot("base-snap") is None

    def test_missing_snapshot_is_404(self, local):
        with pytest.raises(PlatformError) as exc:
            local.delete_snapshot("nope")
        assert exc.value.status == 404


class TestSessions:
    def test_execute_captures_exit_code_and_output(self, local):
        local.create_volume("v1", "ord", "1GB", "builtin:debian-13")
        session = local.create_session("v1", "ord", "1GiB", "5m")

        result = local.execute(session, "echo out; echo err >&2; exit 3")

        assert result.exit_code == 3
        assert "out" in result.output and "err" in result.output

    def test_timeout_raises_execution_timeout(self, local):
        local.create_volume("v1", "ord", "1GB", "builtin:debian-13")
        session = local.create_session("v1", "ord", "1GiB", "5m")
        with pytest.raises(ExecutionTimeout):
            local.execute(session, "sleep 5", timeout=0.2)

    def test_killed_session_stops_responding(self, local):
        local.create_volume("v1", "ord", "1GB", "builtin:debian-13")
        session = local.create_session("v1", "ord", "1GiB", "5m")
        local.kill_session(session.id)
        with pytest.raises(ExecutionTimeout):
            local.execute(session, "true")

    def test_list_sessions_by_label(self, local):
        local.create_volume("v1", "ord", "1GB", "builtin:debian-13")
        a = local.create_session("v1", "ord", "1GiB", "5m", labels={"job": "refresh-image"})
        local.create_session("v1", "ord", "1GiB", "5m")
        assert [s.id for s in local.list_sessions(labels={"job": "refresh-image"})] == [a.id]

    def test_read_file_cannot_escape_root(self, local):
        local.create_volume("v1", "ord", "1GB", "builtin:debian-13")
        session = local.create_session("v1", "ord", "1GiB", "5m")
        with pytest.raises(PermissionError):
            local.read_file(session, "../../../etc/passwd")

    def test_unknown_root_is_rejected(self, local):
        with pytest.raises(PlatformError):
            local.create_session("nope", "ord", "1GiB", "5m")


def test_store_round_trip_on_local_platform(local):
    """Fork, use and destroy a fork through the store, as a review run would."""
    _seed_image(local, slug="review-base-snapshot")
    store = EnvironmentStore(local, SandboxSettings(mount_path="data/repo"), clock=lambda: 2.0)

    fork = store.fork(store.base_image())
    assert fork.slug == "review-tmp-2000"
    assert store.destroy(fork).ok is True
    assert local.list_volumes(search="review-tmp") == []
