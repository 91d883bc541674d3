"""Shared fixtures: an in-memory BasePlatform and a pull request context factory."""

from __future__ import annotations

import itertools

import pytest

from reviewbox_sandbox.base import BasePlatform
from reviewbox_sandbox.errors import ExecutionTimeout, SnapshotInUse
from reviewbox_sandbox.models import BaseImage, ExecResult, Session, Volume


class FakePlatform(BasePlatform):
    """Records every call. ``on(fragment, result)`` scripts commands containing ``fragment``.

    A result may be an ExecResult, an exception instance (raised), or a list
    of either (consumed one per matching call, last one repeats).
    """

    def __init__(self):
        self.volumes: dict[str, Volume] = {}
        self.snapshots: dict[str, BaseImage] = {}
        self.sessions: dict[str, Session] = {}
        self.files: dict[str, str] = {}
        self.commands: list[str] = []
        self.created_volumes: list[str] = []
        self.deleted_volumes: list[str] = []
        self.killed_sessions: list[str] = []
        self.snapshot_delete_attempts = 0
        self.snapshot_delete_errors: list[Exception] = []
        self.fail_volume_delete: dict[str, Exception] = {}
        self.fail_session_create: Exception | None = None
        self._rules: list[tuple[str, list]] = []
        self._ids = itertools.count(1)

    # scripting
    def on(self, fragment: str, result) -> None:
        self._rules.append((fragment, list(result) if isinstance(result, list) else [result]))

    def add_image(self, slug: str = "review-base-snapshot") -> BaseImage:
        image = BaseImage(slug=slug, region="ord", capacity="10GB")
        self.snapshots[slug] = image
        return image

    def ran(self, fragment: str) -> bool:
        return any(fragment in c for c in self.commands)

    # volumes
    def create_volume(self, slug, region, capacity, source):
        volume = Volume(slug=slug, region=region, capacity=capacity, parent=source)
        self.volumes[slug] = volume
        self.created_volumes.append(slug)
        return volume

    def get_volume(self, slug):
        return self.volumes.get(slug)

    def list_volumes(self, search=""):
        return [v for s, v in self.volumes.items() if search in s]

    def delete_volume(self, slug):
        if slug in self.fail_volume_delete:
            raise self.fail_volume_delete[slug]
        self.volumes.pop(slug, None)
        self.deleted_volumes.append(slug)

    def snapshot_volume(self, slug, snapshot_slug):
        image = BaseImage(slug=snapshot_slug, region="ord", capacity="10GB", size_bytes=1024)
        self.snapshots[snapshot_slug] = image
        return image

    # snapshots
    def get_snapshot(self, slug):
        return self.snapshots.get(slug)

    def delete_snapshot(self, slug):
        self.snapshot_delete_attempts += 1
        if self.snapshot_delete_errors:
            raise self.snapshot_delete_errors.pop(0)
        if any(v.parent == slug for v in self.volumes.values()):
            raise SnapshotInUse(f"{slug} still has dependents")
        self.snapshots.pop(slug, None)

    # sessions
    def create_session(self, root, region, memory, timeout, labels=None):
        if self.fail_session_create is not None:
            raise self.fail_session_create
        session = Session(
            id=f"sess-{next(self._ids)}", root=root, region=region, memory=memory, timeout=timeout, labels=labels or {}
        )
        self.sessions[session.id] = session
        return session

    def list_sessions(self, labels=None):
        labels = labels or {}
        return [s for s in self.sessions.values() if all(s.labels.get(k) == v for k, v in labels.items())]

    def kill_session(self, session_id):
        self.sessions.pop(session_id, None)
        self.killed_sessions.append(session_id)

    def execute(self, session, command, timeout=None):
        if session.id not in self.sessions:
            raise ExecutionTimeout(command, timeout, reason="session is gone")
        self.commands.append(command)
        for fragment, results in self._rules:
            if fragment in command:
                result = results.pop(0) if len(results) > 1 else results[0]
                if isinstance(result, Exception):
                    raise result
                return result
        return ExecResult(exit_code=0, output="")

    def read_file(self, session, path):
        if path not in self.files:
            raise FileNotFoundError(path)
        return self.files[path]


@pytest.fixture
def platform():
    return FakePlatform()


@pytest.fixture
def make_context():
    """Factory for ChangeRequestContext; keyword overrides replace defaults."""
    from reviewbox_core.models import ChangedFile, ChangeRequestContext, RepoRef

    def _make(**overrides):
        fields = dict(
            owner="acme",
            repo="widgets",
            number=42,
            title="Fix retry loop",
            author="octocat",
            html_url="https://github.com/acme/widgets/pull/42",
            head=RepoRef(
                ref="fix-retry",
                sha="a" * 40,
                full_name="acme/widgets",
                clone_url="https://github.com/acme/widgets.git",
            ),
            base=RepoRef(
                ref="main",
                sha="b" * 40,
                full_name="acme/widgets",
                clone_url="https://github.com/acme/widgets.git",
            ),
            body="Fixes #7",
            additions=10,
            deletions=2,
            changed_files=1,
            files=(ChangedFile("src/retry.ts", "modified", 10, 2, "@@ -1 +1 @@\n-a\n+b"),),
        )
        fields.update(overrides)
        return ChangeRequestContext(**fields)

    return _make
