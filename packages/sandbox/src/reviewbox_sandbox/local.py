"""LocalPlatform: directories on the host standing in for provider volumes.

Useful for development and tests where no provider account is available:
- a volume is a directory under ``<root>/volumes/``;
- a snapshot is a frozen copy under ``<root>/snapshots/``;
- a fork copies its snapshot with ``cp --reflink=auto``, which is
  copy-on-write on btrfs/XFS and a plain copy elsewhere;
- a session is a bookkeeping record; commands run through ``bash -c`` with
  the volume directory as working directory. A session booted straight from
  a snapshot runs on a scratch copy under ``<root>/scratch/`` that is
  removed when the session is killed, so the snapshot is never written.

Commands see the volume directory as their cwd, so configure relative
paths (``mount_path: data/repo``) when using this provider.

Sessions are tracked in-process only. There is no isolation from the host;
this is not a security boundary.
"""

from __future__ import annotations

import json
import logging
import shutil
import subprocess
import uuid
from dataclasses import asdict
from pathlib import Path

from reviewbox_sandbox.base import BasePlatform
from reviewbox_sandbox.errors import ExecutionTimeout, PlatformError, SnapshotInUse
from reviewbox_sandbox.models import BaseImage, ExecResult, Session, Volume

logger = logging.getLogger(__name__)

_BUILTIN_PREFIX = "builtin:"


class LocalPlatform(BasePlatform):
    """BasePlatform backed by the local filesystem and subprocesses."""

    def __init__(self, root: str | Path):
        self.root = Path(root).expanduser().resolve()
        for sub in ("volumes", "snapshots", "scratch", "meta/volumes", "meta/snapshots"):
            (self.root / sub).mkdir(parents=True, exist_ok=True)
        self._sessions: dict[str, Session] = {}

    # ------------------------------------------------------------------ #
    # Paths and metadata                                                   #
    # ------------------------------------------------------------------ #

    def _volume_dir(self, slug: str) -> Path:
        return self.root / "volumes" / slug

    def _snapshot_dir(self, slug: str) -> Path:
        return self.root / "snapshots" / slug

    def _meta_path(self, kind: str, slug: str) -> Path:
        return self.root / "meta" / kind / f"{slug}.json"

    def _write_meta(self, kind: str, slug: str, data: dict) -> None:
        self._meta_path(kind, slug).write_text(json.dumps(data, indent=2))

    def _read_meta(self, kind: str, slug: str) -> dict | None:
        path = self._meta_path(kind, slug)
        if not path.exists():
            return None
        return json.loads(path.read_text())

    def _root_dir(self, root: str) -> Path:
        for candidate in (self._volume_dir(root), self._snapshot_dir(root)):
            if candidate.is_dir():
                return candidate
        raise PlatformError(f"Unknown root filesystem: {root}", status=404)

    def _session_dir(self, session: Session) -> Path:
        scratch = self.root / "scratch" / session.id
        if scratch.is_dir():
            return scratch
        return self._root_dir(session.root)

    @staticmethod
    def _copy_tree(src: Path, dst: Path) -> None:
        result = subprocess.run(
            ["cp", "-a", "--reflink=auto", f"{src}/.", str(dst)],
            capture_output=True,
            text=True,
        )
        if result.returncode != 0:
            shutil.rmtree(dst, ignore_errors=True)
            raise PlatformError(f"Copy {src} -> {dst} failed: {result.stderr.strip()}")

    # ------------------------------------------------------------------ #
    # Volumes                                                              #
    # ------------------------------------------------------------------ #

    def create_volume(self, slug: str, region: str, capacity: str, source: str) -> Volume:
        target = self._volume_dir(slug)
        if target.exists():
            raise PlatformError(f"Volume {slug} already exists", status=409, code="VOLUME_EXISTS")
        target.mkdir(parents=True)

        parent = None
        if not source.startswith(_BUILTIN_PREFIX):
            snapshot_dir = self._snapshot_dir(source)
            if not snapshot_dir.is_dir():
                target.rmdir()
                raise PlatformError(f"Snapshot {source} not found", status=404)
            self._copy_tree(snapshot_dir, target)
            parent = source

        volume = Volume(slug=slug, region=region, capacity=capacity, parent=parent, bootable=True)
        self._write_meta("volumes", slug, asdict(volume))
        return volume

    def get_volume(self, slug: str) -> Volume | None:
        data = self._read_meta("volumes", slug)
        return Volume(**data) if data else None

    def list_volumes(self, search: str = "") -> list[Volume]:
        volumes = []
        for path in sorted((self.root / "meta" / "volumes").glob("*.json")):
            if search in path.stem:
                volumes.append(Volume(**json.loads(path.read_text())))
        return volumes

    def delete_volume(self, slug: str) -> None:
        if self._read_meta("volumes", slug) is None:
            raise PlatformError(f"Volume {slug} not found", status=404)
        if any(s.root == slug for s in self._sessions.values()):
            raise PlatformError(f"Volume {slug} is mounted by a live session", status=409, code="VOLUME_IN_USE")
        shutil.rmtree(self._volume_dir(slug), ignore_errors=True)
        self._meta_path("volumes", slug).unlink()

    def snapshot_volume(self, slug: str, snapshot_slug: str) -> BaseImage:
        volume = self.get_volume(slug)
        if volume is None:
            raise PlatformError(f"Volume {slug} not found", status=404)
        target = self._snapshot_dir(snapshot_slug)
        if target.exists():
            raise PlatformError(f"Snapshot {snapshot_slug} already exists", status=409)
        target.mkdir(parents=True)
        self._copy_tree(self._volume_dir(slug), target)
        size = sum(p.stat().st_size for p in target.rglob("*") if p.is_file() and not p.is_symlink())
        image = BaseImage(slug=snapshot_slug, region=volume.region, capacity=volume.capacity, size_bytes=size)
        self._write_meta("snapshots", snapshot_slug, asdict(image))
        return image

    # ------------------------------------------------------------------ #
    # Snapshots                                                            #
    # ------------------------------------------------------------------ #

    def get_snapshot(self, slug: str) -> BaseImage | None:
        data = self._read_meta("snapshots", slug)
        return BaseImage(**data) if data else None

    def delete_snapshot(self, slug: str) -> None:
        if self._read_meta("snapshots", slug) is None:
            raise PlatformError(f"Snapshot {slug} not found", status=404)
        dependents = [v.slug for v in self.list_volumes() if v.parent == slug]
        if dependents:
            raise SnapshotInUse(f"Snapshot {slug} has dependent volumes: {', '.join(dependents)}")
        shutil.rmtree(self._snapshot_dir(slug), ignore_errors=True)
        self._meta_path("snapshots", slug).unlink()

    # ------------------------------------------------------------------ #
    # Sessions                                                             #
    # ------------------------------------------------------------------ #

    def create_session(
        self,
        root: str,
        region: str,
        memory: str,
        timeout: str,
        labels: dict[str, str] | None = None,
    ) -> Session:
        root_dir = self._root_dir(root)
        session = Session(
            id=f"local-{uuid.uuid4().hex[:12]}",
            root=root,
            region=region,
            memory=memory,
            timeout=timeout,
            labels=dict(labels or {}),
        )
        if root_dir.parent == self.root / "snapshots":
            scratch = self.root / "scratch" / session.id
            scratch.mkdir()
            self._copy_tree(root_dir, scratch)
            logger.debug("Session %s runs on a scratch copy of snapshot %s", session.id, root)
        self._sessions[session.id] = session
        return session

    def list_sessions(self, labels: dict[str, str] | None = None) -> list[Session]:
        wanted = (labels or {}).items()
        return [s for s in self._sessions.values() if all(s.labels.get(k) == v for k, v in wanted)]

    def kill_session(self, session_id: str) -> None:
        session = self._sessions.pop(session_id, None)
        if session is not None:
            session.ready = False
        shutil.rmtree(self.root / "scratch" / session_id, ignore_errors=True)

    def execute(self, session: Session, command: str, timeout: float | None = None) -> ExecResult:
        if session.id not in self._sessions:
            raise ExecutionTimeout(command, timeout, reason="failed: session no longer responds")
        try:
            result = subprocess.run(
                ["bash", "-c", command],
                cwd=self._session_dir(session),
                capture_output=True,
                text=True,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise ExecutionTimeout(command, timeout) from e
        return ExecResult(exit_code=result.returncode, output=result.stdout + result.stderr)

    def read_file(self, session: Session, path: str) -> str:
        if session.id not in self._sessions:
            raise ExecutionTimeout(f"read {path}", reason="failed: session no longer responds")
        base = self._session_dir(session)
        target = (base / path.lstrip("/")).resolve()
        if base not in target.parents and target != base:
            raise PermissionError(f"{path} escapes the session root")
        return target.read_text(encoding="utf-8", errors="replace")
