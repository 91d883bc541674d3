"""Abstract platform interface.

The platform hosts volumes, snapshots and sessions. EnvironmentStore and
SessionProvisioner depend on BasePlatform, not on a concrete backend, and
receive the instance explicitly, so the maintenance refresh and the
interactive review can each be tested against a fake.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from reviewbox_sandbox.models import BaseImage, ExecResult, Session, Volume


class BasePlatform(ABC):
    """Volumes, snapshots and sessions on a sandbox provider.

    Implementations raise PlatformError (or SnapshotInUse) for rejected
    requests and ExecutionTimeout for commands that outlive their budget.
    Lookups return None for missing objects rather than raising.
    """

    # ------------------------------------------------------------------ #
    # Volumes                                                              #
    # ------------------------------------------------------------------ #

    @abstractmethod
    def create_volume(self, slug: str, region: str, capacity: str, source: str) -> Volume:
        """Create a volume from ``source`` (a snapshot slug or a builtin image).

        Volumes created from snapshots are copy-on-write.
        """

    @abstractmethod
    def get_volume(self, slug: str) -> Volume | None:
        """Return the volume or None."""

    @abstractmethod
    def list_volumes(self, search: str = "") -> list[Volume]:
        """Return volumes whose slug contains ``search``."""

    @abstractmethod
    def delete_volume(self, slug: str) -> None:
        """Delete a volume. Raises PlatformError if it is still mounted."""

    @abstractmethod
    def snapshot_volume(self, slug: str, snapshot_slug: str) -> BaseImage:
        """Freeze a volume into a read-only snapshot."""

    # ------------------------------------------------------------------ #
    # Snapshots                                                            #
    # ------------------------------------------------------------------ #

    @abstractmethod
    def get_snapshot(self, slug: str) -> BaseImage | None:
        """Return the snapshot or None."""

    @abstractmethod
    def delete_snapshot(self, slug: str) -> None:
        """Delete a snapshot. Raises SnapshotInUse while forks depend on it."""

    # ------------------------------------------------------------------ #
    # Sessions                                                             #
    # ------------------------------------------------------------------ #

    @abstractmethod
    def create_session(
        self,
        root: str,
        region: str,
        memory: str,
        timeout: str,
        labels: dict[str, str] | None = None,
    ) -> Session:
        """Boot a session with ``root`` (volume or snapshot slug) as its filesystem."""

    @abstractmethod
    def list_sessions(self, labels: dict[str, str] | None = None) -> list[Session]:
        """Return live sessions carrying all of ``labels``."""

    @abstractmethod
    def kill_session(self, session_id: str) -> None:
        """Terminate a session. Killing an already-dead session is not an error."""

    @abstractmethod
    def execute(self, session: Session, command: str, timeout: float | None = None) -> ExecResult:
        """Run ``command`` through bash inside the session and wait for it."""

    @abstractmethod
    def read_file(self, session: Session, path: str) -> str:
        """Return the text content of ``path`` inside the session."""

    def close(self) -> None:
        """Release client resources (HTTP pools, temp dirs).

        Optional. The default is a no-op so callers can always call close() safely.
        """
