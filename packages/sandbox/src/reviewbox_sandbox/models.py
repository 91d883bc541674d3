"""Sandbox data models.

Decoupled from reviewbox_core so the sandbox layer can be driven by the
maintenance command alone, without any GitHub or agent knowledge.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class BaseImage:
    """Read-only snapshot shared by every review run."""

    slug: str
    region: str
    capacity: str = ""
    size_bytes: int = 0
    source_ref: str = ""
    source_commit: str = ""


@dataclass(frozen=True)
class Volume:
    """A writable volume. Review forks and the persistent build volume are both volumes."""

    slug: str
    region: str
    capacity: str = ""
    parent: str | None = None  # snapshot slug this volume was forked from
    bootable: bool = True


# A Fork is a volume derived from a BaseImage; the alias keeps call sites honest.
Fork = Volume


@dataclass
class Session:
    """A live compute context booted with ``root`` as its filesystem."""

    id: str
    root: str
    region: str
    memory: str
    timeout: str
    labels: dict[str, str] = field(default_factory=dict)
    ready: bool = True


@dataclass(frozen=True)
class ExecResult:
    """Exit status plus combined stdout/stderr of one command."""

    exit_code: int
    output: str = ""
    truncated: bool = False

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


@dataclass(frozen=True)
class CleanupResult:
    """Outcome of a best-effort teardown step. ``diagnostic`` is set when it failed."""

    ok: bool
    target: str
    diagnostic: str | None = None


@dataclass(frozen=True)
class SetupResult:
    """What the provisioner achieved before handing the session to the agent."""

    ready: bool
    deps_installed: bool
    deps_output: str = ""


@dataclass(frozen=True)
class CheckoutTarget:
    """The refs the provisioner needs, independent of any GitHub object model."""

    head_ref: str
    base_ref: str
    head_clone_url: str
    head_full_name: str
    base_full_name: str

    @property
    def is_fork(self) -> bool:
        return self.head_full_name != self.base_full_name


@dataclass(frozen=True)
class ImageSource:
    """Where and how the base image is built."""

    repo_url: str
    branch: str = "main"
    build_command: str = ""
    test_command: str = ""


@dataclass
class RefreshResult:
    """Outcome of one base-image refresh."""

    image: BaseImage
    tests_passed: bool
    was_dirty: bool = False
    disk_usage: str = "unknown"
    forks_deleted: int = 0
    cleanup: list[CleanupResult] = field(default_factory=list)
