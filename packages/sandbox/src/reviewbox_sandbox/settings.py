"""Sandbox settings shared by the refresh procedure and per-run setup."""

from __future__ import annotations

import re
import shlex
from dataclasses import dataclass, field, fields

# Heavy or rarely-needed workspace packages skipped by every install. The base
# image's package store only holds what these filters allow, so per-run setup
# must use the same list or it will download (and OOM on) the excluded trees.
DEFAULT_INSTALL_EXCLUDE = [
    "!@langchain/community",
    "!create-langchain-integration",
    "!examples",
    "!@langchain/classic",
]

# Share of session memory given to the Node heap during install; the rest is
# left for pnpm child processes and the OS. 4GiB sessions get 2560MB.
INSTALL_HEAP_SHARE = 0.625

_MEMORY_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(GiB|GB|MiB|MB)\s*$", re.IGNORECASE)
_MEMORY_UNITS_MB = {"gib": 1024, "gb": 1000, "mib": 1, "mb": 1}


def memory_mb(memory: str) -> int:
    """Parse a session memory size like ``4GiB`` or ``512MiB`` into megabytes."""
    match = _MEMORY_RE.match(memory)
    if not match:
        raise ValueError(f"Unrecognised memory size: {memory!r} (expected e.g. 4GiB or 512MiB)")
    amount, unit = match.groups()
    return int(float(amount) * _MEMORY_UNITS_MB[unit.lower()])


@dataclass
class SandboxSettings:
    snapshot_slug: str = "review-base-snapshot"
    build_volume_slug: str = "review-base"
    fork_prefix: str = "review-tmp"
    builtin_image: str = "builtin:debian-13"
    region: str = "ord"
    capacity: str = "10GB"
    memory: str = "4GiB"
    timeout: str = "15m"
    use_fork: bool = True
    mount_path: str = "/data/repo"
    # Lives on the volume but outside the repo so it never shows up in git status.
    store_dir: str = "/data/pnpm-store"
    install_exclude: list[str] = field(default_factory=lambda: list(DEFAULT_INSTALL_EXCLUDE))
    # None derives the heap from memory.
    install_heap_mb: int | None = None
    fetch_depth: int = 200
    command_timeout: float = 600.0
    refresh_command_timeout: float = 1800.0
    max_output_chars: int = 20000
    snapshot_delete_retries: int = 5
    snapshot_delete_backoff: float = 5.0
    build_labels: dict[str, str] = field(default_factory=lambda: {"job": "refresh-image"})

    def __post_init__(self) -> None:
        limit = memory_mb(self.memory)
        if self.install_heap_mb is not None and self.install_heap_mb > limit:
            raise ValueError(
                f"sandbox.install_heap_mb ({self.install_heap_mb}) exceeds session memory {self.memory} ({limit}MB)"
            )

    @property
    def heap_mb(self) -> int:
        """Node heap ceiling for the per-run install."""
        if self.install_heap_mb is not None:
            return self.install_heap_mb
        return int(memory_mb(self.memory) * INSTALL_HEAP_SHARE)

    @classmethod
    def from_config(cls, config: dict) -> SandboxSettings:
        """Build settings from the ``sandbox`` section of the loaded config, ignoring unknown keys."""
        section = config.get("sandbox") or {}
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in section.items() if k in known and v is not None})

    def filter_args(self) -> str:
        return " ".join(f"--filter {shlex.quote(f)}" for f in self.install_exclude)


def session_install_command(settings: SandboxSettings) -> str:
    """Per-run install: offline-first against the image's store, heap capped to fit the session."""
    repo = shlex.quote(settings.mount_path)
    store = shlex.quote(settings.store_dir)
    return (
        f"cd {repo} && NODE_OPTIONS=--max-old-space-size={settings.heap_mb} "
        f"pnpm install --store-dir {store} --prefer-offline {settings.filter_args()}"
    )


def image_install_command(settings: SandboxSettings) -> str:
    """Base-image install: frozen lockfile first, then an unfrozen retry."""
    repo = shlex.quote(settings.mount_path)
    store = shlex.quote(settings.store_dir)
    filters = settings.filter_args()
    return (
        f"cd {repo} && (pnpm install --store-dir {store} --frozen-lockfile {filters} --network-concurrency=5"
        f" || pnpm install --store-dir {store} {filters} --network-concurrency=5)"
    )
