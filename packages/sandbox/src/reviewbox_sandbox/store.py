"""EnvironmentStore: the read-only base image and the per-run forks of it.

Why fork a snapshot instead of cloning per run:
- The base image already holds the repository and a populated package store,
  so a run only needs `git checkout` + an offline install.
- Snapshots can be mounted by many sessions at once; volumes cannot. Each run
  gets its own copy-on-write fork, so only the pages it changes cost storage.

The refresh procedure (rebuild, verify, re-snapshot) is a maintenance
operation and never runs as part of a review.
"""

from __future__ import annotations

import logging
import shlex
import time
from dataclasses import replace
from typing import Callable

from rich.console import Console

from reviewbox_sandbox.base import BasePlatform
from reviewbox_sandbox.errors import PlatformError, ProvisioningError, RefreshError, SnapshotInUse
from reviewbox_sandbox.models import BaseImage, CleanupResult, Fork, ImageSource, RefreshResult, Session, Volume
from reviewbox_sandbox.settings import SandboxSettings, image_install_command

console = Console()
logger = logging.getLogger(__name__)


class EnvironmentStore:
    """Creates and destroys forks of the base image, and rebuilds the image itself."""

    def __init__(
        self,
        platform: BasePlatform,
        settings: SandboxSettings | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.time,
    ):
        self.platform = platform
        self.settings = settings or SandboxSettings()
        self._sleep = sleep
        self._clock = clock

    # ------------------------------------------------------------------ #
    # Per-run operations                                                   #
    # ------------------------------------------------------------------ #

    def base_image(self) -> BaseImage:
        """Return the published base image, or raise if none has been built yet."""
        slug = self.settings.snapshot_slug
        try:
            image = self.platform.get_snapshot(slug)
        except PlatformError as e:
            raise ProvisioningError(f"Could not look up base image {slug!r}", str(e)) from e
        if image is None:
            raise ProvisioningError(f"Base image {slug!r} does not exist. Run `reviewbox refresh-image` first.")
        return image

    def fork(self, image: BaseImage) -> Fork:
        """Allocate a writable copy-on-write volume from ``image``."""
        slug = f"{self.settings.fork_prefix}-{int(self._clock() * 1000)}"
        try:
            fork = self.platform.create_volume(
                slug=slug,
                region=self.settings.region,
                capacity=self.settings.capacity,
                source=image.slug,
            )
        except PlatformError as e:
            raise ProvisioningError(f"Could not fork base image {image.slug!r}", str(e)) from e
        logger.info("Forked %s -> %s", image.slug, fork.slug)
        return fork

    def destroy(self, fork: Fork) -> CleanupResult:
        """Delete a fork. Never raises: a leftover fork is reported, not fatal.

        Orphans share the fork prefix, so the next refresh deletes them
        before replacing the snapshot.
        """
        try:
            self.platform.delete_volume(fork.slug)
        except PlatformError as e:
            logger.warning("Could not delete temporary volume %r: %s", fork.slug, e)
            return CleanupResult(ok=False, target=fork.slug, diagnostic=str(e))
        logger.info("Temporary volume %r deleted", fork.slug)
        return CleanupResult(ok=True, target=fork.slug)

    # ------------------------------------------------------------------ #
    # Maintenance: refresh                                                 #
    # ------------------------------------------------------------------ #

    def refresh(self, source: ImageSource) -> RefreshResult:
        """Rebuild the base image from ``source`` and publish it under the snapshot slug.

        Raises RefreshError when the image would be unusable (build failure,
        dirty tree that cannot be reset, snapshot that cannot be replaced).
        Test failures only downgrade ``tests_passed``.
        """
        volume = self._ensure_build_volume()
        self._kill_stale_build_sessions()

        try:
            session = self.platform.create_session(
                root=volume.slug,
                region=self.settings.region,
                memory=self.settings.memory,
                timeout=self.settings.timeout,
                labels=self.settings.build_labels,
            )
        except PlatformError as e:
            raise RefreshError(f"Could not boot build session on {volume.slug!r}: {e}") from e
        console.print(f"[dim]Build session ready (id: {session.id})[/dim]")

        try:
            result = self._build(session, source)
        finally:
            try:
                self.platform.kill_session(session.id)
            except PlatformError as e:
                logger.warning("Could not kill build session %s: %s", session.id, e)

        was_dirty, tests_passed, disk_usage, commit = result
        console.print(f"Volume usage: {disk_usage} on disk (capacity: {volume.capacity or 'unknown'})")

        forks_deleted, cleanup = 0, []
        if self.platform.get_snapshot(self.settings.snapshot_slug) is not None:
            forks_deleted, cleanup = self._delete_forks()
            self._delete_snapshot_with_retry(self.settings.snapshot_slug)

        try:
            image = self.platform.snapshot_volume(volume.slug, self.settings.snapshot_slug)
        except PlatformError as e:
            raise RefreshError(f"Could not snapshot {volume.slug!r}: {e}") from e
        image = replace(image, source_ref=source.branch, source_commit=commit)
        console.print(f"[green]Snapshot created: {image.slug} ({image.size_bytes} bytes)[/green]")

        return RefreshResult(
            image=image,
            tests_passed=tests_passed,
            was_dirty=was_dirty,
            disk_usage=disk_usage,
            forks_deleted=forks_deleted,
            cleanup=cleanup,
        )

    def _ensure_build_volume(self) -> Volume:
        s = self.settings
        volume = self.platform.get_volume(s.build_volume_slug)
        if volume is not None and not volume.bootable:
            console.print("[yellow]Build volume exists but is not bootable — recreating it.[/yellow]")
            self.platform.delete_volume(s.build_volume_slug)
            volume = None
        if volume is None:
            console.print(f"Creating build volume {s.build_volume_slug!r} ({s.capacity}) in {s.region}...")
            volume = self.platform.create_volume(
                slug=s.build_volume_slug, region=s.region, capacity=s.capacity, source=s.builtin_image
            )
        return volume

    def _kill_stale_build_sessions(self) -> int:
        killed = 0
        for stale in self.platform.list_sessions(labels=self.settings.build_labels):
            try:
                self.platform.kill_session(stale.id)
                killed += 1
            except PlatformError as e:
                logger.debug("Stale session %s already gone: %s", stale.id, e)
        if killed:
            console.print(f"[dim]Killed {killed} stale build session(s)[/dim]")
        return killed

    def _run(self, session: Session, description: str, command: str, check: bool = True) -> str:
        """Run one build step. With ``check``, a non-zero exit aborts the refresh."""
        console.print(f"[bold]→[/bold] {description}")
        result = self.platform.execute(session, command, timeout=self.settings.refresh_command_timeout)
        if not result.ok:
            tail = "\n".join(result.output.strip().splitlines()[-15:])
            if check:
                raise RefreshError(f"{description} failed (exit {result.exit_code}):\n{tail}")
            logger.debug("%s exited %d:\n%s", description, result.exit_code, tail)
        return result.output if result.ok else ""

    def _build(self, session: Session, source: ImageSource) -> tuple[bool, bool, str, str]:
        s = self.settings
        repo = shlex.quote(s.mount_path)
        store = shlex.quote(s.store_dir)
        branch = shlex.quote(source.branch)

        self._run(
            session,
            "Ensuring repo and store directories exist",
            f"mkdir -p {repo} {store} 2>/dev/null || "
            f'(sudo mkdir -p {repo} {store} && sudo chown "$(whoami):$(id -gn)" {repo} {store})',
        )

        state = self._run(session, "Checking repo state", f"test -d {repo}/.git && echo exists || echo fresh").strip()
        if state == "fresh":
            self._run(
                session,
                f"Cloning {source.repo_url}",
                f"git clone --depth 30 --branch {branch} {shlex.quote(source.repo_url)} {repo}",
            )
        else:
            self._run(
                session,
                "Fetching latest from origin",
                f"cd {repo} && git fetch origin {branch} && git reset --hard origin/{branch}",
            )

        self._run(session, "Installing pnpm", "command -v pnpm >/dev/null || npm install -g --force pnpm")
        self._run(session, "Installing dependencies", image_install_command(s))

        # An empty store means every fork re-downloads everything on boot.
        store_check = self._run(
            session,
            "Verifying package store is populated",
            f"test -n \"$(ls -A {store} 2>/dev/null)\" && du -sh {store}",
            check=False,
        )
        if not store_check:
            logger.warning("Package store at %s appears empty", s.store_dir)

        if source.build_command:
            self._run(session, "Building workspace packages", f"cd {repo} && {source.build_command}")

        was_dirty = self._ensure_clean_tree(session)

        tests_passed = True
        if source.test_command:
            try:
                self._run(session, "Running tests", f"cd {repo} && {source.test_command}")
            except RefreshError as e:
                tests_passed = False
                logger.warning("Some tests failed — the image is still usable for reviews: %s", e)
                console.print("[yellow]Some tests failed — publishing the image anyway.[/yellow]")

        du = self._run(session, "Measuring volume usage", f"du -sh {repo}", check=False)
        disk_usage = du.split()[0] if du.strip() else "unknown"
        commit = self._run(session, "Reading HEAD", f"cd {repo} && git rev-parse HEAD", check=False).strip()
        return was_dirty, tests_passed, disk_usage, commit

    def _ensure_clean_tree(self, session: Session) -> bool:
        """Reset a build-dirtied tree. Returns whether it was dirty.

        A dirty tree would make every later `git checkout -B <branch>` fail,
        so an image that stays dirty after the reset is never published.
        """
        repo = shlex.quote(self.settings.mount_path)
        dirty = self._run(session, "Checking for uncommitted changes", f"cd {repo} && git status --porcelain").strip()
        if not dirty:
            console.print("[green]Git tree is clean after build.[/green]")
            return False

        logger.warning("Build left dirty files:\n%s", dirty)
        console.print(f"[yellow]Build left dirty files:[/yellow]\n[dim]{dirty}[/dim]")
        diff = self._run(session, "Showing diff of dirty files", f"cd {repo} && git diff", check=False)
        logger.debug("Dirty diff:\n%s", diff)

        self._run(session, "Resetting working tree", f"cd {repo} && git checkout -- . && git clean -fd")
        still_dirty = self._run(session, "Verifying clean state", f"cd {repo} && git status --porcelain").strip()
        if still_dirty:
            raise RefreshError(
                "Failed to restore clean git state after build. "
                f"The image would have dirty files that block checkouts.\nStill dirty:\n{still_dirty}"
            )
        console.print("[green]Git tree restored to clean state.[/green]")
        return True

    def _delete_forks(self) -> tuple[int, list[CleanupResult]]:
        """Best-effort delete of every fork; the snapshot cannot go while they exist."""
        results = [self.destroy(fork) for fork in self.platform.list_volumes(search=self.settings.fork_prefix)]
        deleted = sum(1 for r in results if r.ok)
        if results:
            console.print(f"[dim]Deleted {deleted}/{len(results)} dependent volume(s)[/dim]")
        return deleted, results

    def _delete_snapshot_with_retry(self, slug: str) -> int:
        """Delete ``slug``, retrying with linear backoff while the platform releases dependents.

        Returns the number of attempts used. Only SnapshotInUse and 5xx errors
        are retried; anything else, or running out of attempts, is a RefreshError.
        """
        attempts = max(1, self.settings.snapshot_delete_retries)
        for attempt in range(1, attempts + 1):
            try:
                self.platform.delete_snapshot(slug)
                console.print(f"[dim]Deleted snapshot {slug!r}[/dim]")
                return attempt
            except PlatformError as e:
                retryable = isinstance(e, SnapshotInUse) or e.is_transient
                if not retryable or attempt == attempts:
                    raise RefreshError(f"Snapshot deletion failed after {attempt} attempt(s): {e}") from e
                delay = self.settings.snapshot_delete_backoff * attempt
                logger.warning("Snapshot delete attempt %d/%d failed (%s). Retrying in %gs...", attempt, attempts, e, delay)
                self._sleep(delay)
        return attempts
