"""SessionProvisioner: boot a session on a fresh fork and run deterministic setup.

Checkout and dependency install are the same for every review, so they run
here before the agent starts rather than costing agent turns.
"""

from __future__ import annotations

import logging
import shlex
from contextlib import contextmanager
from typing import Iterator

from rich.console import Console

from reviewbox_sandbox.base import BasePlatform
from reviewbox_sandbox.errors import PlatformError, ProvisioningError
from reviewbox_sandbox.models import CheckoutTarget, CleanupResult, Session, SetupResult
from reviewbox_sandbox.settings import SandboxSettings, session_install_command
from reviewbox_sandbox.store import EnvironmentStore

console = Console()
logger = logging.getLogger(__name__)

FORK_REMOTE = "pr-fork"


class SessionProvisioner:
    """Owns the session and fork for one run, from boot to guaranteed teardown."""

    def __init__(self, platform: BasePlatform, store: EnvironmentStore, settings: SandboxSettings | None = None):
        self.platform = platform
        self.store = store
        self.settings = settings or store.settings
        self.cleanup: list[CleanupResult] = []

    @contextmanager
    def provision(self) -> Iterator[Session]:
        """Yield a running session; close it and destroy its fork on every exit path.

        Teardown runs exactly once whether the body returns, raises, or is
        interrupted. Teardown outcomes are recorded in ``self.cleanup``.
        """
        s = self.settings
        image = self.store.base_image()
        fork = self.store.fork(image) if s.use_fork else None
        root = fork.slug if fork is not None else image.slug

        session = None
        try:
            try:
                session = self.platform.create_session(root=root, region=s.region, memory=s.memory, timeout=s.timeout)
            except PlatformError as e:
                raise ProvisioningError(f"Could not boot session on {root!r}", str(e)) from e
            console.print(f"[dim]Sandbox ready (id: {session.id}, root: {root})[/dim]")
            yield session
        finally:
            if session is not None:
                self.cleanup.append(self._close_session(session))
            if fork is not None:
                self.cleanup.append(self.store.destroy(fork))

    def _close_session(self, session: Session) -> CleanupResult:
        try:
            self.platform.kill_session(session.id)
        except PlatformError as e:
            logger.warning("Could not close session %s: %s", session.id, e)
            return CleanupResult(ok=False, target=session.id, diagnostic=str(e))
        return CleanupResult(ok=True, target=session.id)

    def setup(self, session: Session, target: CheckoutTarget, branch_override: str | None = None) -> SetupResult:
        """Check out the head branch and install dependencies.

        Fetch or checkout failures raise ProvisioningError. An install
        failure is returned as ``deps_installed=False``: the session is still
        fine for reading code, and the agent may retry the install itself.
        """
        s = self.settings
        repo = shlex.quote(s.mount_path)
        head_ref = branch_override or target.head_ref
        head_remote = FORK_REMOTE if target.is_fork else "origin"

        if target.is_fork:
            url = shlex.quote(target.head_clone_url)
            console.print(f"Adding fork remote: {head_remote} → {target.head_clone_url}")
            self._must(
                session,
                "Failed to add fork remote",
                f"cd {repo} && (git remote add {head_remote} {url} 2>/dev/null"
                f" || git remote set-url {head_remote} {url})",
            )

        # The base ref is fetched only so `git diff origin/<base>...HEAD` works;
        # it is never checked out.
        console.print(f"Fetching branches: {head_ref}, {target.base_ref}")
        head_fetch = _fetch_command(head_remote, head_ref, s.fetch_depth)
        base_fetch = _fetch_command("origin", target.base_ref, s.fetch_depth)
        self._must(
            session,
            "Failed to fetch branches",
            f"cd {repo} && {{ {head_fetch} & head=$!; {base_fetch} & base=$!; wait $head && wait $base; }}",
        )

        console.print(f"Checking out branch: {head_ref}")
        ref = shlex.quote(head_ref)
        self._must(
            session,
            "Failed to checkout PR branch",
            f"cd {repo} && git checkout -B {ref} {shlex.quote(f'{head_remote}/{head_ref}')}",
        )

        console.print("Installing dependencies...")
        install = self.platform.execute(session, session_install_command(s), timeout=s.command_timeout)
        if not install.ok:
            logger.warning("Dependency install failed (exit %d); the agent can retry if it needs tests", install.exit_code)
            console.print("[yellow]Sandbox ready — dependencies failed (agent can retry)[/yellow]")
            return SetupResult(ready=True, deps_installed=False, deps_output=install.output[-2000:])

        console.print("[green]Sandbox ready — dependencies installed[/green]")
        return SetupResult(ready=True, deps_installed=True)

    def _must(self, session: Session, message: str, command: str) -> None:
        result = self.platform.execute(session, command, timeout=self.settings.command_timeout)
        if not result.ok:
            raise ProvisioningError(message, result.output)


def _fetch_command(remote: str, ref: str, depth: int) -> str:
    refspec = shlex.quote(f"{ref}:refs/remotes/{remote}/{ref}")
    return f"git fetch {remote} {refspec} --depth {depth}"
