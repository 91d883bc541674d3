"""Exception hierarchy for sandbox provisioning and execution.

Fatal conditions (ProvisioningError, ExecutionTimeout, RefreshError) unwind
to the caller. Recoverable conditions are not raised at all. A failed
dependency install is reported through SetupResult.deps_installed and a
failed fork cleanup through CleanupResult, so callers can assert on them.
"""

from __future__ import annotations


class SandboxError(Exception):
    """Base exception for everything raised by reviewbox_sandbox."""


class PlatformError(SandboxError):
    """The platform API rejected a request.

    ``status`` is the HTTP status (or 0 for local/transport failures) and
    ``code`` the platform's machine-readable error code, when it sends one.
    """

    def __init__(self, message: str, status: int = 0, code: str | None = None):
        self.status = status
        self.code = code
        super().__init__(message)

    @property
    def is_transient(self) -> bool:
        return self.status >= 500


class SnapshotInUse(PlatformError):
    """Snapshot deletion rejected because forks still depend on it."""

    CODE = "SNAPSHOT_IN_USE"

    def __init__(self, message: str, status: int = 409):
        super().__init__(message, status=status, code=self.CODE)


class ProvisioningError(SandboxError):
    """Fork/session creation, branch fetch, or checkout failed. Fatal for the run."""

    def __init__(self, message: str, output: str = ""):
        self.output = output
        if output:
            message = f"{message}: {output.strip()}"
        super().__init__(message)


class ExecutionTimeout(SandboxError):
    """A command outlived its timeout or the session stopped responding."""

    def __init__(self, command: str, timeout: float | None = None, reason: str = ""):
        self.command = command
        self.timeout = timeout
        detail = reason or (f"exceeded {timeout:g}s" if timeout else "session unavailable")
        super().__init__(f"Command {command!r} {detail}")


class RefreshError(SandboxError):
    """The base-image refresh could not produce a publishable image."""
