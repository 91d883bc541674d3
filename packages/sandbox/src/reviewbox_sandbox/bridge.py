"""ExecutionBridge: the agent's only way into the session."""

from __future__ import annotations

import base64
import logging
import posixpath
import shlex

from reviewbox_sandbox.base import BasePlatform
from reviewbox_sandbox.models import ExecResult, Session
from reviewbox_sandbox.settings import SandboxSettings

logger = logging.getLogger(__name__)


class ExecutionBridge:
    """Run commands and touch files inside one session.

    Relative paths resolve against the repository mount. Output is bounded
    to ``max_output_chars``; when truncated, the tail is kept because that is
    where compilers and test runners put the failure.
    """

    def __init__(self, platform: BasePlatform, session: Session, settings: SandboxSettings | None = None):
        self.platform = platform
        self.session = session
        self.settings = settings or SandboxSettings()

    def resolve(self, path: str) -> str:
        if posixpath.isabs(path):
            return path
        return posixpath.normpath(posixpath.join(self.settings.mount_path, path))

    def execute(self, command: str, timeout: float | None = None) -> ExecResult:
        """Run ``command`` from the repository root. Raises ExecutionTimeout past ``timeout``."""
        full = f"cd {shlex.quote(self.settings.mount_path)} && {command}"
        result = self.platform.execute(self.session, full, timeout=timeout or self.settings.command_timeout)
        limit = self.settings.max_output_chars
        if len(result.output) <= limit:
            return result
        dropped = len(result.output) - limit
        logger.debug("Truncated %d chars of output from %r", dropped, command)
        output = f"... ({dropped} chars truncated)\n" + result.output[-limit:]
        return ExecResult(exit_code=result.exit_code, output=output, truncated=True)

    def read_file(self, path: str, offset: int = 0, limit: int | None = None) -> str:
        """Return file content as ``cat -n`` style numbered lines."""
        content = self.platform.read_file(self.session, self.resolve(path))
        lines = content.splitlines()
        end = len(lines) if limit is None else offset + limit
        return "\n".join(f"{i + 1:6}\t{line}" for i, line in enumerate(lines[offset:end], start=offset))

    def write_file(self, path: str, content: str) -> ExecResult:
        target = shlex.quote(self.resolve(path))
        payload = base64.b64encode(content.encode("utf-8")).decode("ascii")
        return self.platform.execute(
            self.session,
            f"mkdir -p \"$(dirname {target})\" && echo {payload} | base64 -d > {target}",
            timeout=self.settings.command_timeout,
        )

    def edit_file(self, path: str, old: str, new: str) -> str:
        """Replace exactly one occurrence of ``old``. Returns a message for the agent."""
        content = self.platform.read_file(self.session, self.resolve(path))
        count = content.count(old)
        if count == 0:
            return f"Error: text not found in {path}"
        if count > 1:
            return f"Error: text occurs {count} times in {path}; include more context"
        result = self.write_file(path, content.replace(old, new, 1))
        if not result.ok:
            return f"Error writing {path}: {result.output}"
        return f"Edited {path}"

    def ls(self, path: str = ".") -> ExecResult:
        return self.execute(f"ls -la {shlex.quote(self.resolve(path))}")
