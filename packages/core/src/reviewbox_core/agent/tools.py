"""Tool schemas, classification, and execution against the sandbox.

Classification is a static name check: ``submit_review`` pauses the run for
human approval, every other tool runs immediately inside the session.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Union

from reviewbox_core.agent.messages import ToolCall
from reviewbox_core.models import VERDICTS, ReviewProposal
from reviewbox_sandbox.bridge import ExecutionBridge

logger = logging.getLogger(__name__)

SUBMIT_REVIEW = "submit_review"
WRITE_TODOS = "write_todos"

TOOL_SPECS: list[dict] = [
    {
        "name": "execute",
        "description": "Run a shell command from the repository root and return its exit code and output.",
        "parameters": {
            "type": "object",
            "properties": {
                "command": {"type": "string", "description": "The shell command to run."},
                "timeout": {"type": "integer", "description": "Optional timeout in seconds."},
            },
            "required": ["command"],
        },
    },
    {
        "name": "read_file",
        "description": "Read a file with line numbers. Relative paths resolve against the repository root.",
        "parameters": {
            "type": "object",
            "properties": {
                "path": {"type": "string"},
                "offset": {"type": "integer", "description": "Zero-based line to start from."},
                "limit": {"type": "integer", "description": "Maximum number of lines to return."},
            },
            "required": ["path"],
        },
    },
    {
        "name": "write_file",
        "description": "Create or overwrite a file with the given content.",
        "parameters": {
            "type": "object",
            "properties": {"path": {"type": "string"}, "content": {"type": "string"}},
            "required": ["path", "content"],
        },
    },
    {
        "name": "edit_file",
        "description": "Replace one exact occurrence of old_string with new_string in a file.",
        "parameters": {
            "type": "object",
            "properties": {
                "path": {"type": "string"},
                "old_string": {"type": "string"},
                "new_string": {"type": "string"},
            },
            "required": ["path", "old_string", "new_string"],
        },
    },
    {
        "name": "ls",
        "description": "List a directory. Defaults to the repository root.",
        "parameters": {"type": "object", "properties": {"path": {"type": "string"}}},
    },
    {
        "name": WRITE_TODOS,
        "description": "Replace your private task list. Use it to track what you still need to check.",
        "parameters": {
            "type": "object",
            "properties": {
                "todos": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {
                            "content": {"type": "string"},
                            "status": {"type": "string", "enum": ["pending", "in_progress", "completed"]},
                        },
                        "required": ["content", "status"],
                    },
                }
            },
            "required": ["todos"],
        },
    },
    {
        "name": SUBMIT_REVIEW,
        "description": (
            "Submit your complete review. A human approves it before anything is posted to GitHub. "
            "Call this exactly once, when you are done."
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "verdict": {"type": "string", "enum": list(VERDICTS)},
                "summary": {"type": "string", "description": "The review body."},
                "comments": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {
                            "path": {"type": "string", "description": "File path relative to the repository root."},
                            "line": {"type": "integer", "description": "Line in the new file (end of range)."},
                            "start_line": {
                                "type": "integer",
                                "description": "First line of a multi-line range; must be less than line.",
                            },
                            "body": {"type": "string"},
                        },
                        "required": ["path", "line", "body"],
                    },
                },
            },
            "required": ["verdict", "summary", "comments"],
        },
    },
]


@dataclass(frozen=True)
class Pausing:
    call: ToolCall


@dataclass(frozen=True)
class Ordinary:
    call: ToolCall


ToolInvocation = Union[Pausing, Ordinary]


def classify(call: ToolCall) -> ToolInvocation:
    return Pausing(call) if call.name == SUBMIT_REVIEW else Ordinary(call)


def parse_proposal(invocation: Pausing) -> ReviewProposal:
    """Raises InvalidProposal when the payload would not post cleanly."""
    return ReviewProposal.from_payload(invocation.call.args)


class ToolBox:
    """Runs ordinary tool calls through the ExecutionBridge and returns text for the model.

    ExecutionTimeout and platform errors propagate: a session that stops
    responding ends the run.
    """

    def __init__(self, bridge: ExecutionBridge):
        self.bridge = bridge
        self.todos: list[dict] = []

    def run(self, call: ToolCall) -> str:
        handler = getattr(self, f"_tool_{call.name}", None)
        if handler is None or call.name == SUBMIT_REVIEW:
            return f"Error: unknown tool {call.name!r}"
        try:
            return handler(**call.args)
        except TypeError as e:
            return f"Error: invalid arguments for {call.name}: {e}"

    def _tool_execute(self, command: str, timeout: int | None = None) -> str:
        result = self.bridge.execute(command, timeout=timeout)
        return f"{result.output}\n[Command {'succeeded' if result.ok else 'failed'} with exit code {result.exit_code}]"

    def _tool_read_file(self, path: str, offset: int = 0, limit: int | None = None) -> str:
        try:
            return self.bridge.read_file(path, offset=offset, limit=limit) or "(empty file)"
        except FileNotFoundError:
            return f"Error: file not found: {path}"
        except IsADirectoryError:
            return f"Error: {path} is a directory; use ls"

    def _tool_write_file(self, path: str, content: str) -> str:
        result = self.bridge.write_file(path, content)
        return f"Wrote {path}" if result.ok else f"Error writing {path}: {result.output}"

    def _tool_edit_file(self, path: str, old_string: str, new_string: str) -> str:
        try:
            return self.bridge.edit_file(path, old_string, new_string)
        except FileNotFoundError:
            return f"Error: file not found: {path}"

    def _tool_ls(self, path: str = ".") -> str:
        return self.bridge.ls(path).output

    def _tool_write_todos(self, todos: list) -> str:
        self.todos = list(todos)
        logger.debug("Todo list now has %d item(s)", len(self.todos))
        return f"Updated todo list ({len(self.todos)} items)"
