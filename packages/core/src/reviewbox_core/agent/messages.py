"""Provider-neutral message shapes streamed out of an agent."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class ToolCall:
    id: str
    name: str
    args: dict = field(default_factory=dict)


@dataclass
class AgentMessage:
    """One message in the conversation.

    ``id`` is what replay dedup keys on; messages without one are always
    rendered. Tool results carry ``tool_call_id`` and ``name`` of the call
    they answer.
    """

    role: str  # "user" | "ai" | "tool"
    content: str = ""
    id: str | None = None
    tool_calls: list[ToolCall] = field(default_factory=list)
    tool_call_id: str | None = None
    name: str | None = None


@dataclass
class StepUpdate:
    """A batch of messages produced by one graph node ("model" or "tools")."""

    node: str
    messages: list[AgentMessage] = field(default_factory=list)
