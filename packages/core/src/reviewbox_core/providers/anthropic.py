from __future__ import annotations

from reviewbox_core.agent.messages import AgentMessage, ToolCall
from reviewbox_core.providers.base import BaseAgent


class AnthropicAgent(BaseAgent):
    MODEL = "claude-sonnet-4-20250514"

    def __init__(self, api_key: str, model: str | None = None):
        try:
            from anthropic import Anthropic
        except ImportError:
            raise ImportError(
                "The 'anthropic' package is required for this provider. "
                "Install it with: pip install 'reviewbox[anthropic]'"
            )
        self.client = Anthropic(api_key=api_key)
        self.model = model or self.MODEL

    def _call_api(self, system_prompt: str, history: list[AgentMessage], tools: list[dict]) -> AgentMessage:
        response = self.client.messages.create(
            model=self.model,
            system=system_prompt,
            messages=to_anthropic_messages(history),
            tools=[{"name": t["name"], "description": t["description"], "input_schema": t["parameters"]} for t in tools],
            max_tokens=self.MAX_TOKENS,
        )

        text, calls = [], []
        for block in response.content:
            if block.type == "text":
                text.append(block.text)
            elif block.type == "tool_use":
                calls.append(ToolCall(id=block.id, name=block.name, args=dict(block.input or {})))
        return AgentMessage(role="ai", content="".join(text).strip(), id=response.id, tool_calls=calls)


def to_anthropic_messages(history: list[AgentMessage]) -> list[dict]:
    """Anthropic wants tool results as user turns, all results of one reply in a single turn."""
    messages: list[dict] = []
    for msg in history:
        if msg.role == "user":
            messages.append({"role": "user", "content": msg.content})
        elif msg.role == "ai":
            content: list[dict] = []
            if msg.content:
                content.append({"type": "text", "text": msg.content})
            for call in msg.tool_calls:
                content.append({"type": "tool_use", "id": call.id, "name": call.name, "input": call.args})
            messages.append({"role": "assistant", "content": content})
        elif msg.role == "tool":
            block = {"type": "tool_result", "tool_use_id": msg.tool_call_id, "content": msg.content}
            if messages and messages[-1]["role"] == "user" and isinstance(messages[-1]["content"], list):
                messages[-1]["content"].append(block)
            else:
                messages.append({"role": "user", "content": [block]})
    return messages
