from __future__ import annotations

import json
import logging

try:
    from openai import OpenAI as _OpenAI
except ImportError:
    _OpenAI = None  # type: ignore[assignment,misc]

from reviewbox_core.agent.messages import AgentMessage, ToolCall
from reviewbox_core.providers.base import BaseAgent

logger = logging.getLogger(__name__)


class OpenAIAgent(BaseAgent):
    MODEL = "gpt-4o"

    def __init__(self, api_key: str, model: str | None = None):
        if _OpenAI is None:
            raise ImportError(
                "The 'openai' package is required for this provider. " "Install it with: pip install 'reviewbox[openai]'"
            )
        self.client = _OpenAI(api_key=api_key)
        self.model = model or self.MODEL

    def _call_api(self, system_prompt: str, history: list[AgentMessage], tools: list[dict]) -> AgentMessage:
        response = self.client.chat.completions.create(
            model=self.model,
            messages=[{"role": "system", "content": system_prompt}, *to_openai_messages(history)],
            tools=[{"type": "function", "function": t} for t in tools],
            max_tokens=self.MAX_TOKENS,
        )
        message = response.choices[0].message
        calls = []
        for tc in message.tool_calls or []:
            try:
                args = json.loads(tc.function.arguments or "{}")
            except json.JSONDecodeError:
                logger.warning("Tool call %s had unparseable arguments: %s", tc.function.name, tc.function.arguments[:200])
                args = {}
            calls.append(ToolCall(id=tc.id, name=tc.function.name, args=args))
        return AgentMessage(role="ai", content=(message.content or "").strip(), id=response.id, tool_calls=calls)


def to_openai_messages(history: list[AgentMessage]) -> list[dict]:
    messages: list[dict] = []
    for msg in history:
        if msg.role == "user":
            messages.append({"role": "user", "content": msg.content})
        elif msg.role == "ai":
            item: dict = {"role": "assistant", "content": msg.content or None}
            if msg.tool_calls:
                item["tool_calls"] = [
                    {
                        "id": c.id,
                        "type": "function",
                        "function": {"name": c.name, "arguments": json.dumps(c.args)},
                    }
                    for c in msg.tool_calls
                ]
            messages.append(item)
        elif msg.role == "tool":
            messages.append({"role": "tool", "tool_call_id": msg.tool_call_id, "content": msg.content})
    return messages
