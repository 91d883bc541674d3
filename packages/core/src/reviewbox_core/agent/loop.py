"""AgentLoop: consume an agent's update stream, render it, and catch the proposal.

Why dedup by message id:
- Streaming agents may re-emit messages they already sent (replays after a
  resume, or the same message surfacing in several node updates). Each id is
  rendered once per run; messages without an id are always rendered.

Why stop at the first proposal:
- submit_review is the only tool with external effects, so it never runs
  here. Its payload is captured for the approval gate and the stream is
  closed; a later proposal can never replace the one the human sees.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass

from reviewbox_core.agent.messages import AgentMessage
from reviewbox_core.agent.tools import WRITE_TODOS, Ordinary, Pausing, ToolBox, classify, parse_proposal
from reviewbox_core.approval import RunState
from reviewbox_core.display import ConsoleRenderer
from reviewbox_core.errors import InvalidProposal
from reviewbox_core.models import ReviewProposal

logger = logging.getLogger(__name__)

ARG_PREVIEW_CHARS = 150
RESULT_PREVIEW_LINES = 6
AI_TEXT_LINES = 3
HIDDEN_TOOLS = frozenset({WRITE_TODOS})


@dataclass
class LoopOutcome:
    proposal: ReviewProposal | None
    rendered: int = 0
    tool_calls: int = 0

    @property
    def status(self) -> str:
        return "proposal" if self.proposal is not None else "no_review"


def preview_args(args) -> str:
    text = args if isinstance(args, str) else json.dumps(args)
    return text if len(text) <= ARG_PREVIEW_CHARS else text[:ARG_PREVIEW_CHARS] + "…"


def preview_result(content: str) -> str:
    lines = content.split("\n")
    if len(lines) <= RESULT_PREVIEW_LINES:
        return content
    return "\n".join(lines[:RESULT_PREVIEW_LINES]) + f"\n   ... ({len(lines) - RESULT_PREVIEW_LINES} more lines)"


class AgentLoop:
    def __init__(self, agent, toolbox: ToolBox, renderer=None, max_turns: int = 60):
        self.agent = agent
        self.toolbox = toolbox
        self.renderer = renderer or ConsoleRenderer()
        self.max_turns = max_turns

    def run(self, system_prompt: str, user_message: str, state: RunState) -> LoopOutcome:
        """Consume the stream until a valid proposal appears or the agent finishes.

        Running out of turns or finishing without submit_review yields a
        ``no_review`` outcome rather than an error.
        """
        outcome = LoopOutcome(proposal=None)
        stream = self.agent.stream(system_prompt, user_message, self.toolbox, max_turns=self.max_turns)
        try:
            for update in stream:
                for message in update.messages:
                    if message.id is not None:
                        if message.id in state.seen_ids:
                            logger.debug("Skipping replayed message %s", message.id)
                            continue
                        state.seen_ids.add(message.id)
                    outcome.rendered += 1
                    proposal = self._handle(message, outcome)
                    if proposal is not None:
                        outcome.proposal = proposal
                        return outcome
        finally:
            close = getattr(stream, "close", None)
            if close is not None:
                close()

        logger.info("Run %s: agent finished without submitting a review", state.run_id)
        return outcome

    def _handle(self, message: AgentMessage, outcome: LoopOutcome) -> ReviewProposal | None:
        if message.role == "tool":
            if message.name not in HIDDEN_TOOLS:
                self.renderer.tool_result(preview_result(message.content))
            return None

        if message.role != "ai":
            return None

        if not message.tool_calls:
            if message.content:
                self.renderer.ai_text(message.content.split("\n")[:AI_TEXT_LINES])
            return None

        for call in message.tool_calls:
            outcome.tool_calls += 1
            invocation = classify(call)
            if isinstance(invocation, Pausing):
                try:
                    proposal = parse_proposal(invocation)
                except InvalidProposal as e:
                    logger.warning("Ignoring invalid submit_review payload: %s", e)
                    self.renderer.rejected_proposal(str(e))
                    continue
                self.renderer.pause(call.name)
                return proposal
            if isinstance(invocation, Ordinary) and call.name not in HIDDEN_TOOLS:
                self.renderer.tool_call(call.name, preview_args(call.args))
        return None
