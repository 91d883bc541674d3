"""Base agent implementing the Template Method pattern.

All providers share the same tool-use loop:
    stream() → _call_with_retry() → _call_api()   ← only this differs per provider
             → run ordinary tools → feed results back → repeat

Subclasses implement two things only:
  - __init__: validate and store the SDK client
  - _call_api: send the conversation once and return the reply as an AgentMessage

Turn limits, pausing on submit_review and retries all live
here so every provider stops, retries and streams updates the same way.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from typing import Iterator

from reviewbox_core.agent.messages import AgentMessage, StepUpdate, ToolCall
from reviewbox_core.agent.tools import SUBMIT_REVIEW, TOOL_SPECS, ToolBox
from reviewbox_core.errors import AgentError, InvalidProposal
from reviewbox_core.models import ReviewProposal

logger = logging.getLogger(__name__)

# Shared defaults; subclasses may override as class attributes if needed.
_MAX_RETRIES = 3
_MAX_TOKENS = 8192


class BaseAgent(ABC):
    MAX_RETRIES: int = _MAX_RETRIES
    MAX_TOKENS: int = _MAX_TOKENS

    model: str

    # ------------------------------------------------------------------ #
    # Public interface                                                     #
    # ------------------------------------------------------------------ #

    def stream(
        self,
        system_prompt: str,
        user_message: str,
        toolbox: ToolBox,
        max_turns: int = 60,
    ) -> Iterator[StepUpdate]:
        """Run the model until it submits a review, stops calling tools, or runs out of turns.

        Yields one "model" update per reply and one "tools" update per batch
        of tool results. A valid submit_review call is yielded but never
        executed: the stream simply ends there, leaving the decision to the
        consumer. An invalid one is answered with the validation error so the
        model can correct it.
        """
        history = [AgentMessage(role="user", content=user_message)]

        for turn in range(max_turns):
            reply = self._call_with_retry(system_prompt, history)
            history.append(reply)
            yield StepUpdate("model", [reply])

            if not reply.tool_calls:
                logger.debug("Model stopped calling tools after %d turn(s)", turn + 1)
                return

            pausing = [c for c in reply.tool_calls if c.name == SUBMIT_REVIEW]
            if pausing and _proposal_error(pausing[0]) is None:
                return

            results = []
            for call in reply.tool_calls:
                if call.name == SUBMIT_REVIEW:
                    content = f"Error: review rejected, fix and resubmit: {_proposal_error(call)}"
                else:
                    content = toolbox.run(call)
                results.append(
                    AgentMessage(
                        role="tool",
                        content=content,
                        id=f"{call.id}:result",
                        tool_call_id=call.id,
                        name=call.name,
                    )
                )
            history.extend(results)
            yield StepUpdate("tools", results)

        logger.warning("%s reached the turn limit (%d) without submitting a review", self.__class__.__name__, max_turns)

    # ------------------------------------------------------------------ #
    # Abstract: implement in each provider                               #
    # ------------------------------------------------------------------ #

    @abstractmethod
    def _call_api(self, system_prompt: str, history: list[AgentMessage], tools: list[dict]) -> AgentMessage:
        """Make a single API call and return the model's reply.

        This is the only method subclasses must implement. It should raise
        on failure; _call_with_retry handles retries and logging.
        """

    # ------------------------------------------------------------------ #
    # Shared implementations                                               #
    # ------------------------------------------------------------------ #

    def _call_with_retry(self, system_prompt: str, history: list[AgentMessage]) -> AgentMessage:
        """Retry _call_api up to MAX_RETRIES times with exponential backoff.

        Unlike a one-shot review, a tool-use conversation cannot skip a turn,
        so the final failure raises AgentError instead of returning nothing.
        """
        for attempt in range(self.MAX_RETRIES):
            try:
                return self._call_api(system_prompt, history, TOOL_SPECS)
            except Exception as e:
                if attempt == self.MAX_RETRIES - 1:
                    logger.error(
                        "%s API failed after %d attempts: %s",
                        self.__class__.__name__,
                        self.MAX_RETRIES,
                        e,
                    )
                    raise AgentError(f"{self.__class__.__name__} API failed after {self.MAX_RETRIES} attempts: {e}") from e
                delay = 2**attempt
                logger.warning(
                    "%s API error (attempt %d/%d): %s. Retrying in %ds...",
                    self.__class__.__name__,
                    attempt + 1,
                    self.MAX_RETRIES,
                    e,
                    delay,
                )
                time.sleep(delay)
        raise AgentError(f"{self.__class__.__name__} was configured with no attempts")


def _proposal_error(call: ToolCall) -> str | None:
    try:
        ReviewProposal.from_payload(call.args)
    except InvalidProposal as e:
        return str(e)
    return None
