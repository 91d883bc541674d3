"""Approval gate: the only path from a captured proposal to a posted review.

Phases:
    RUNNING → PENDING_APPROVAL → APPROVED → FINALIZED
                               → REJECTED → CANCELLED

The run state lives in this process only. Nothing is checkpointed, so a
restart starts a fresh run with nothing pending.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import Callable

import click

from reviewbox_core.errors import InvalidTransition, ReviewError
from reviewbox_core.models import ReviewProposal

logger = logging.getLogger(__name__)


class Phase(str, enum.Enum):
    RUNNING = "running"
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    REJECTED = "rejected"
    FINALIZED = "finalized"
    CANCELLED = "cancelled"


_TRANSITIONS = {
    Phase.RUNNING: {Phase.PENDING_APPROVAL},
    Phase.PENDING_APPROVAL: {Phase.APPROVED, Phase.REJECTED},
    Phase.APPROVED: {Phase.FINALIZED},
    Phase.REJECTED: {Phase.CANCELLED},
    Phase.FINALIZED: set(),
    Phase.CANCELLED: set(),
}


@dataclass
class RunState:
    """Per-run bookkeeping: identity, replay dedup, phase, and the outcome of posting."""

    run_id: str
    seen_ids: set[str] = field(default_factory=set)
    phase: Phase = Phase.RUNNING
    proposal: ReviewProposal | None = None
    post_url: str | None = None
    post_error: str | None = None

    def advance(self, to: Phase) -> None:
        if to not in _TRANSITIONS[self.phase]:
            raise InvalidTransition(f"Cannot move from {self.phase.value} to {to.value}")
        logger.debug("Run %s: %s -> %s", self.run_id, self.phase.value, to.value)
        self.phase = to


def _prompt(question: str) -> str:
    return click.prompt(question, default="", show_default=False)


def is_affirmative(answer: str) -> bool:
    return answer.strip().lower() in ("y", "yes")


class ApprovalGate:
    """Holds one captured proposal until a human decides, then posts it or drops it."""

    QUESTION = "  Post this review to GitHub? (y)es / (n)o"

    def __init__(self, state: RunState, ask: Callable[[str], str] | None = None):
        self.state = state
        self._ask = ask or _prompt

    def capture(self, proposal: ReviewProposal) -> None:
        self.state.advance(Phase.PENDING_APPROVAL)
        self.state.proposal = proposal

    def decide(self) -> bool:
        """Ask once. Only y/yes approves; anything else, EOF or Ctrl-C rejects."""
        if self.state.phase is not Phase.PENDING_APPROVAL:
            raise InvalidTransition(f"No proposal is pending (phase: {self.state.phase.value})")
        try:
            answer = self._ask(self.QUESTION)
        except (click.Abort, EOFError, KeyboardInterrupt):
            logger.debug("Approval prompt interrupted; treating as rejection")
            answer = ""
        approved = is_affirmative(answer)
        self.state.advance(Phase.APPROVED if approved else Phase.REJECTED)
        return approved

    def finalize(self, post: Callable[[ReviewProposal], str]) -> RunState:
        """Post the captured proposal if approved; end the run either way.

        ``post`` is called at most once and never retried. Its failure is
        recorded in ``post_error`` and the run still finalizes.
        """
        if self.state.phase is Phase.REJECTED:
            self.state.advance(Phase.CANCELLED)
            return self.state
        if self.state.phase is not Phase.APPROVED:
            raise InvalidTransition(f"Cannot finalize from {self.state.phase.value}")

        try:
            self.state.post_url = post(self.state.proposal)
        except ReviewError as e:
            logger.error("Posting the review failed: %s", e)
            self.state.post_error = str(e)
        self.state.advance(Phase.FINALIZED)
        return self.state
