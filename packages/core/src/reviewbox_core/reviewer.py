"""Core review orchestration: provision → set up → agent → approval → teardown."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone

from rich.console import Console

from reviewbox_core.agent.loop import AgentLoop
from reviewbox_core.agent.tools import ToolBox
from reviewbox_core.approval import ApprovalGate, Phase, RunState
from reviewbox_core.config import sandbox_settings
from reviewbox_core.display import display_proposal, step
from reviewbox_core.gh.pull_request import ChangeRequestClient
from reviewbox_core.models import ChangeRequestContext, ReviewProposal
from reviewbox_core.prompts import build_system_prompt, build_user_message
from reviewbox_core.providers.anthropic import AnthropicAgent
from reviewbox_core.providers.openai import OpenAIAgent
from reviewbox_sandbox.base import BasePlatform
from reviewbox_sandbox.bridge import ExecutionBridge
from reviewbox_sandbox.models import CleanupResult
from reviewbox_sandbox.session import SessionProvisioner
from reviewbox_sandbox.store import EnvironmentStore

console = Console()
logger = logging.getLogger(__name__)


@dataclass
class ReviewOutcome:
    """Result returned by run_review.

    ``status`` is one of "posted", "post_failed", "cancelled" or "no_review".
    ``cleanup`` lists what teardown did, including anything it failed to delete.
    """

    repo: str
    pr_number: int
    head_sha: str
    run_id: str
    status: str
    phase: Phase
    proposal: ReviewProposal | None = None
    url: str | None = None
    error: str | None = None
    deps_installed: bool = True
    cleanup: list[CleanupResult] = field(default_factory=list)
    reviewed_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())


def get_agent(config: dict):
    model = config["model"]
    if model == "anthropic":
        return AnthropicAgent(api_key=config["anthropic_api_key"], model=config.get("model_name"))
    if model == "openai":
        return OpenAIAgent(api_key=config["openai_api_key"], model=config.get("model_name"))
    raise ValueError(f"Unknown model provider: {model!r}. Choose 'anthropic' or 'openai'.")


def new_run_id(pr_number: int) -> str:
    return f"review-{pr_number}-{int(time.time() * 1000)}"


def run_review(
    ctx: ChangeRequestContext,
    config: dict,
    platform: BasePlatform,
    client: ChangeRequestClient,
    agent=None,
    ask=None,
    branch: str | None = None,
    renderer=None,
) -> ReviewOutcome:
    """Review one pull request in a fresh fork of the base image.

    The fork and session are torn down on every exit path, including
    ProvisioningError, ExecutionTimeout, AgentError and Ctrl-C, all of which
    propagate to the caller after teardown.
    """
    settings = sandbox_settings(config)
    store = EnvironmentStore(platform, settings)
    provisioner = SessionProvisioner(platform, store, settings)
    state = RunState(run_id=new_run_id(ctx.number))
    agent = agent if agent is not None else get_agent(config)

    step("📦", "Provisioning sandbox...")
    try:
        with provisioner.provision() as session:
            setup = provisioner.setup(session, ctx.checkout_target(), branch_override=branch)

            toolbox = ToolBox(ExecutionBridge(platform, session, settings))
            loop = AgentLoop(agent, toolbox, renderer=renderer, max_turns=config.get("max_turns", 60))

            step("🤖", "Agent is reviewing the PR inside the sandbox...")
            result = loop.run(
                build_system_prompt(ctx, settings.mount_path, head_ref=branch),
                build_user_message(ctx, setup, max_patch_chars=config.get("max_patch_chars", 3000), head_ref=branch),
                state,
            )

            if result.proposal is None:
                step("⚠️", "Agent finished without submitting a review.")
                status = "no_review"
            else:
                gate = ApprovalGate(state, ask=ask)
                gate.capture(result.proposal)
                display_proposal(result.proposal)
                if gate.decide():
                    step("📤", "Posting review to GitHub...")
                gate.finalize(
                    lambda proposal: client.post_review(ctx.owner, ctx.repo, ctx.number, ctx.head.sha, proposal)
                )
                status = _status_of(state)
    finally:
        for item in provisioner.cleanup:
            if not item.ok:
                console.print(f"[yellow]Cleanup left {item.target} behind: {item.diagnostic}[/yellow]")

    if status == "posted":
        console.print(f"[green]  ✓ Review posted: {state.post_url}[/green]")
    elif status == "post_failed":
        console.print(f"[red]  ✗ Failed to post review: {state.post_error}[/red]")
    elif status == "cancelled":
        step("🚫", "Review cancelled. Nothing was posted to GitHub.")

    return ReviewOutcome(
        repo=ctx.full_name,
        pr_number=ctx.number,
        head_sha=ctx.head.sha,
        run_id=state.run_id,
        status=status,
        phase=state.phase,
        proposal=state.proposal,
        url=state.post_url,
        error=state.post_error,
        deps_installed=setup.deps_installed,
        cleanup=list(provisioner.cleanup),
    )


def _status_of(state: RunState) -> str:
    if state.phase is Phase.CANCELLED:
        return "cancelled"
    return "post_failed" if state.post_error else "posted"
