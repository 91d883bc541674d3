"""review command: review one pull request inside a disposable sandbox."""

from __future__ import annotations

import re

import click
from rich.console import Console

from reviewbox_core.errors import ReviewError
from reviewbox_sandbox.errors import SandboxError

console = Console()

_URL_RE = re.compile(r"github\.com/([^/]+)/([^/]+)/(?:pull|issues)/(\d+)")
_SHORTHAND_RE = re.compile(r"^([^/\s]+)/([^#\s]+)#(\d+)$")


def parse_reference(ref: str) -> tuple[str, str, int]:
    """Parse ``owner/repo#123`` or a GitHub pull/issue URL into (owner, repo, number)."""
    ref = ref.strip()
    match = _URL_RE.search(ref) or _SHORTHAND_RE.match(ref)
    if not match:
        raise click.BadParameter(
            f"Could not parse {ref!r}. Use owner/repo#123 or https://github.com/owner/repo/pull/123.",
            param_hint="REFERENCE",
        )
    owner, repo, number = match.groups()
    return owner, repo, int(number)


@click.command("review")
@click.argument("reference")
@click.option("--branch", default=None, help="Check out this branch instead of the PR's head branch.")
@click.option(
    "--model",
    type=click.Choice(["anthropic", "openai"]),
    default=None,
    help="AI model provider. Overrides config file.",
)
@click.option("--max-turns", type=click.IntRange(min=1), default=None, help="Maximum agent turns.")
@click.option(
    "--config",
    "config_path",
    default=None,
    help="Path to the configuration file. Overrides the global --config.",
)
@click.pass_context
def review_cmd(
    ctx,
    reference: str,
    branch: str | None,
    model: str | None,
    max_turns: int | None,
    config_path: str | None,
):
    """Review a pull request in a sandbox and post the review after you approve it.

    REFERENCE is owner/repo#123 or a GitHub pull request URL.

    \b
    Required environment variables:
      GITHUB_TOKEN         GitHub token (or use gh CLI)
      ANTHROPIC_API_KEY    Required when using --model anthropic
      OPENAI_API_KEY       Required when using --model openai
      SANDBOX_API_TOKEN    Required for the http sandbox provider
      SANDBOX_API_URL      Platform endpoint for the http sandbox provider
    """
    from reviewbox_cli.auth import resolve_github_token
    from reviewbox_cli.platforms import build_platform, check_platform_credentials
    from reviewbox_core.config import load_config, sandbox_settings
    from reviewbox_core.display import print_pr_summary
    from reviewbox_core.gh.pull_request import ChangeRequestClient
    from reviewbox_core.reviewer import run_review

    owner, repo, number = parse_reference(reference)

    path = config_path or (ctx.obj or {}).get("config_path", ".reviewbox.yml")
    config = load_config(path, cli_overrides={"model": model, "max_turns": max_turns})

    # Resolve token: env var first, then gh CLI session.
    token = resolve_github_token()
    if not token:
        raise click.UsageError(
            "No GitHub token found. Set GITHUB_TOKEN or run `gh auth login` first.\n"
            "Orgs that block classic PATs need a fine-grained token with "
            '"Pull requests" set to "Read and write".'
        )
    config["github_token"] = token

    if config["model"] == "anthropic" and not config.get("anthropic_api_key"):
        raise click.UsageError("ANTHROPIC_API_KEY environment variable is not set.")
    if config["model"] == "openai" and not config.get("openai_api_key"):
        raise click.UsageError("OPENAI_API_KEY environment variable is not set.")
    check_platform_credentials(config)
    try:
        sandbox_settings(config)
    except ValueError as e:
        raise click.UsageError(str(e)) from e

    client = ChangeRequestClient(token)
    try:
        pr_context = client.build_context(owner, repo, number)
    except ReviewError as e:
        raise click.ClickException(str(e)) from e

    print_pr_summary(pr_context, head_ref=branch)

    platform = build_platform(config)
    try:
        outcome = run_review(pr_context, config, platform=platform, client=client, branch=branch)
    except (SandboxError, ReviewError, ImportError) as e:
        raise click.ClickException(str(e)) from e
    finally:
        platform.close()

    if outcome.status == "post_failed":
        ctx.exit(1)
