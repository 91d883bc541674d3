"""Prompt construction for the review agent.

The system prompt is static guidance plus where the repository lives; the
user message carries everything specific to this pull request.
"""

from __future__ import annotations

from reviewbox_core.models import ChangeRequestContext
from reviewbox_sandbox.models import SetupResult

_REVIEW_STATE_ICONS = {"APPROVED": "✅", "CHANGES_REQUESTED": "🔴"}


def build_system_prompt(ctx: ChangeRequestContext, repo_dir: str, head_ref: str | None = None) -> str:
    head_ref = head_ref or ctx.head.ref
    head_remote = "pr-fork" if ctx.is_fork else "origin"
    fork_note = (
        f"\nThis PR comes from a fork (`{ctx.head.full_name}`); its branch was fetched from the "
        f"`{head_remote}` remote, not from `origin`.\n"
        if ctx.is_fork
        else ""
    )

    return f"""You are an expert code reviewer working inside an isolated sandbox.
You have been given a pull request to review. Your job is to:

1. Understand the changes by reading the diff and the relevant source files
2. Look for bugs, logic errors, unhandled edge cases, security issues and style problems
3. Check CI status and changeset presence (details are in the first message)
4. Optionally run tests when a suite exists and running it is practical
5. Submit a code review with the submit_review tool

## Environment
The repository is at `{repo_dir}`, on a private copy that is discarded after the review.
Setup has already been done for you: branch `{head_ref}` is checked out from
`{head_remote}/{head_ref}`, `origin/{ctx.base.ref}` has been fetched, and dependencies were
installed after checkout. The `origin` remote points to `{ctx.base.full_name}`.
{fork_note}
Do NOT clone the repository again and do NOT check out `{ctx.base.ref}`.
Run `git diff origin/{ctx.base.ref}...HEAD` to see all changes.
If `{repo_dir}/AGENTS.md` exists, read it first: it holds project-specific guidelines
(test commands, coding conventions).

## Tone and wording
- Start with a short thank-you.
- Do not re-explain what the code does or how the fix works; the author knows, and the diff shows it.
- Do not praise implementation quality or restate the PR description.
- Keep approvals short: "LGTM 👍" plus a thank-you is enough. No "Summary", "Analysis" or "Risk" sections.
- Skip code-quality commentary unless it is severe and not caught by linters or CI.
- Every inline comment must be actionable: ask the author to fix, handle, rename, test or reconsider
  something specific. No praise-only or narration comments. An empty comments list is fine.
- When you do leave feedback, suggest a solution.
- In ```suggestion blocks, reproduce the original line's leading whitespace exactly.
- If you have several inline comments, one sentence in the summary naming their theme is enough.

## Follow-up reviews
If the first message includes earlier reviews or review comments, read them first. Acknowledge
feedback the author has addressed, do not repeat it, and continue the conversation rather than
starting over.

## CI checks
If checks are failing, investigate the failure and tell the author how to fix it.
If everything passes, do not mention CI.

## Changesets
If no changeset was found and the PR has user-facing changes, say so: "Looks like this PR is
missing a changeset. You can add one by running `npx changeset` and committing the generated file."
Do not mention changesets for internal-only changes (CI, tests, docs) or when one is present.

## Tools
- Use `read_file` and `ls` to explore, `execute` for git and test commands.
- Use `write_todos` to keep track of what you still want to check.
- When you are done, call `submit_review` once with the complete review. Never submit partial reviews.
- `line` and `start_line` refer to line numbers in the new version of the file."""


def build_user_message(
    ctx: ChangeRequestContext,
    setup: SetupResult | None = None,
    max_patch_chars: int = 3000,
    head_ref: str | None = None,
) -> str:
    parts: list[str] = []

    parts.append(f"# Pull Request: {ctx.title}\n")
    parts.append(f"**Author:** @{ctx.author}")
    parts.append(f"**Branch:** `{head_ref or ctx.head.ref}` → `{ctx.base.ref}`")
    parts.append(f"**Changes:** {ctx.changed_files} files, +{ctx.additions} / -{ctx.deletions}")
    parts.append(f"**URL:** {ctx.html_url}\n")

    if setup is not None and not setup.deps_installed:
        parts.append("## Sandbox setup\n")
        parts.append(
            "⚠️ `pnpm install` failed during setup. Reading code works, but tests may not run until "
            "you re-run the install yourself. Last output:\n"
        )
        parts.append(f"```\n{setup.deps_output.strip()}\n```\n")

    if ctx.body:
        parts.append(f"## PR Description\n\n{ctx.body}\n")

    if ctx.linked_issues:
        parts.append("## Linked Issues\n")
        for issue in ctx.linked_issues:
            parts.append(f"### #{issue.number}: {issue.title}\n\n{issue.body}\n\n---\n")

    parts.append("## Changed Files\n")
    for f in ctx.files:
        parts.append(f"### {f.filename} ({f.status}, +{f.additions}/-{f.deletions})\n")
        if f.patch:
            patch = f.patch
            if len(patch) > max_patch_chars:
                patch = patch[:max_patch_chars] + "\n... (truncated, read full file in sandbox)"
            parts.append(f"```diff\n{patch}\n```\n")

    if ctx.check_runs:
        parts.append("## CI Check Status\n")
        failing, pending, passing = ctx.failing_checks, ctx.pending_checks, ctx.passing_checks
        if failing:
            parts.append(f"**⚠️ Failing checks ({len(failing)}):**")
            for run in failing:
                parts.append(f"- ❌ `{run.name}` — {run.conclusion} ([logs]({run.html_url}))")
            parts.append("")
        if pending:
            parts.append(f"**⏳ Pending checks ({len(pending)}):**")
            for run in pending:
                parts.append(f"- ⏳ `{run.name}` — {run.status}")
            parts.append("")
        if passing:
            parts.append(f"**✅ Passing checks: {len(passing)}**\n")

    if not ctx.has_changeset:
        parts.append("## Changeset\n")
        parts.append(
            "⚠️ No changeset file was found in this PR. If it introduces user-facing changes, "
            "a changeset should be added.\n"
        )

    if ctx.existing_reviews or ctx.review_comments:
        parts.append("## Existing Review History\n")
        parts.append(
            "**This PR has been reviewed before. Read the history below and follow the conversation naturally.**\n"
        )
        for review in ctx.existing_reviews:
            icon = _REVIEW_STATE_ICONS.get(review.state, "💬")
            parts.append(f"### {icon} Review by @{review.user} ({review.state}) — {review.submitted_at}\n")
            if review.body:
                parts.append(f"{review.body}\n")
        if ctx.review_comments:
            parts.append("### Inline review comments\n")
            for c in ctx.review_comments:
                where = f"{c.path}:{c.line}" if c.line else c.path
                parts.append(f"- **@{c.user}** on `{where}`:\n  {c.body}\n")

    parts.append(
        "\nPlease review the changes thoroughly and submit your review with the submit_review tool. "
        "The branch is already checked out in the sandbox."
    )
    return "\n".join(parts)
