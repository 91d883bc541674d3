"""Terminal rendering for a review run."""

from __future__ import annotations

from rich.console import Console
from rich.markup import escape

from reviewbox_core.models import ChangeRequestContext, ReviewProposal

console = Console()

_VERDICT_BADGES = {
    "approve": "[bold white on green] APPROVE [/bold white on green]",
    "comment": "[bold white on yellow] COMMENT [/bold white on yellow]",
    "request_changes": "[bold white on red] REQUEST CHANGES [/bold white on red]",
}


def header(text: str) -> None:
    line = "─" * 60
    console.print(f"\n[cyan]{line}[/cyan]")
    console.print(f"[bold cyan]  {escape(text)}[/bold cyan]")
    console.print(f"[cyan]{line}[/cyan]\n")


def step(icon: str, text: str) -> None:
    console.print(f"[bold]{icon}  {escape(text)}[/bold]")


def info(text: str) -> None:
    console.print(f"[dim]   {escape(text)}[/dim]")


class ConsoleRenderer:
    """What the agent loop prints while the agent works."""

    def __init__(self, out: Console | None = None):
        self.console = out or console

    def tool_call(self, name: str, preview: str) -> None:
        self.console.print(f"[yellow]  🔧 {escape(name)}[/yellow][dim]({escape(preview)})[/dim]")

    def pause(self, name: str) -> None:
        self.console.print(f"\n[yellow]  📝 {escape(name)}[/yellow][dim] (paused — waiting for your approval)[/dim]")

    def rejected_proposal(self, reason: str) -> None:
        self.console.print(f"[red]  ✗ submit_review rejected: {escape(reason)}[/red]")

    def tool_result(self, preview: str) -> None:
        self.console.print(f"[dim]  ↳ {escape(preview)}[/dim]")

    def ai_text(self, lines: list[str]) -> None:
        for line in lines:
            self.console.print(f"[blue]  💬 {escape(line)}[/blue]")


def print_pr_summary(ctx: ChangeRequestContext, head_ref: str | None = None) -> None:
    """Pre-run summary so the human knows what is about to be reviewed."""
    header(f"PR #{ctx.number}: {ctx.title}")
    info(f"Author:  @{ctx.author}")
    info(f"Branch:  {head_ref or ctx.head.ref} → {ctx.base.ref}")
    if ctx.is_fork:
        info(f"Fork:    {ctx.head.full_name}")
    info(f"Changes: {ctx.changed_files} files, +{ctx.additions} / -{ctx.deletions}")

    added = sum(1 for f in ctx.files if f.status == "added")
    removed = sum(1 for f in ctx.files if f.status == "removed")
    modified = len(ctx.files) - added - removed
    info(f"Files:   +{added} added, -{removed} removed, ~{modified} modified")

    if ctx.linked_issues:
        info("Linked:  " + ", ".join(f"#{i.number}" for i in ctx.linked_issues))
    if ctx.check_runs:
        failing, passing = len(ctx.failing_checks), len(ctx.passing_checks)
        info(f"CI:      {passing} passing, {failing} failing, {len(ctx.pending_checks)} pending")
    if ctx.existing_reviews:
        info(f"Reviews: {len(ctx.existing_reviews)} existing")
    info(f"Changeset: {'yes' if ctx.has_changeset else 'no'}")
    console.print()


def display_proposal(proposal: ReviewProposal) -> None:
    header("PROPOSED REVIEW")
    console.print(f"  Verdict: {_VERDICT_BADGES.get(proposal.verdict, escape(proposal.verdict))}\n")

    console.print("[bold]  Summary:[/bold]")
    for line in proposal.summary.split("\n"):
        console.print(f"[dim]  {escape(line)}[/dim]")
    console.print()

    if not proposal.comments:
        console.print("[dim]  No line-specific comments.[/dim]\n")
        return

    console.print(f"[bold]  Line comments ({len(proposal.comments)}):[/bold]\n")
    for i, comment in enumerate(proposal.comments, 1):
        console.print(f"  [cyan]{i}.[/cyan] [bold]{escape(comment.location)}[/bold]")
        for line in comment.body.split("\n"):
            console.print(f"     [dim]{escape(line)}[/dim]")
        console.print()
