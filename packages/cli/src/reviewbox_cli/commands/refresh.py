"""refresh-image command: rebuild the base image reviews fork from."""

from __future__ import annotations

import click
from rich.console import Console

from reviewbox_sandbox.errors import SandboxError

console = Console()


@click.command("refresh-image")
@click.option("--branch", default=None, help="Branch to build the image from. Overrides config file.")
@click.option(
    "--config",
    "config_path",
    default=None,
    help="Path to the configuration file. Overrides the global --config.",
)
@click.pass_context
def refresh_cmd(ctx, branch: str | None, config_path: str | None):
    """Rebuild the base image: update the repo, install, build, test, re-snapshot.

    Safe to run repeatedly. Deletes leftover review forks before replacing
    the snapshot. Test failures are reported but do not block publishing;
    a build failure or a tree that stays dirty after the build does.
    """
    from reviewbox_cli.platforms import build_platform
    from reviewbox_core.config import image_source, load_config, sandbox_settings
    from reviewbox_sandbox.store import EnvironmentStore

    path = config_path or (ctx.obj or {}).get("config_path", ".reviewbox.yml")
    config = load_config(path)
    if branch:
        config["image"]["branch"] = branch

    try:
        settings = sandbox_settings(config)
    except ValueError as e:
        raise click.UsageError(str(e)) from e
    source = image_source(config, settings)
    platform = build_platform(config)

    console.print(f"[bold]Refreshing {settings.snapshot_slug} from {source.repo_url}@{source.branch}[/bold]")
    try:
        result = EnvironmentStore(platform, settings).refresh(source)
    except SandboxError as e:
        raise click.ClickException(str(e)) from e
    finally:
        platform.close()

    console.print()
    console.print(f"  Snapshot:  {result.image.slug}")
    console.print(f"  Commit:    {result.image.source_commit or 'unknown'}")
    console.print(f"  Disk:      {result.disk_usage}")
    console.print(f"  Tests:     {'[green]passed[/green]' if result.tests_passed else '[yellow]some failed[/yellow]'}")
    if result.was_dirty:
        console.print("  [yellow]Build left dirty files; they were reset before snapshotting.[/yellow]")
    leftovers = [c for c in result.cleanup if not c.ok]
    if leftovers:
        console.print(f"  [yellow]{len(leftovers)} fork(s) could not be deleted:[/yellow]")
        for item in leftovers:
            console.print(f"    {item.target}: {item.diagnostic}")
    console.print("[green]Base image refreshed.[/green]")
