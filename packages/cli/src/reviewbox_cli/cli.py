"""CLI entry point for reviewbox.

Commands:
  review         — review a pull request in a disposable sandbox, post only after approval
  refresh-image  — rebuild the base image every review forks from
"""

from __future__ import annotations

import importlib.metadata
import logging

import click
from rich.logging import RichHandler

from reviewbox_cli.commands.refresh import refresh_cmd
from reviewbox_cli.commands.review import review_cmd


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=verbose, show_path=verbose)],
        force=True,
    )
    # PyGithub and urllib3 log every request at DEBUG.
    for noisy in ("github", "urllib3"):
        logging.getLogger(noisy).setLevel(logging.INFO if verbose else logging.WARNING)


@click.group()
@click.version_option(
    version=importlib.metadata.version("reviewbox"),
    prog_name="reviewbox",
)
@click.option(
    "--config",
    "config_path",
    default=".reviewbox.yml",
    show_default=True,
    help="Path to the configuration file.",
    envvar="REVIEWBOX_CONFIG",
)
@click.option("--verbose", "-v", is_flag=True, help="Show debug logging.")
@click.pass_context
def main(ctx: click.Context, config_path: str, verbose: bool):
    """Review GitHub pull requests with an AI agent inside a disposable sandbox."""
    _setup_logging(verbose)
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path


main.add_command(review_cmd)
main.add_command(refresh_cmd)
