"""Platform selection from config.

This factory lives in the CLI so neither reviewbox_core nor
reviewbox_sandbox know about the config file format or credentials.
"""

from __future__ import annotations

import click

from reviewbox_sandbox.base import BasePlatform


def check_platform_credentials(config: dict) -> None:
    """Raise UsageError before any provisioning if the platform cannot be reached."""
    provider = config.get("provider", "http")
    if provider == "local":
        return
    if provider != "http":
        raise click.UsageError(f"Unknown sandbox provider: {provider!r}. Choose 'http' or 'local'.")
    if not config.get("platform_url"):
        raise click.UsageError("SANDBOX_API_URL is not set (or platform_url in the config file).")
    if not config.get("sandbox_api_token"):
        raise click.UsageError("SANDBOX_API_TOKEN environment variable is not set.")


def build_platform(config: dict) -> BasePlatform:
    """Instantiate the configured platform client.

    Provider selection:
      provider: http  → HttpPlatform  (platform_url + SANDBOX_API_TOKEN)
      provider: local → LocalPlatform (directories under local_root)
    """
    check_platform_credentials(config)

    if config.get("provider") == "local":
        from reviewbox_sandbox.local import LocalPlatform

        return LocalPlatform(root=config.get("local_root") or "~/.cache/reviewbox/platform")

    from reviewbox_sandbox.remote import HttpPlatform

    return HttpPlatform(base_url=config["platform_url"], token=config["sandbox_api_token"])
