import os
from pathlib import Path
from typing import Optional

import yaml

from reviewbox_sandbox.models import ImageSource
from reviewbox_sandbox.settings import SandboxSettings

DEFAULT_CONFIG: dict = {
    "model": "anthropic",
    "model_name": None,  # None = provider default
    "max_turns": 60,
    "max_patch_chars": 3000,
    "provider": "http",  # "http" (remote platform) or "local"
    "platform_url": None,
    "local_root": "~/.cache/reviewbox/platform",
    "image": {
        "repo_url": "https://github.com/langchain-ai/langchainjs.git",
        "branch": "main",
        "build_command": None,  # None = `pnpm <install filters> build`
        "test_command": "pnpm --filter langchain test",
    },
    "sandbox": {},  # overrides for reviewbox_sandbox.settings.SandboxSettings
}

# The local provider runs commands with the platform root as cwd, so its paths are relative.
_LOCAL_PATHS = {"mount_path": "data/repo", "store_dir": "data/pnpm-store"}


def load_config(config_path: str = ".reviewbox.yml", cli_overrides: Optional[dict] = None) -> dict:
    """
    Load configuration by merging (in order of precedence):
      1. Built-in defaults
      2. .reviewbox.yml in the current directory (nested sections merged key by key)
      3. SANDBOX_PROVIDER / SANDBOX_API_URL environment variables
      4. CLI argument overrides
    """
    config = {
        **DEFAULT_CONFIG,
        "image": dict(DEFAULT_CONFIG["image"]),
        "sandbox": dict(DEFAULT_CONFIG["sandbox"]),
    }

    path = Path(config_path)
    if path.exists():
        with open(path) as f:
            file_config = yaml.safe_load(f) or {}
        for key, value in file_config.items():
            if isinstance(config.get(key), dict) and isinstance(value, dict):
                config[key].update(value)
            else:
                config[key] = value

    if os.environ.get("SANDBOX_PROVIDER"):
        config["provider"] = os.environ["SANDBOX_PROVIDER"]
    if os.environ.get("SANDBOX_API_URL"):
        config["platform_url"] = os.environ["SANDBOX_API_URL"]

    if cli_overrides:
        for key, value in cli_overrides.items():
            if value is not None:
                config[key] = value

    # Resolve credentials from environment variables
    config["github_token"] = os.environ.get("GITHUB_TOKEN")
    config["anthropic_api_key"] = os.environ.get("ANTHROPIC_API_KEY")
    config["openai_api_key"] = os.environ.get("OPENAI_API_KEY")
    config["sandbox_api_token"] = os.environ.get("SANDBOX_API_TOKEN")

    return config


def sandbox_settings(config: dict) -> SandboxSettings:
    """SandboxSettings for the configured provider.

    Explicit ``sandbox.mount_path`` / ``sandbox.store_dir`` always win; the
    local provider otherwise gets paths relative to its platform root.
    """
    settings = SandboxSettings.from_config(config)
    if config.get("provider") == "local":
        section = config.get("sandbox") or {}
        for key, value in _LOCAL_PATHS.items():
            if section.get(key) is None:
                setattr(settings, key, value)
    return settings


def image_source(config: dict, settings: SandboxSettings) -> ImageSource:
    image = config.get("image") or {}
    build_command = image.get("build_command")
    if build_command is None:
        build_command = f"pnpm {settings.filter_args()} build"
    return ImageSource(
        repo_url=image.get("repo_url") or DEFAULT_CONFIG["image"]["repo_url"],
        branch=image.get("branch") or "main",
        build_command=build_command,
        test_command=image.get("test_command") or "",
    )
