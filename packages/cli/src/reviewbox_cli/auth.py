"""GitHub token lookup for the review command.

Why several sources:
- CI sets GITHUB_TOKEN; scripts that drive the gh CLI often set GH_TOKEN.
- Developers already signed in with `gh auth login` should not have to mint
  a personal access token just to run a review.

Sources are tried in order and the first non-empty token wins:
  1. GITHUB_TOKEN
  2. GH_TOKEN
  3. `gh auth token`

Posting a review needs "Pull requests: Read and write". Orgs that block
classic PATs need a fine-grained token for that.
"""

from __future__ import annotations

import logging
import os
import subprocess

logger = logging.getLogger(__name__)

_ENV_VARS = ("GITHUB_TOKEN", "GH_TOKEN")


def _from_gh_cli() -> str | None:
    try:
        result = subprocess.run(["gh", "auth", "token"], capture_output=True, text=True, timeout=5)
    except (FileNotFoundError, subprocess.TimeoutExpired):
        logger.debug("gh CLI not available")
        return None
    if result.returncode != 0:
        logger.debug("gh auth token exited %d: %s", result.returncode, result.stderr.strip())
        return None
    return result.stdout.strip() or None


def resolve_github_token() -> str | None:
    """Return the first token found, or None. Callers turn None into a UsageError."""
    for name in _ENV_VARS:
        token = os.environ.get(name)
        if token:
            logger.debug("Using GitHub token from %s", name)
            return token

    token = _from_gh_cli()
    if token:
        logger.debug("Using GitHub token from the gh CLI session")
    return token
