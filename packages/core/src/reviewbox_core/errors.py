"""Errors raised by the review pipeline (sandbox errors live in reviewbox_sandbox.errors)."""

from __future__ import annotations


class ReviewError(Exception):
    """Base exception for reviewbox_core."""


class AccessDenied(ReviewError):
    """GitHub rejected the credentials. Reads only get here after the anonymous retry failed."""


class InvalidProposal(ReviewError, ValueError):
    """A submit_review payload that cannot be shown to a human as-is."""


class InvalidTransition(ReviewError):
    """The approval gate was asked to move between phases it does not connect."""


class AgentError(ReviewError):
    """The model provider kept failing after all retries."""
