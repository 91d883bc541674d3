"""GitHub access for one pull request: read its context, post the approved review.

Why reads retry anonymously:
- Some orgs block classic personal access tokens, so an authenticated read of
  a public repo can fail with 401/403 while the same read without a token
  succeeds. Reads therefore get one unauthenticated retry.
- Writes never do: posting a review always needs a token that GitHub accepts.
"""

from __future__ import annotations

import logging
import re
from typing import Callable, TypeVar

import requests
from github import Auth, Github, GithubException, UnknownObjectException

from reviewbox_core.errors import AccessDenied, ReviewError
from reviewbox_core.models import (
    ChangedFile,
    ChangeRequestContext,
    CheckRun,
    ExistingReview,
    LinkedIssue,
    RepoRef,
    ReviewProposal,
    ReviewThreadComment,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

_LINKED_ISSUE_RE = re.compile(r"(?:fix(?:es)?|close[sd]?|resolve[sd]?)\s+#(\d+)", re.IGNORECASE)

_EVENTS = {
    "approve": "APPROVE",
    "comment": "COMMENT",
    "request_changes": "REQUEST_CHANGES",
}


def _token_guidance(status: int, details: str, full_name: str | None = None) -> str:
    lines = [
        f"GitHub API returned {status}.",
        "  → Some orgs block classic PATs; use a fine-grained token instead",
        '  → Fine-grained token: set "Pull requests" to "Read and write"',
    ]
    if full_name:
        lines.append(f"  → Make sure the token has access to {full_name}")
    lines.append(f"  → Details: {details}")
    return "\n".join(lines)


class ChangeRequestClient:
    """Thin wrapper over PyGithub holding an authenticated and an anonymous client."""

    def __init__(self, token: str | None, github: Github | None = None, public: Github | None = None):
        self.token = token
        self._github = github or (Github(auth=Auth.Token(token)) if token else Github())
        self._public = public or Github()

    def _read(self, fn: Callable[[Github], T]) -> T:
        try:
            return fn(self._github)
        except GithubException as e:
            if e.status not in (401, 403) or not self.token:
                raise
            logger.info("GitHub returned %s with a token; retrying without auth", e.status)
            try:
                return fn(self._public)
            except GithubException as anon:
                # Anonymous 404s mean the repo is private, not that the object is missing.
                logger.debug("Anonymous retry failed with %s", anon.status)
                raise AccessDenied(_token_guidance(e.status, _details(e))) from e

    # ------------------------------------------------------------------ #
    # Reads                                                                #
    # ------------------------------------------------------------------ #

    def fetch_pull(self, owner: str, repo: str, number: int):
        try:
            return self._read(lambda gh: gh.get_repo(f"{owner}/{repo}", lazy=True).get_pull(number))
        except UnknownObjectException as e:
            raise ReviewError(f"#{number} is not a pull request. This tool only reviews PRs.") from e

    def fetch_files(self, owner: str, repo: str, number: int) -> list[ChangedFile]:
        def _files(gh: Github) -> list[ChangedFile]:
            pr = gh.get_repo(f"{owner}/{repo}", lazy=True).get_pull(number)
            return [
                ChangedFile(
                    filename=f.filename,
                    status=f.status,
                    additions=f.additions,
                    deletions=f.deletions,
                    patch=f.patch,
                )
                for f in pr.get_files()
            ]

        return self._read(_files)

    def fetch_linked_issues(self, owner: str, repo: str, body: str | None) -> list[LinkedIssue]:
        """Fetch issues referenced as ``fixes #N`` / ``closes #N`` / ``resolves #N``."""
        numbers: list[int] = []
        for match in _LINKED_ISSUE_RE.finditer(body or ""):
            n = int(match.group(1))
            if n not in numbers:
                numbers.append(n)

        issues = []
        for n in numbers:
            try:
                issue = self._read(lambda gh, n=n: gh.get_repo(f"{owner}/{repo}", lazy=True).get_issue(n))
            except (GithubException, AccessDenied) as e:
                logger.debug("Skipping linked issue #%d: %s", n, e)
                continue
            issues.append(LinkedIssue(number=n, title=issue.title, body=issue.body or ""))
        return issues

    def fetch_check_runs(self, owner: str, repo: str, sha: str) -> list[CheckRun]:
        def _runs(gh: Github) -> list[CheckRun]:
            commit = gh.get_repo(f"{owner}/{repo}", lazy=True).get_commit(sha)
            return [
                CheckRun(name=r.name, status=r.status, conclusion=r.conclusion, html_url=r.html_url or "")
                for r in commit.get_check_runs()
            ]

        return self._read(_runs)

    def fetch_existing_reviews(self, owner: str, repo: str, number: int) -> list[ExistingReview]:
        def _reviews(gh: Github) -> list[ExistingReview]:
            pr = gh.get_repo(f"{owner}/{repo}", lazy=True).get_pull(number)
            return [
                ExistingReview(
                    user=r.user.login if r.user else "ghost",
                    state=r.state,
                    body=r.body or "",
                    submitted_at=r.submitted_at.isoformat() if r.submitted_at else "",
                )
                for r in pr.get_reviews()
            ]

        return self._read(_reviews)

    def fetch_review_comments(self, owner: str, repo: str, number: int) -> list[ReviewThreadComment]:
        def _comments(gh: Github) -> list[ReviewThreadComment]:
            pr = gh.get_repo(f"{owner}/{repo}", lazy=True).get_pull(number)
            return [
                ReviewThreadComment(
                    user=c.user.login if c.user else "ghost",
                    path=c.path,
                    body=c.body or "",
                    line=c.line if c.line is not None else c.original_line,
                )
                for c in pr.get_review_comments()
            ]

        return self._read(_comments)

    def build_context(self, owner: str, repo: str, number: int) -> ChangeRequestContext:
        """Gather everything the agent is told up front into one frozen context."""
        pr = self.fetch_pull(owner, repo, number)
        head, base = pr.head, pr.base
        head_repo = head.repo
        head_ref = RepoRef(
            ref=head.ref,
            sha=head.sha,
            # A deleted fork leaves head.repo empty; treat it as same-origin.
            full_name=head_repo.full_name if head_repo else base.repo.full_name,
            clone_url=head_repo.clone_url if head_repo else base.repo.clone_url,
        )
        base_ref = RepoRef(ref=base.ref, sha=base.sha, full_name=base.repo.full_name, clone_url=base.repo.clone_url)

        return ChangeRequestContext(
            owner=owner,
            repo=repo,
            number=number,
            title=pr.title,
            body=pr.body or "",
            author=pr.user.login if pr.user else "ghost",
            html_url=pr.html_url,
            head=head_ref,
            base=base_ref,
            additions=pr.additions,
            deletions=pr.deletions,
            changed_files=pr.changed_files,
            files=tuple(self.fetch_files(owner, repo, number)),
            linked_issues=tuple(self.fetch_linked_issues(owner, repo, pr.body)),
            check_runs=tuple(self.fetch_check_runs(owner, repo, head.sha)),
            existing_reviews=tuple(self.fetch_existing_reviews(owner, repo, number)),
            review_comments=tuple(self.fetch_review_comments(owner, repo, number)),
        )

    # ------------------------------------------------------------------ #
    # Writes                                                               #
    # ------------------------------------------------------------------ #

    def post_review(self, owner: str, repo: str, number: int, commit_sha: str, proposal: ReviewProposal) -> str:
        """Post ``proposal`` exactly as given against ``commit_sha``. Returns the review URL."""
        if not self.token:
            raise AccessDenied("GITHUB_TOKEN is required to post reviews.")

        comments = []
        for c in proposal.comments:
            item = {"path": c.path, "line": c.line, "side": "RIGHT", "body": c.body}
            if c.start_line is not None:
                item["start_line"] = c.start_line
                item["start_side"] = "RIGHT"
            comments.append(item)

        full_name = f"{owner}/{repo}"
        try:
            gh_repo = self._github.get_repo(full_name, lazy=True)
            pr = gh_repo.get_pull(number)
            kwargs = {
                "commit": gh_repo.get_commit(commit_sha),
                "body": proposal.summary,
                "event": _EVENTS.get(proposal.verdict, "COMMENT"),
            }
            if comments:
                kwargs["comments"] = comments
            review = pr.create_review(**kwargs)
        except GithubException as e:
            if e.status in (401, 403):
                raise AccessDenied(_token_guidance(e.status, _details(e), full_name)) from e
            raise ReviewError(f"Failed to post review: {e.status}: {_details(e)}") from e
        except requests.RequestException as e:
            raise ReviewError(f"Failed to post review: {e}") from e

        logger.info("Posted %s review on %s#%d", proposal.verdict, full_name, number)
        return review.html_url


def _details(e: GithubException) -> str:
    data = e.data
    if isinstance(data, dict):
        return data.get("message") or str(data)
    return str(data)
