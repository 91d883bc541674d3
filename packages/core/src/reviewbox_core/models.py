"""Pull request context and review proposal models.

Both are frozen: the context is built once before the agent starts and the
proposal once when the agent calls submit_review. What the human approves
is byte-for-byte what gets posted.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from reviewbox_core.errors import InvalidProposal
from reviewbox_sandbox.models import CheckoutTarget

VERDICTS = ("approve", "comment", "request_changes")


@dataclass(frozen=True)
class RepoRef:
    ref: str
    sha: str
    full_name: str
    clone_url: str


@dataclass(frozen=True)
class ChangedFile:
    filename: str
    status: str  # "added" | "modified" | "removed" | "renamed" | ...
    additions: int = 0
    deletions: int = 0
    patch: str | None = None


@dataclass(frozen=True)
class LinkedIssue:
    number: int
    title: str
    body: str = ""


@dataclass(frozen=True)
class CheckRun:
    name: str
    status: str  # "queued" | "in_progress" | "completed"
    conclusion: str | None = None
    html_url: str = ""


@dataclass(frozen=True)
class ExistingReview:
    user: str
    state: str  # "APPROVED" | "CHANGES_REQUESTED" | "COMMENTED" | ...
    body: str = ""
    submitted_at: str = ""


@dataclass(frozen=True)
class ReviewThreadComment:
    user: str
    path: str
    body: str
    line: int | None = None


@dataclass(frozen=True)
class ChangeRequestContext:
    """Everything the agent is told about the pull request up front."""

    owner: str
    repo: str
    number: int
    title: str
    author: str
    html_url: str
    head: RepoRef
    base: RepoRef
    body: str = ""
    additions: int = 0
    deletions: int = 0
    changed_files: int = 0
    files: tuple[ChangedFile, ...] = ()
    linked_issues: tuple[LinkedIssue, ...] = ()
    check_runs: tuple[CheckRun, ...] = ()
    existing_reviews: tuple[ExistingReview, ...] = ()
    review_comments: tuple[ReviewThreadComment, ...] = ()

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repo}"

    @property
    def is_fork(self) -> bool:
        return self.head.full_name != self.base.full_name

    @property
    def has_changeset(self) -> bool:
        return any(f.filename.startswith(".changeset/") and f.status == "added" for f in self.files)

    @property
    def failing_checks(self) -> list[CheckRun]:
        return [c for c in self.check_runs if c.conclusion in ("failure", "cancelled")]

    @property
    def passing_checks(self) -> list[CheckRun]:
        return [c for c in self.check_runs if c.conclusion == "success"]

    @property
    def pending_checks(self) -> list[CheckRun]:
        return [c for c in self.check_runs if c.status != "completed"]

    def checkout_target(self) -> CheckoutTarget:
        return CheckoutTarget(
            head_ref=self.head.ref,
            base_ref=self.base.ref,
            head_clone_url=self.head.clone_url,
            head_full_name=self.head.full_name,
            base_full_name=self.base.full_name,
        )


@dataclass(frozen=True)
class LineComment:
    """An inline comment on the new side of the diff.

    ``start_line`` is set only for multi-line ranges and must precede ``line``.
    """

    path: str
    line: int
    body: str
    start_line: int | None = None

    @property
    def location(self) -> str:
        if self.start_line is not None:
            return f"{self.path}:{self.start_line}-{self.line}"
        return f"{self.path}:{self.line}"


@dataclass(frozen=True)
class ReviewProposal:
    verdict: str
    summary: str
    comments: tuple[LineComment, ...] = field(default_factory=tuple)

    @classmethod
    def from_payload(cls, payload: dict) -> ReviewProposal:
        """Validate a submit_review argument payload.

        Raises InvalidProposal on anything the GitHub API would reject or that
        would render misleadingly: unknown verdict, missing fields, or a
        range whose start_line is not strictly before line.
        """
        if not isinstance(payload, dict):
            raise InvalidProposal(f"Expected an object, got {type(payload).__name__}")

        verdict = payload.get("verdict")
        if verdict not in VERDICTS:
            raise InvalidProposal(f"verdict must be one of {', '.join(VERDICTS)}; got {verdict!r}")
        summary = payload.get("summary")
        if not isinstance(summary, str):
            raise InvalidProposal("summary must be a string")

        comments = []
        for i, raw in enumerate(payload.get("comments") or [], 1):
            if not isinstance(raw, dict):
                raise InvalidProposal(f"comment {i} must be an object")
            path, line, body = raw.get("path"), raw.get("line"), raw.get("body")
            start_line = raw.get("start_line")
            if not path or not isinstance(path, str):
                raise InvalidProposal(f"comment {i} is missing a path")
            if not _is_line(line):
                raise InvalidProposal(f"comment {i} ({path}) has an invalid line: {line!r}")
            if not isinstance(body, str) or not body.strip():
                raise InvalidProposal(f"comment {i} ({path}:{line}) has an empty body")
            if start_line is not None:
                if not _is_line(start_line):
                    raise InvalidProposal(f"comment {i} ({path}) has an invalid start_line: {start_line!r}")
                if start_line >= line:
                    raise InvalidProposal(
                        f"comment {i} ({path}) has start_line {start_line} >= line {line}; "
                        "start_line must come before line"
                    )
            comments.append(LineComment(path=path, line=line, body=body, start_line=start_line))

        return cls(verdict=verdict, summary=summary, comments=tuple(comments))

    def to_payload(self) -> dict:
        comments = []
        for c in self.comments:
            item = {"path": c.path, "line": c.line, "body": c.body}
            if c.start_line is not None:
                item["start_line"] = c.start_line
            comments.append(item)
        return {"verdict": self.verdict, "summary": self.summary, "comments": comments}


def _is_line(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0
