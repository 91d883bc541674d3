"""Tests for the pull request context and review proposal models."""

import dataclasses

import pytest

from reviewbox_core.errors import InvalidProposal
from reviewbox_core.models import ChangedFile, CheckRun, RepoRef, ReviewProposal


def _payload(**overrides):
    payload = {
        "verdict": "comment",
        "summary": "Thanks for the contribution!",
        "comments": [{"path": "src/retry.ts", "line": 12, "body": "Handle the zero case."}],
    }
    payload.update(overrides)
    return payload


class TestReviewProposal:
    def test_valid_payload(self):
        proposal = ReviewProposal.from_payload(_payload())
        assert proposal.verdict == "comment"
        assert proposal.comments[0].location == "src/retry.ts:12"

    def test_multi_line_comment(self):
        payload = _payload(comments=[{"path": "a.ts", "line": 20, "start_line": 15, "body": "Extract this."}])
        comment = ReviewProposal.from_payload(payload).comments[0]
        assert comment.start_line == 15
        assert comment.location == "a.ts:15-20"

    @pytest.mark.parametrize("start_line", [20, 21])
    def test_start_line_must_precede_line(self, start_line):
        payload = _payload(comments=[{"path": "a.ts", "line": 20, "start_line": start_line, "body": "x"}])
        with pytest.raises(InvalidProposal, match="start_line"):
            ReviewProposal.from_payload(payload)

    def test_unknown_verdict(self):
        with pytest.raises(InvalidProposal, match="verdict"):
            ReviewProposal.from_payload(_payload(verdict="lgtm"))

    def test_missing_summary(self):
        payload = _payload()
        del payload["summary"]
        with pytest.raises(InvalidProposal, match="summary"):
            ReviewProposal.from_payload(payload)

    @pytest.mark.parametrize("line", [0, -1, "12", True, None])
    def test_invalid_line(self, line):
        with pytest.raises(InvalidProposal):
            ReviewProposal.from_payload(_payload(comments=[{"path": "a.ts", "line": line, "body": "x"}]))

    def test_empty_body_rejected(self):
        with pytest.raises(InvalidProposal, match="empty body"):
            ReviewProposal.from_payload(_payload(comments=[{"path": "a.ts", "line": 1, "body": "  "}]))

    def test_comments_optional(self):
        proposal = ReviewProposal.from_payload({"verdict": "approve", "summary": "LGTM 👍"})
        assert proposal.comments == ()

    def test_comment_order_preserved(self):
        comments = [{"path": f"f{i}.ts", "line": i + 1, "body": f"c{i}"} for i in range(5)]
        proposal = ReviewProposal.from_payload(_payload(comments=comments))
        assert [c.path for c in proposal.comments] == [f"f{i}.ts" for i in range(5)]

    def test_proposal_is_frozen(self):
        proposal = ReviewProposal.from_payload(_payload())
        with pytest.raises(dataclasses.FrozenInstanceError):
            proposal.summary = "changed"

    def test_to_payload_round_trips_start_line_only_when_set(self):
        payload = _payload(
            comments=[
                {"path": "a.ts", "line": 3, "body": "x"},
                {"path": "a.ts", "line": 9, "start_line": 7, "body": "y"},
            ]
        )
        out = ReviewProposal.from_payload(payload).to_payload()
        assert "start_line" not in out["comments"][0]
        assert out["comments"][1]["start_line"] == 7


class TestChangeRequestContext:
    def test_same_origin(self, make_context):
        ctx = make_context()
        assert ctx.is_fork is False
        assert ctx.full_name == "acme/widgets"

    def test_fork_origin(self, make_context):
        fork_head = RepoRef("patch-1", "c" * 40, "someone/widgets", "https://github.com/someone/widgets.git")
        ctx = make_context(head=fork_head)
        assert ctx.is_fork is True
        target = ctx.checkout_target()
        assert target.is_fork is True
        assert target.head_clone_url == "https://github.com/someone/widgets.git"

    def test_changeset_detection_needs_added_file(self, make_context):
        assert make_context().has_changeset is False
        added = make_context(files=(ChangedFile(".changeset/brave-fox.md", "added"),))
        assert added.has_changeset is True
        modified = make_context(files=(ChangedFile(".changeset/config.json", "modified"),))
        assert modified.has_changeset is False

    def test_check_run_buckets(self, make_context):
        ctx = make_context(
            check_runs=(
                CheckRun("lint", "completed", "success"),
                CheckRun("unit", "completed", "failure"),
                CheckRun("e2e", "completed", "cancelled"),
                CheckRun("build", "in_progress"),
            )
        )
        assert [c.name for c in ctx.passing_checks] == ["lint"]
        assert [c.name for c in ctx.failing_checks] == ["unit", "e2e"]
        assert [c.name for c in ctx.pending_checks] == ["build"]
