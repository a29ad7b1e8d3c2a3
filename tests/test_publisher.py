from __future__ import annotations

import pytest

from conftest import HEAD_SHA
from mr_reviewer.dev.mock_gitlab_server import MockGitLabState
from mr_reviewer.gitlab.client import GitLabClient
from mr_reviewer.review.models import ChangeSet
from mr_reviewer.review.models import ChecklistResult
from mr_reviewer.review.models import DiffRefs
from mr_reviewer.review.models import FileChange
from mr_reviewer.review.models import LineNote
from mr_reviewer.review.models import ReviewFinding
from mr_reviewer.review.models import ReviewOutcome
from mr_reviewer.review.publisher import OutcomePublisher

REFS = DiffRefs(base_sha="b" * 40, start_sha="s" * 40, head_sha=HEAD_SHA)

APP_JS_DIFF = "@@ -0,0 +1,8 @@\n" + "\n".join(f"+const line{i} = {i};" for i in range(1, 9)) + "\n"


def _change_set() -> ChangeSet:
    return ChangeSet(
        changes=[
            FileChange(new_path="src/app.js", old_path="src/app.js", diff=APP_JS_DIFF, is_new=True),
            FileChange(new_path="src/gone.js", old_path="src/gone.js", diff="@@ -1,2 +0,0 @@\n-a\n-b\n", is_deleted=True),
        ],
        diff_refs=REFS,
    )


def _outcome(
    notes: list[LineNote],
    recommendation: str = "APPROVE",
    overall_review: str = "## Recommendation\nAPPROVE",
) -> ReviewOutcome:
    return ReviewOutcome(
        project_id=42,
        mr_iid=7,
        policy="categorical",
        recommendation=recommendation,
        overall_review=overall_review,
        checklist=[ChecklistResult(rule="description", title="Diff description", status=True, message="ok")],
        findings=[ReviewFinding(path="src/app.js", review="fine", notes=notes)],
    )


@pytest.mark.anyio
async def test_publish_summary_discussion_and_approval(
    gitlab_state: MockGitLabState,
    gitlab_client: GitLabClient,
) -> None:
    note = LineNote(path="src/app.js", line=12, comment="Consider a constant here.")
    publisher = OutcomePublisher(gitlab_client=gitlab_client)

    await publisher.publish(outcome=_outcome(notes=[note]), change_set=_change_set())

    assert len(gitlab_state.notes) == 1
    summary = str(gitlab_state.notes[0]["body"])
    assert summary.startswith("# AI Code Review Summary")
    assert "## MR Checklist Compliance" in summary

    assert len(gitlab_state.discussions) == 1
    discussion = gitlab_state.discussions[0]
    assert discussion["body"] == "Consider a constant here."
    position = discussion["position"]
    assert position["position_type"] == "text"
    assert position["new_path"] == "src/app.js"
    assert position["new_line"] == 1
    assert position["head_sha"] == HEAD_SHA
    assert "old_line" not in position

    assert gitlab_state.approvals == [7]


@pytest.mark.anyio
async def test_publish_falls_back_when_discussion_rejected(
    gitlab_state: MockGitLabState,
    gitlab_client: GitLabClient,
) -> None:
    gitlab_state.reject_discussions = True
    note = LineNote(path="src/app.js", line=3, comment="Rename this variable.")
    publisher = OutcomePublisher(gitlab_client=gitlab_client)

    await publisher.publish(outcome=_outcome(notes=[note]), change_set=_change_set())

    assert gitlab_state.discussions == []
    fallbacks = [n for n in gitlab_state.notes if "Inline comment fallback" in str(n["body"])]
    assert len(fallbacks) == 1
    body = str(fallbacks[0]["body"])
    assert "Rename this variable." in body
    assert "src/app.js:3" in body
    assert "GitLab rejected the inline discussion" in body


@pytest.mark.anyio
async def test_publish_falls_back_for_unresolvable_and_unknown_files(
    gitlab_state: MockGitLabState,
    gitlab_client: GitLabClient,
) -> None:
    notes = [
        LineNote(path="src/gone.js", line=1, comment="Why remove this?"),
        LineNote(path="src/missing.js", line=4, comment="Not in diff."),
    ]
    publisher = OutcomePublisher(gitlab_client=gitlab_client)

    await publisher.publish(outcome=_outcome(notes=notes), change_set=_change_set())

    assert gitlab_state.discussions == []
    fallbacks = [str(n["body"]) for n in gitlab_state.notes if "Inline comment fallback" in str(n["body"])]
    assert len(fallbacks) == 2
    assert "Why remove this?" in fallbacks[0]
    assert "Not in diff." in fallbacks[1]
    assert "file is not part of this diff" in fallbacks[1]


@pytest.mark.anyio
async def test_publish_skips_empty_summary_and_does_not_approve_other_labels(
    gitlab_state: MockGitLabState,
    gitlab_client: GitLabClient,
) -> None:
    publisher = OutcomePublisher(gitlab_client=gitlab_client)
    outcome = _outcome(notes=[], recommendation="APPROVE WITH MINOR CHANGES", overall_review="   ")

    await publisher.publish(outcome=outcome, change_set=_change_set())

    assert gitlab_state.notes == []
    assert gitlab_state.approvals == []


@pytest.mark.anyio
async def test_publish_respects_auto_approve_switch(
    gitlab_state: MockGitLabState,
    gitlab_client: GitLabClient,
) -> None:
    publisher = OutcomePublisher(gitlab_client=gitlab_client, auto_approve=False, post_file_comments=True)

    await publisher.publish(outcome=_outcome(notes=[]), change_set=_change_set())

    assert gitlab_state.approvals == []
    bodies = [str(n["body"]) for n in gitlab_state.notes]
    assert bodies[0].startswith("### AI Code Review for `src/app.js`")
    assert bodies[1].startswith("# AI Code Review Summary")


@pytest.mark.anyio
async def test_publish_survives_rejected_approval(
    gitlab_state: MockGitLabState,
    gitlab_client: GitLabClient,
) -> None:
    gitlab_state.reject_approvals = True
    note = LineNote(path="src/app.js", line=2, comment="Prefer const.")
    publisher = OutcomePublisher(gitlab_client=gitlab_client)

    await publisher.publish(outcome=_outcome(notes=[note]), change_set=_change_set())

    assert gitlab_state.approvals == []
    assert len(gitlab_state.notes) == 1
    assert len(gitlab_state.discussions) == 1
