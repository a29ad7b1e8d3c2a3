from __future__ import annotations

import pytest

from conftest import FakeLLMClient
from mr_reviewer.review.aggregator import NOTHING_TO_REVIEW
from mr_reviewer.review.aggregator import OVERALL_REVIEW_FAILED
from mr_reviewer.review.aggregator import aggregate
from mr_reviewer.review.aggregator import extract_recommendation
from mr_reviewer.review.models import ChecklistResult
from mr_reviewer.review.models import MergeRequestInfo
from mr_reviewer.review.models import ReviewFinding

MR = MergeRequestInfo(
    project_id=5,
    iid=9,
    title="Refactor login",
    description="Moves login into its own module",
    source_branch="feature/login",
    target_branch="main",
    state="opened",
)

CHECKLIST = [ChecklistResult(rule="description", title="Diff description", status=True, message="ok")]


def _finding(path: str, score: float | None, failed: bool = False) -> ReviewFinding:
    return ReviewFinding(path=path, review=f"review of {path}", score=score, failed=failed)


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("## Recommendation\nAPPROVE\n\n## Action Items\n- none", "APPROVE"),
        ("## Recommendation\nAPPROVE WITH MINOR CHANGES\n", "APPROVE WITH MINOR CHANGES"),
        ("## Recommendation\n**REQUEST CHANGES**", "REQUEST CHANGES"),
        ("## recommendation\n  approve with minor changes", "APPROVE WITH MINOR CHANGES"),
        ("I would APPROVE this.", "PENDING REVIEW"),
        ("## Recommendation\nShip it", "PENDING REVIEW"),
        ("", "PENDING REVIEW"),
    ],
)
def test_extract_recommendation(text: str, expected: str) -> None:
    assert extract_recommendation(text) == expected


@pytest.mark.anyio
async def test_threshold_approves_when_minimum_meets_threshold() -> None:
    llm = FakeLLMClient()
    outcome = await aggregate(
        policy="threshold",
        llm_client=llm,
        mr=MR,
        findings=[_finding("a.js", 9), _finding("b.js", 8)],
        checklist=CHECKLIST,
        approve_threshold=8,
    )
    assert outcome.recommendation == "APPROVE"
    assert outcome.approved is True
    assert outcome.score == 8
    assert outcome.threshold == 8
    assert "## Recommendation\nAPPROVE" in outcome.overall_review
    assert llm.calls == []


@pytest.mark.anyio
async def test_threshold_needs_work_below_threshold() -> None:
    outcome = await aggregate(
        policy="threshold",
        llm_client=FakeLLMClient(),
        mr=MR,
        findings=[_finding("a.js", 10), _finding("b.js", 7.9)],
        checklist=CHECKLIST,
        approve_threshold=8,
    )
    assert outcome.recommendation == "NEEDS WORK"
    assert outcome.approved is False
    assert outcome.score == 7.9


@pytest.mark.anyio
async def test_threshold_treats_failed_review_as_zero() -> None:
    outcome = await aggregate(
        policy="threshold",
        llm_client=FakeLLMClient(),
        mr=MR,
        findings=[_finding("a.js", 10), _finding("b.js", None, failed=True)],
        checklist=CHECKLIST,
    )
    assert outcome.score == 0
    assert outcome.recommendation == "NEEDS WORK"


@pytest.mark.anyio
async def test_threshold_checklist_is_informational() -> None:
    failing = [ChecklistResult(rule="description", title="Diff description", status=False, message="missing")]
    outcome = await aggregate(
        policy="threshold",
        llm_client=FakeLLMClient(),
        mr=MR,
        findings=[_finding("a.js", 9)],
        checklist=failing,
    )
    assert outcome.recommendation == "APPROVE"
    assert outcome.checklist == failing


@pytest.mark.anyio
async def test_categorical_uses_llm_label() -> None:
    llm = FakeLLMClient(text_responses=["## Summary\nFine.\n\n## Recommendation\nAPPROVE WITH MINOR CHANGES\n"])
    outcome = await aggregate(
        policy="categorical",
        llm_client=llm,
        mr=MR,
        findings=[_finding("a.js", None)],
        checklist=CHECKLIST,
    )
    assert outcome.recommendation == "APPROVE WITH MINOR CHANGES"
    assert outcome.approved is False
    assert outcome.score is None
    assert len(llm.calls) == 1

    system, user = llm.calls[0]
    assert "team lead" in system.content
    assert "Refactor login" in user.content
    assert "File: a.js" in user.content
    assert "Diff description: ✅ - ok" in user.content


@pytest.mark.anyio
async def test_categorical_without_label_is_pending() -> None:
    outcome = await aggregate(
        policy="categorical",
        llm_client=FakeLLMClient(text_responses=["Looks good to me"]),
        mr=MR,
        findings=[_finding("a.js", None)],
        checklist=CHECKLIST,
    )
    assert outcome.recommendation == "PENDING REVIEW"
    assert outcome.overall_review == "Looks good to me"


@pytest.mark.anyio
async def test_categorical_llm_failure_is_pending() -> None:
    outcome = await aggregate(
        policy="categorical",
        llm_client=FakeLLMClient(error=RuntimeError("boom")),
        mr=MR,
        findings=[_finding("a.js", None)],
        checklist=CHECKLIST,
    )
    assert outcome.recommendation == "PENDING REVIEW"
    assert outcome.overall_review == OVERALL_REVIEW_FAILED


@pytest.mark.anyio
@pytest.mark.parametrize("policy", ["threshold", "categorical"])
async def test_empty_findings_approve_without_llm(policy: str) -> None:
    llm = FakeLLMClient(error=AssertionError("LLM must not be called"))
    outcome = await aggregate(policy=policy, llm_client=llm, mr=MR, findings=[], checklist=CHECKLIST)
    assert outcome.recommendation == "APPROVE"
    assert outcome.overall_review == NOTHING_TO_REVIEW
    assert outcome.policy == policy
    assert outcome.checklist == CHECKLIST
    assert llm.calls == []
