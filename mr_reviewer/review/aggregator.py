"""
Recommendation Aggregator。

两种策略（由 `REVIEW_POLICY` 选择，二者并存，不互相替代）：
- threshold：取各文件 LLM 给出的分数（0~10）中的最低分，>= 阈值则 APPROVE，否则 NEEDS WORK；
  checklist 只用于展示
- categorical：额外调用一次 LLM 生成整体 review，再用严格正则从 `## Recommendation`
  段落里提取标签；提取不到就是 PENDING REVIEW（绝不默认 approve）

两种策略共同点：没有任何可 review 的文件时，直接给出确定性的 APPROVE，不调用 LLM。
"""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence

from mr_reviewer.config import AggregationPolicy
from mr_reviewer.llm.client import ChatMessage
from mr_reviewer.llm.client import LLMClient
from mr_reviewer.review.checklist import RULES
from mr_reviewer.review.models import ChecklistResult
from mr_reviewer.review.models import MergeRequestInfo
from mr_reviewer.review.models import Recommendation
from mr_reviewer.review.models import ReviewFinding
from mr_reviewer.review.models import ReviewOutcome

logger = logging.getLogger(__name__)

NOTHING_TO_REVIEW = "No reviewable files in this merge request (all changes are ignored file types). Nothing to review."
OVERALL_REVIEW_FAILED = "Error generating overall review. Please check the logs."

# 较长的标签必须排在前面，否则 "APPROVE WITH MINOR CHANGES" 会被截成 "APPROVE"
_RECOMMENDATION_RE = re.compile(
    r"##\s*Recommendation\s+\**\s*(APPROVE WITH MINOR CHANGES|REQUEST CHANGES|APPROVE)\b",
    re.IGNORECASE,
)


def extract_recommendation(overall_review: str) -> Recommendation:
    match = _RECOMMENDATION_RE.search(overall_review)
    if match is None:
        return "PENDING REVIEW"
    label = match.group(1).upper()
    if label == "APPROVE WITH MINOR CHANGES":
        return "APPROVE WITH MINOR CHANGES"
    if label == "REQUEST CHANGES":
        return "REQUEST CHANGES"
    return "APPROVE"


def overall_score(findings: Sequence[ReviewFinding]) -> float:
    """最低分决定整体分数：没有分数（或 review 失败）按 0 计。"""
    return min(f.score if f.score is not None else 0.0 for f in findings)


def aggregate_threshold(
    mr: MergeRequestInfo,
    findings: Sequence[ReviewFinding],
    checklist: Sequence[ChecklistResult],
    threshold: float,
) -> ReviewOutcome:
    score = overall_score(findings)
    recommendation: Recommendation = "APPROVE" if score >= threshold else "NEEDS WORK"

    lines: list[str] = ["## Summary", ""]
    for finding in findings:
        lines.append(f"- `{finding.path}`: {finding.review}")
    lines.append("")
    lines.append("## Recommendation")
    lines.append(recommendation)
    lines.append("")
    lines.append(f"Score: {score:g} (threshold {threshold:g})")

    return ReviewOutcome(
        project_id=mr.project_id,
        mr_iid=mr.iid,
        policy="threshold",
        recommendation=recommendation,
        score=score,
        threshold=threshold,
        overall_review="\n".join(lines),
        checklist=list(checklist),
        findings=list(findings),
    )


def _overall_system_prompt() -> str:
    catalog = "\n".join(f"- {rule.title}" for rule in RULES)
    return (
        "You are a senior software engineering team lead reviewing a GitLab merge request.\n"
        "Based on the individual file reviews and checklist evaluation, provide an overall assessment.\n\n"
        f"The project follows these checklist requirements:\n{catalog}\n\n"
        "Consider overall code quality, architectural design, security, performance, testing adequacy "
        "and compliance with the team's checklist.\n"
        "Be constructive and provide a final recommendation: APPROVE, APPROVE WITH MINOR CHANGES, or REQUEST CHANGES.\n\n"
        "Format your response as:\n"
        "## Summary\n<1-2 sentence overall assessment>\n\n"
        "## Checklist Evaluation\n<assessment of checklist items>\n\n"
        "## Key Findings\n<bullet list of main points>\n\n"
        "## Recommendation\n<APPROVE, APPROVE WITH MINOR CHANGES, or REQUEST CHANGES>\n\n"
        "## Action Items\n<bullet list of specific actions for the developer>"
    )


def _overall_user_prompt(
    mr: MergeRequestInfo,
    findings: Sequence[ReviewFinding],
    checklist: Sequence[ChecklistResult],
) -> str:
    evaluation = "\n".join(f"{r.title}: {'✅' if r.status else '❌'} - {r.message}" for r in checklist)
    reviews = "\n".join(f"File: {f.path}\n{f.review}\n---" for f in findings)
    return (
        f'Merge Request: "{mr.title}"\n'
        f"Description: {mr.description or 'No description provided'}\n\n"
        f"Checklist Evaluation:\n{evaluation or 'No checklist evaluation available'}\n\n"
        f"Individual file reviews:\n{reviews}"
    )


async def aggregate_categorical(
    llm_client: LLMClient,
    mr: MergeRequestInfo,
    findings: Sequence[ReviewFinding],
    checklist: Sequence[ChecklistResult],
) -> ReviewOutcome:
    messages = [
        ChatMessage(role="system", content=_overall_system_prompt()),
        ChatMessage(role="user", content=_overall_user_prompt(mr=mr, findings=findings, checklist=checklist)),
    ]
    try:
        overall_review = await llm_client.complete_text(messages=messages)
    except Exception as exc:
        logger.error(f"Error getting overall review for MR {mr.iid}: {exc}")
        overall_review = OVERALL_REVIEW_FAILED

    return ReviewOutcome(
        project_id=mr.project_id,
        mr_iid=mr.iid,
        policy="categorical",
        recommendation=extract_recommendation(overall_review),
        overall_review=overall_review,
        checklist=list(checklist),
        findings=list(findings),
    )


def nothing_to_review(
    policy: AggregationPolicy,
    mr: MergeRequestInfo,
    checklist: Sequence[ChecklistResult],
) -> ReviewOutcome:
    return ReviewOutcome(
        project_id=mr.project_id,
        mr_iid=mr.iid,
        policy=policy,
        recommendation="APPROVE",
        overall_review=NOTHING_TO_REVIEW,
        checklist=list(checklist),
        findings=[],
    )


async def aggregate(
    policy: AggregationPolicy,
    llm_client: LLMClient,
    mr: MergeRequestInfo,
    findings: Sequence[ReviewFinding],
    checklist: Sequence[ChecklistResult],
    approve_threshold: float = 8.0,
) -> ReviewOutcome:
    """按策略汇总；空 findings 短路，不产生任何 LLM 调用。"""
    if not findings:
        return nothing_to_review(policy=policy, mr=mr, checklist=checklist)
    if policy == "threshold":
        return aggregate_threshold(mr=mr, findings=findings, checklist=checklist, threshold=approve_threshold)
    return await aggregate_categorical(llm_client=llm_client, mr=mr, findings=findings, checklist=checklist)
