"""
Synthesis（评论正文拼装）。

注意：
- 这里是**确定性输出**（不依赖 LLM），便于稳定回写 GitLab
- 只负责 markdown 文本；发到哪里由 publisher 决定
"""

from __future__ import annotations

from mr_reviewer.review.checklist import format_checklist_report
from mr_reviewer.review.models import LineNote
from mr_reviewer.review.models import ReviewFinding
from mr_reviewer.review.models import ReviewOutcome


def synthesize_summary_body(outcome: ReviewOutcome) -> str:
    """
    MR 级 summary comment：整体 review + 结论 + checklist 报告。

    - overall_review 为空时返回空串（publisher 据此跳过发布）
    """
    if not outcome.overall_review.strip():
        return ""

    lines: list[str] = ["# AI Code Review Summary", "", outcome.overall_review, ""]
    lines.append(f"**Recommendation:** {outcome.recommendation}")
    if outcome.score is not None and outcome.threshold is not None:
        lines.append(f"**Score:** {outcome.score:g} / 10 (auto-approve at >= {outcome.threshold:g})")
    failed = [f.path for f in outcome.findings if f.failed]
    if failed:
        lines.append("")
        lines.append("Review could not be completed for: " + ", ".join(f"`{p}`" for p in failed))
    if outcome.checklist:
        lines.append("")
        lines.append(format_checklist_report(outcome.checklist))
    return "\n".join(lines)


def synthesize_file_review_body(finding: ReviewFinding) -> str:
    return f"### AI Code Review for `{finding.path}`\n\n{finding.review}"


def synthesize_fallback_body(note: LineNote, reason: str) -> str:
    """行内评论发不出去时的兜底正文：保留原文 + 原目标位置 + 原因。"""
    return (
        f"**`{note.path}` line {note.line}**\n\n"
        f"{note.comment}\n\n"
        f"> Inline comment fallback: could not anchor this note to `{note.path}:{note.line}` ({reason}). "
        "Posted as a general comment instead."
    )
