"""
文件级 Review（Per-File Reviewer）。

约定：
- 每个文件**只调用一次** LLM，不在这一层重试
- 任何失败（网络、非 JSON、schema 不符）都降级为 `failed=True` 的 stub finding，不向上抛
- 输入过大直接返回 0 分 finding，不调用 LLM（控制成本与延迟）
- 两种输出模式：
  - narrative：自由文本 review（categorical 汇总策略使用）
  - structured：{score, overallComment, specificComments}（threshold 策略使用）
"""

from __future__ import annotations

import json
import logging

from pydantic import BaseModel, Field

from mr_reviewer.config import ResponseMode
from mr_reviewer.llm.client import ChatMessage
from mr_reviewer.llm.client import LLMClient
from mr_reviewer.review.classifier import extension
from mr_reviewer.review.models import FileChange
from mr_reviewer.review.models import LineNote
from mr_reviewer.review.models import ReviewFinding

logger = logging.getLogger(__name__)

REVIEW_FAILED_TEXT = "Error generating review. Please check the logs."

FILE_TYPES: dict[str, str] = {
    "js": "JavaScript",
    "jsx": "JavaScript (React)",
    "ts": "TypeScript",
    "tsx": "TypeScript (React)",
    "dart": "Dart (Flutter)",
    "proto": "Protocol Buffers",
    "py": "Python",
    "html": "HTML",
    "css": "CSS",
    "scss": "SCSS",
    "md": "Markdown",
    "json": "JSON",
    "yaml": "YAML",
    "yml": "YAML",
}


class SpecificComment(BaseModel):
    filePath: str
    line: int
    comment: str


class StructuredFileReview(BaseModel):
    """structured 模式下 LLM 必须返回的 JSON schema。"""

    score: float = Field(ge=0, le=10)
    overallComment: str
    specificComments: list[SpecificComment] = Field(default_factory=list)


def detect_file_type(path: str) -> str:
    """扩展名 -> 文件类型标签；未知扩展名返回 `Unknown`。"""
    return FILE_TYPES.get(extension(path), "Unknown")


def failed_finding(path: str, reason: str = REVIEW_FAILED_TEXT) -> ReviewFinding:
    return ReviewFinding(path=path, review=reason, score=0.0, failed=True)


def _system_prompt(file_type: str, response_mode: ResponseMode) -> str:
    """reviewer 的 system prompt：角色 + 团队规则 + 输出格式。"""
    base = (
        f"You are a senior software engineer specializing in {file_type} development.\n"
        "You are reviewing code according to these guidelines:\n"
        "1. Code should be clean, maintainable, and follow best practices\n"
        "2. Functions should be small and focused on a single task\n"
        "3. Variable and function names should be descriptive\n"
        "4. Error handling should be comprehensive\n"
        "5. Security vulnerabilities and performance issues should be identified\n"
        "6. Code should be well-tested and documented\n\n"
        "Additionally, follow these project-specific rules:\n"
        "1. Functions should not exceed 50 lines (unless justified)\n"
        "2. Error handling with try-catch should notify Slack on errors\n"
        "3. Null checks should be implemented where appropriate\n"
        "4. Early returns should be used when possible\n"
        "5. Unbounded parallel fan-out such as Promise.all() should not be used\n"
        "6. Localization strings should not be mixed with code\n"
        "7. Lambda functions should be preferred over loops when appropriate\n\n"
    )
    if response_mode == "structured":
        return base + (
            "Return ONLY a JSON object (no markdown) with fields:\n"
            '{"score": <0-10>, "overallComment": "...", '
            '"specificComments": [{"filePath": "...", "line": <new file line>, "comment": "..."}]}\n'
            "If no specific comments are needed, return an empty specificComments array."
        )
    return base + (
        "Format your response as:\n"
        "- Critical issues: <list issues>\n"
        "- Style/quality issues: <list issues>\n"
        "- Suggestions: <list suggestions>\n"
        "- Checklist compliance: <list any checklist items that are not satisfied>\n"
        "- Positive aspects: <list good patterns and practices>\n\n"
        'If you see no issues in a category, say "None found" in that category.\n'
        "Be constructive and specific, providing line numbers when possible."
    )


def _user_prompt(payload: str, file_type: str) -> str:
    return f"Review this {file_type} code file (JSON with path, diff and full content):\n\n{payload}"


def _serialize_payload(file_change: FileChange, content: str) -> str:
    return json.dumps({"path": file_change.new_path, "diff": file_change.diff, "content": content}, ensure_ascii=False)


async def review_file(
    llm_client: LLMClient,
    file_change: FileChange,
    content: str,
    file_type: str,
    response_mode: ResponseMode,
    max_content_chars: int,
) -> ReviewFinding:
    """
    review 单个文件，返回 `ReviewFinding`（永不抛出 LLM 相关异常）。

    - 输入：文件 diff + 完整内容、文件类型标签、输出模式、输入长度上限
    - 输出：finding；structured 模式下带 score 与行内建议
    """
    path = file_change.new_path
    payload = _serialize_payload(file_change=file_change, content=content)
    if len(payload) > max_content_chars:
        logger.warning(f"Skipping {path}: payload {len(payload)} chars exceeds {max_content_chars}")
        return failed_finding(path=path, reason="The file is too large to review effectively. Score: 0")

    messages = [
        ChatMessage(role="system", content=_system_prompt(file_type=file_type, response_mode=response_mode)),
        ChatMessage(role="user", content=_user_prompt(payload=payload, file_type=file_type)),
    ]
    try:
        if response_mode == "structured":
            result = await llm_client.complete_json(messages=messages, schema=StructuredFileReview)
            return _finding_from_structured(path=path, result=result)
        text = await llm_client.complete_text(messages=messages)
    except Exception as exc:
        logger.error(f"Error getting file review for {path}: {exc}")
        return failed_finding(path=path)

    return ReviewFinding(path=path, review=text)


def _finding_from_structured(path: str, result: StructuredFileReview) -> ReviewFinding:
    # 模型偶尔会写错 filePath，这里统一锚定到当前文件
    notes = [LineNote(path=path, line=c.line, comment=c.comment) for c in result.specificComments]
    return ReviewFinding(
        path=path,
        review=f"{result.overallComment} Score: {result.score:g}",
        score=result.score,
        notes=notes,
    )
