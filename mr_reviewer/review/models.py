"""
Review 领域模型（Pydantic）。

用途：
- 明确各阶段输入/输出的数据结构（classifier -> reviewer -> checklist -> aggregator -> publisher）
- 与 GitLab API schema 解耦：GitLab 的字段由 `gitlab/adapter.py` 归一化到这里
- 作为 LLM JSON 输出的 schema 校验（结构化 reviewer）
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

Recommendation = Literal[
    "APPROVE",
    "APPROVE WITH MINOR CHANGES",
    "REQUEST CHANGES",
    "PENDING REVIEW",
    "NEEDS WORK",
]


class DiffRefs(BaseModel):
    """行内评论定位需要的三个 revision（base/start/head）。"""

    base_sha: str
    start_sha: str
    head_sha: str


class FileChange(BaseModel):
    """单个文件的变更（run 内不可变）。"""

    new_path: str
    old_path: str
    diff: str
    is_new: bool = False
    is_deleted: bool = False
    is_renamed: bool = False


class ChangeSet(BaseModel):
    """一次 MR 的完整 diff。"""

    changes: list[FileChange] = Field(default_factory=list)
    diff_refs: DiffRefs


class MergeRequestInfo(BaseModel):
    """MR 元数据（checklist / 汇总 prompt 需要）。"""

    project_id: int | str
    iid: int
    title: str
    description: str = ""
    source_branch: str
    target_branch: str
    state: str
    draft: bool = False
    web_url: str | None = None


class LineNote(BaseModel):
    """针对某个文件某一行的具体建议。"""

    path: str
    line: int
    comment: str


class ReviewFinding(BaseModel):
    """单文件 review 的结果；`failed=True` 表示 review 本身没有成功。"""

    path: str
    review: str
    score: float | None = None
    notes: list[LineNote] = Field(default_factory=list)
    failed: bool = False

    def text(self) -> str:
        """checklist 关键字扫描用的全文（总评 + 每条行内建议）。"""
        parts = [self.review]
        parts.extend(note.comment for note in self.notes)
        return "\n".join(parts)


class ChecklistResult(BaseModel):
    """单条 checklist 规则的结果。"""

    rule: str
    title: str
    status: bool
    message: str


class DiffPosition(BaseModel):
    """GitLab discussion 的 position（`position_type=text`）。"""

    base_sha: str
    start_sha: str
    head_sha: str
    old_path: str
    new_path: str
    new_line: int
    old_line: int | None = None

    def to_gitlab_payload(self) -> dict[str, object]:
        payload: dict[str, object] = {
            "position_type": "text",
            "base_sha": self.base_sha,
            "start_sha": self.start_sha,
            "head_sha": self.head_sha,
            "old_path": self.old_path,
            "new_path": self.new_path,
            "new_line": self.new_line,
        }
        if self.old_line is not None:
            payload["old_line"] = self.old_line
        return payload


class UnresolvablePosition(BaseModel):
    """diff 里没有任何可评论行时的显式结果（不是错误）。"""

    kind: Literal["unresolvable"] = "unresolvable"
    path: str
    requested_line: int
    reason: str


class ReviewOutcome(BaseModel):
    """一次 review 的最终结论。"""

    project_id: int | str
    mr_iid: int
    policy: Literal["threshold", "categorical"]
    recommendation: Recommendation
    score: float | None = None
    threshold: float | None = None
    overall_review: str
    checklist: list[ChecklistResult] = Field(default_factory=list)
    findings: list[ReviewFinding] = Field(default_factory=list)

    @property
    def approved(self) -> bool:
        return self.recommendation == "APPROVE"
