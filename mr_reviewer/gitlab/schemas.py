"""
GitLab Webhook / API response schemas（Pydantic）。

为什么要单独放 schema：
- GitLab 的 payload 结构复杂，直接用 dict 容易写错 key
- schema 校验失败会立刻暴露问题（比“默默 None”安全）

说明：
- 这里的字段只覆盖 review 流程所需子集；未声明字段由 Pydantic 默认忽略
"""

from __future__ import annotations

from pydantic import BaseModel


class GitLabProject(BaseModel):
    """Webhook 里的 project 子结构。"""

    id: int
    web_url: str | None = None


class GitLabMergeRequestObjectAttributes(BaseModel):
    """Merge request webhook 的 object_attributes 子结构。"""

    iid: int
    action: str | None = None
    state: str
    target_branch: str
    source_branch: str
    work_in_progress: bool = False
    draft: bool = False


class GitLabMergeRequestWebhookEvent(BaseModel):
    """Merge request webhook 的最小结构。"""

    object_kind: str
    project: GitLabProject
    object_attributes: GitLabMergeRequestObjectAttributes


class GitLabMergeRequest(BaseModel):
    """GET /merge_requests/:iid 的子集。"""

    id: int
    iid: int
    project_id: int
    title: str
    description: str | None = None
    state: str
    source_branch: str
    target_branch: str
    draft: bool = False
    work_in_progress: bool = False
    web_url: str | None = None


class GitLabDiffRef(BaseModel):
    """GitLab 返回的 diff refs（行内评论 position 必需）。"""

    base_sha: str
    head_sha: str
    start_sha: str


class GitLabMRChange(BaseModel):
    """单个文件变更（包含 diff 字符串）。"""

    old_path: str
    new_path: str
    a_mode: str | None = None
    b_mode: str | None = None
    new_file: bool
    renamed_file: bool
    deleted_file: bool
    diff: str


class GitLabMergeRequestChanges(BaseModel):
    """MR changes API 返回结构（changes + diff_refs）。"""

    changes: list[GitLabMRChange]
    # GitLab 仍在生成 diff 时返回 null
    diff_refs: GitLabDiffRef | None = None


class GitLabNote(BaseModel):
    """MR note 返回结构。"""

    id: int
    body: str


class GitLabDiscussion(BaseModel):
    """MR discussion 返回结构（只关心 id 与第一条 note）。"""

    id: str
    notes: list[GitLabNote]
