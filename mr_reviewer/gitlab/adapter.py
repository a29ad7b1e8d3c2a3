"""
GitLab -> Review domain adapter。

职责：
- 将 GitLab API 的 MR / changes schema 转换为平台无关的领域模型
- 只做数据归一化，不做业务决策
"""

from __future__ import annotations

from mr_reviewer.gitlab.schemas import GitLabMergeRequest
from mr_reviewer.gitlab.schemas import GitLabMergeRequestChanges
from mr_reviewer.review.models import ChangeSet
from mr_reviewer.review.models import DiffRefs
from mr_reviewer.review.models import FileChange
from mr_reviewer.review.models import MergeRequestInfo


def build_change_set(changes: GitLabMergeRequestChanges) -> ChangeSet:
    if changes.diff_refs is None:
        raise ValueError("Merge request diff is not ready yet: GitLab returned no diff_refs")
    return ChangeSet(
        changes=[
            FileChange(
                new_path=c.new_path,
                old_path=c.old_path,
                diff=c.diff,
                is_new=c.new_file,
                is_deleted=c.deleted_file,
                is_renamed=c.renamed_file,
            )
            for c in changes.changes
        ],
        diff_refs=DiffRefs(
            base_sha=changes.diff_refs.base_sha,
            start_sha=changes.diff_refs.start_sha,
            head_sha=changes.diff_refs.head_sha,
        ),
    )


def build_merge_request_info(project_id: int | str, mr: GitLabMergeRequest) -> MergeRequestInfo:
    """description 为 null 时归一化为空串；draft 兼容老版本的 work_in_progress。"""
    return MergeRequestInfo(
        project_id=project_id,
        iid=mr.iid,
        title=mr.title,
        description=mr.description or "",
        source_branch=mr.source_branch,
        target_branch=mr.target_branch,
        state=mr.state,
        draft=mr.draft or mr.work_in_progress,
        web_url=mr.web_url,
    )
