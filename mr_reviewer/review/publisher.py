"""
Outcome Publisher。

把 `ReviewOutcome` 写回 GitLab：
- summary comment（overall review 为空则跳过）
- 每条行内建议尝试创建 discussion；解析不到位置或 GitLab 拒绝时，
  降级为一条普通 note（带原目标位置与原因），绝不静默丢弃
- 结论为 APPROVE 时 approve（每次 run 最多一次；被 GitLab 拒绝只记日志）
"""

from __future__ import annotations

import logging

import httpx

from mr_reviewer.gitlab.client import GitLabAPIError
from mr_reviewer.gitlab.client import GitLabClient
from mr_reviewer.review.diff_position import find_file_change
from mr_reviewer.review.diff_position import resolve_diff_position
from mr_reviewer.review.models import ChangeSet
from mr_reviewer.review.models import LineNote
from mr_reviewer.review.models import ReviewOutcome
from mr_reviewer.review.models import UnresolvablePosition
from mr_reviewer.review.synthesis import synthesize_fallback_body
from mr_reviewer.review.synthesis import synthesize_file_review_body
from mr_reviewer.review.synthesis import synthesize_summary_body

logger = logging.getLogger(__name__)


class OutcomePublisher:
    """依赖通过构造函数注入（GitLab client + 发布开关）。"""

    def __init__(self, gitlab_client: GitLabClient, auto_approve: bool = True, post_file_comments: bool = False) -> None:
        self._gitlab = gitlab_client
        self._auto_approve = auto_approve
        self._post_file_comments = post_file_comments

    async def publish(self, outcome: ReviewOutcome, change_set: ChangeSet) -> None:
        project_id = outcome.project_id
        mr_iid = outcome.mr_iid

        if self._post_file_comments:
            for finding in outcome.findings:
                await self._gitlab.post_merge_request_note(
                    project_id=project_id,
                    mr_iid=mr_iid,
                    body=synthesize_file_review_body(finding),
                )

        summary = synthesize_summary_body(outcome)
        if summary:
            await self._gitlab.post_merge_request_note(project_id=project_id, mr_iid=mr_iid, body=summary)
        else:
            logger.info(f"Empty overall review for MR {mr_iid}, skipping summary comment")

        for finding in outcome.findings:
            for note in finding.notes:
                await self._publish_line_note(outcome=outcome, change_set=change_set, note=note)

        if outcome.approved and self._auto_approve:
            logger.info(f"Approving MR {mr_iid} in project {project_id}")
            try:
                await self._gitlab.approve_merge_request(project_id=project_id, mr_iid=mr_iid)
            except (GitLabAPIError, httpx.HTTPError) as exc:
                # 同一账号重复 approve 会被 GitLab 拒绝，review 本身已经发布
                logger.warning(f"Approval of MR {mr_iid} was rejected: {exc}")

    async def _publish_line_note(self, outcome: ReviewOutcome, change_set: ChangeSet, note: LineNote) -> None:
        file_change = find_file_change(change_set.changes, note.path)
        if file_change is None:
            await self._post_fallback(outcome=outcome, note=note, reason="file is not part of this diff")
            return

        position = resolve_diff_position(
            file_change=file_change,
            diff_refs=change_set.diff_refs,
            requested_line=note.line,
        )
        if isinstance(position, UnresolvablePosition):
            await self._post_fallback(outcome=outcome, note=note, reason=position.reason)
            return

        if position.new_line != note.line:
            logger.info(f"Re-anchored note on {note.path}:{note.line} to line {position.new_line}")
        try:
            await self._gitlab.create_merge_request_discussion(
                project_id=outcome.project_id,
                mr_iid=outcome.mr_iid,
                body=note.comment,
                position=position.to_gitlab_payload(),
            )
        except (GitLabAPIError, httpx.HTTPError) as exc:
            logger.warning(f"Discussion rejected for {note.path}:{position.new_line}: {exc}")
            await self._post_fallback(outcome=outcome, note=note, reason="GitLab rejected the inline discussion")

    async def _post_fallback(self, outcome: ReviewOutcome, note: LineNote, reason: str) -> None:
        try:
            await self._gitlab.post_merge_request_note(
                project_id=outcome.project_id,
                mr_iid=outcome.mr_iid,
                body=synthesize_fallback_body(note=note, reason=reason),
            )
        except (GitLabAPIError, httpx.HTTPError) as exc:
            logger.error(f"Fallback comment for {note.path}:{note.line} failed: {exc}")
