"""
Review Orchestrator（核心流程编排）。

关键思想：
- **流程由工程代码控制**：明确的阶段 pipeline
- **LLM 只负责“思考/生成文字”**：每个文件一次调用，categorical 策略多一次汇总调用

一次 run：
get MR + changes -> classify -> 逐文件 review（串行）-> checklist -> aggregate -> publish -> notify

注意：
- 文件 review 是**串行**的：控制对 LLM 网关的并发压力，避免触发限流
- 同一个 (project_id, mr_iid) 的并发 run 不做去重/加锁
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field

from mr_reviewer.config import ReviewSettings
from mr_reviewer.gitlab.adapter import build_change_set
from mr_reviewer.gitlab.adapter import build_merge_request_info
from mr_reviewer.gitlab.client import GitLabClient
from mr_reviewer.llm.client import LLMClient
from mr_reviewer.notify.slack import SlackNotifier
from mr_reviewer.review.aggregator import aggregate
from mr_reviewer.review.checklist import ChecklistPolicy
from mr_reviewer.review.checklist import evaluate_checklist
from mr_reviewer.review.classifier import classify
from mr_reviewer.review.models import ChangeSet
from mr_reviewer.review.models import FileChange
from mr_reviewer.review.models import ReviewFinding
from mr_reviewer.review.models import ReviewOutcome
from mr_reviewer.review.publisher import OutcomePublisher
from mr_reviewer.review.reviewer import detect_file_type
from mr_reviewer.review.reviewer import failed_finding
from mr_reviewer.review.reviewer import review_file

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReviewOrchestrator:
    """一次 review run 需要的全部依赖（显式注入，没有全局单例）。"""

    gitlab_client: GitLabClient
    llm_client: LLMClient
    notifier: SlackNotifier
    settings: ReviewSettings
    checklist_policy: ChecklistPolicy = field(default_factory=ChecklistPolicy)

    async def run_review(
        self,
        project_id: int | str,
        mr_iid: int,
        ignore_files: Iterable[str] = (),
    ) -> ReviewOutcome:
        """
        跑一次完整 review，返回最终结论（同时已写回 GitLab）。

        - MR 元数据 / changes 拉取失败属于关键路径失败：直接抛出
        - 单文件 review、行内评论、通知失败都在各自位置降级
        """
        logger.info(f"Starting code review for MR {mr_iid} in project {project_id}")

        mr = build_merge_request_info(
            project_id=project_id,
            mr=await self.gitlab_client.get_merge_request(project_id=project_id, mr_iid=mr_iid),
        )
        change_set = build_change_set(
            await self.gitlab_client.get_merge_request_changes(project_id=project_id, mr_iid=mr_iid)
        )

        ignore = [*self.settings.extra_ignore_files, *ignore_files]
        to_review = classify(change_set=change_set, ignore_files=ignore)
        logger.info(f"MR {mr_iid}: {len(to_review)} of {len(change_set.changes)} file(s) selected for review")

        findings = await self._review_files(project_id=project_id, change_set=change_set, files=to_review)

        async def read_file(path: str, ref: str) -> str:
            return await self.gitlab_client.get_raw_file(project_id=project_id, path=path, ref=ref)

        checklist = await evaluate_checklist(
            mr=mr,
            change_set=change_set,
            findings=findings,
            read_file=read_file,
            policy=self.checklist_policy,
        )
        outcome = await aggregate(
            policy=self.settings.policy,
            llm_client=self.llm_client,
            mr=mr,
            findings=findings,
            checklist=checklist,
            approve_threshold=self.settings.approve_threshold,
        )

        publisher = OutcomePublisher(
            gitlab_client=self.gitlab_client,
            auto_approve=self.settings.auto_approve,
            post_file_comments=self.settings.post_file_comments,
        )
        await publisher.publish(outcome=outcome, change_set=change_set)

        logger.info(f"Finished code review for MR {mr_iid}: {outcome.recommendation}")
        await self.notifier.send_review_completed(outcome)
        return outcome

    async def _review_files(
        self,
        project_id: int | str,
        change_set: ChangeSet,
        files: list[FileChange],
    ) -> list[ReviewFinding]:
        findings: list[ReviewFinding] = []
        for file_change in files:
            # 串行：一次只有一个 LLM 请求在飞
            try:
                content = await self.gitlab_client.get_raw_file(
                    project_id=project_id,
                    path=file_change.new_path,
                    ref=change_set.diff_refs.head_sha,
                )
            except Exception as exc:
                logger.error(f"Error fetching content of {file_change.new_path}: {exc}")
                findings.append(failed_finding(path=file_change.new_path))
                continue

            finding = await review_file(
                llm_client=self.llm_client,
                file_change=file_change,
                content=content,
                file_type=detect_file_type(file_change.new_path),
                response_mode=self.settings.response_mode,
                max_content_chars=self.settings.max_content_chars,
            )
            findings.append(finding)
        return findings

    async def run_review_in_background(
        self,
        project_id: int | str,
        mr_iid: int,
        ignore_files: Iterable[str] = (),
    ) -> None:
        """
        给 HTTP 触发层用的 detached 入口：永不抛出。

        失败只通过日志 + 一条错误通知可见（触发方早已拿到 ack）。
        """
        try:
            await self.run_review(project_id=project_id, mr_iid=mr_iid, ignore_files=ignore_files)
        except Exception as exc:
            logger.exception(f"Error in review for MR {mr_iid} in project {project_id}")
            await self.notifier.send_error(f"Error in review for MR {mr_iid} in project {project_id}: {exc}")


def build_review_orchestrator(
    gitlab_client: GitLabClient,
    llm_client: LLMClient,
    notifier: SlackNotifier,
    settings: ReviewSettings,
) -> ReviewOrchestrator:
    """创建 orchestrator（便于未来注入更多依赖）。"""
    return ReviewOrchestrator(gitlab_client=gitlab_client, llm_client=llm_client, notifier=notifier, settings=settings)
