"""
GitLab 触发层（Webhook + 手动触发）。

职责：
- 校验 `X-Gitlab-Token`（防止被随意调用）
- 过滤掉不关心的事件（只处理 opened 状态下的 MR open/update）
- **立即 ack**，把 review 作为后台任务执行；调用方拿不到 pipeline 的成败
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Sequence

from fastapi import APIRouter
from fastapi import BackgroundTasks
from fastapi import Header
from fastapi import HTTPException
from fastapi import Request
from fastapi import Response
from pydantic import ValidationError

from mr_reviewer.config import GitLabConfig
from mr_reviewer.gitlab.schemas import GitLabMergeRequestWebhookEvent

logger = logging.getLogger(__name__)

MERGE_REQUEST_EVENT = "Merge Request Hook"
REVIEWABLE_ACTIONS: tuple[str, ...] = ("open", "update")

ReviewTrigger = Callable[[int | str, int, Sequence[str]], Awaitable[None]]


def _verify_token(token: str | None, secret: str) -> None:
    if token != secret:
        logger.warning("Invalid GitLab webhook token")
        raise HTTPException(status_code=401, detail="Invalid webhook token")


def ignore_reason(event: GitLabMergeRequestWebhookEvent, target_branch: str | None) -> str | None:
    """返回忽略原因；None 表示需要 review。"""
    attrs = event.object_attributes
    if event.object_kind != "merge_request":
        return "not a merge request event"
    if attrs.action not in REVIEWABLE_ACTIONS:
        return "not an open/update action"
    if attrs.state != "opened":
        return "not in opened state"
    if attrs.draft or attrs.work_in_progress:
        return "draft merge request"
    if target_branch is not None and attrs.target_branch != target_branch:
        return f"target branch is not {target_branch}"
    return None


def _parse_project_id(raw: object) -> int | str | None:
    # project id 可以是数字，也可以是 "group/project" 路径
    if isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        return raw
    if isinstance(raw, str) and raw.strip():
        return int(raw) if raw.strip().isdigit() else raw.strip()
    return None


def _parse_iid(raw: object) -> int | None:
    if isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        return raw
    if isinstance(raw, str) and raw.strip().isdigit():
        return int(raw)
    return None


def build_gitlab_webhook_router(
    config: GitLabConfig,
    trigger: ReviewTrigger,
    target_branch: str | None = None,
) -> APIRouter:
    """创建 GitLab 路由；`trigger` 必须自己处理异常（后台任务没有调用方可以接）。"""
    router = APIRouter()

    @router.post("/gitlab/webhook", status_code=202)
    async def gitlab_webhook(
        request: Request,
        response: Response,
        background_tasks: BackgroundTasks,
        x_gitlab_token: str | None = Header(default=None, alias="X-Gitlab-Token"),
        x_gitlab_event: str | None = Header(default=None, alias="X-Gitlab-Event"),
    ) -> dict[str, str]:
        _verify_token(token=x_gitlab_token, secret=config.webhook_secret)

        response.status_code = 200
        if x_gitlab_event != MERGE_REQUEST_EVENT:
            return {"status": "ignored", "reason": "not a merge request hook"}

        try:
            event = GitLabMergeRequestWebhookEvent.model_validate(await request.json())
        except (ValueError, ValidationError):
            return {"status": "ignored", "reason": "unrecognized payload"}

        reason = ignore_reason(event=event, target_branch=target_branch)
        if reason is not None:
            logger.info(f"Ignoring webhook for MR {event.object_attributes.iid}: {reason}")
            return {"status": "ignored", "reason": reason}

        background_tasks.add_task(trigger, event.project.id, event.object_attributes.iid, ())
        response.status_code = 202
        return {"status": "accepted"}

    @router.post("/gitlab/review", status_code=202)
    async def manual_review(
        request: Request,
        background_tasks: BackgroundTasks,
        x_gitlab_token: str | None = Header(default=None, alias="X-Gitlab-Token"),
    ) -> dict[str, object]:
        _verify_token(token=x_gitlab_token, secret=config.webhook_secret)

        try:
            body = await request.json()
        except ValueError as exc:
            raise HTTPException(status_code=400, detail="Invalid JSON payload") from exc
        if not isinstance(body, dict):
            raise HTTPException(status_code=400, detail="projectId and mergeRequestIid are required")

        project_id = _parse_project_id(body.get("projectId"))
        mr_iid = _parse_iid(body.get("mergeRequestIid"))
        if project_id is None or mr_iid is None:
            raise HTTPException(status_code=400, detail="projectId and mergeRequestIid are required")

        raw_ignore = body.get("ignoreFiles") or []
        ignore_files = [item for item in raw_ignore if isinstance(item, str)] if isinstance(raw_ignore, list) else []

        background_tasks.add_task(trigger, project_id, mr_iid, ignore_files)
        return {
            "status": "accepted",
            "message": "Review request received and being processed",
            "projectId": project_id,
            "mergeRequestIid": mr_iid,
        }

    return router
