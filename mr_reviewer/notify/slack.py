"""
Slack 通知（best effort）。

约定：
- 通知是非关键路径：没配置 webhook 就跳过；发送失败只记日志，**绝不**向上抛
- 只负责消息格式 + 一次 HTTP POST，不做重试
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

import httpx

from mr_reviewer.review.models import ReviewOutcome

logger = logging.getLogger(__name__)

_RECOMMENDATION_EMOJI: dict[str, str] = {
    "APPROVE": "✅",
    "APPROVE WITH MINOR CHANGES": "⚠️",
    "REQUEST CHANGES": "❌",
    "NEEDS WORK": "❌",
}


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def build_review_completed_message(outcome: ReviewOutcome) -> dict[str, object]:
    emoji = _RECOMMENDATION_EMOJI.get(outcome.recommendation, "ℹ️")
    details = (
        f"*Project ID:* {outcome.project_id}\n"
        f"*Merge Request:* !{outcome.mr_iid}\n"
        f"*Recommendation:* {outcome.recommendation}"
    )
    if outcome.score is not None:
        details += f"\n*Score:* {outcome.score:g}"
    return {
        "blocks": [
            {"type": "header", "text": {"type": "plain_text", "text": f"{emoji} GitLab MR Review Completed", "emoji": True}},
            {"type": "section", "text": {"type": "mrkdwn", "text": details}},
            {"type": "context", "elements": [{"type": "mrkdwn", "text": f"*Time:* {_now()}"}]},
        ]
    }


def build_error_message(error: str) -> dict[str, object]:
    return {
        "blocks": [
            {"type": "header", "text": {"type": "plain_text", "text": "🚨 GitLab MR Reviewer Error", "emoji": True}},
            {"type": "section", "text": {"type": "mrkdwn", "text": f"*Error:* {error}"}},
            {"type": "context", "elements": [{"type": "mrkdwn", "text": f"*Time:* {_now()}"}]},
        ]
    }


class SlackNotifier:
    """Slack incoming webhook 通知器。"""

    def __init__(self, webhook_url: str | None, http_client: httpx.AsyncClient) -> None:
        self._webhook_url = webhook_url
        self._http_client = http_client

    async def _send(self, message: dict[str, object]) -> None:
        if not self._webhook_url:
            logger.warning("Slack webhook URL not configured, skipping notification")
            return
        try:
            response = await self._http_client.post(self._webhook_url, json=message)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.error(f"Error sending Slack notification: {exc}")
            return
        logger.info("Slack notification sent successfully")

    async def send_review_completed(self, outcome: ReviewOutcome) -> None:
        await self._send(build_review_completed_message(outcome))

    async def send_error(self, error: str) -> None:
        await self._send(build_error_message(error))
