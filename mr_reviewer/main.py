"""
FastAPI 服务入口。

这里做三件事：
- 加载配置（严格校验环境变量；缺少 GitLab token 直接启动失败）
- 组装外部依赖（HTTP Client / LLM Client / GitLab Client / Slack Notifier）
- 装配路由（health + gitlab webhook/manual review）

注意：
- 业务流程不写在这里（由 `review/orchestrator.py` 负责）
- `httpx.AsyncClient` 会被复用（避免每个请求新建连接），应用关闭时释放
"""

from __future__ import annotations

import logging
import os
from collections.abc import AsyncIterator, Mapping
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI

from mr_reviewer.config import load_config_from_env
from mr_reviewer.gitlab.client import GitLabClient
from mr_reviewer.gitlab.webhook import build_gitlab_webhook_router
from mr_reviewer.llm.client import OpenAICompatLLMClient
from mr_reviewer.notify.slack import SlackNotifier
from mr_reviewer.review.orchestrator import build_review_orchestrator


def build_app(environ: Mapping[str, str] | None = None) -> FastAPI:
    """创建并返回 FastAPI app（便于测试/复用）。"""

    # 1) 配置：缺失会直接抛错，启动失败（这是期望行为）
    config = load_config_from_env(os.environ if environ is None else environ)
    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    # 2) 可复用的 HTTP client：GitLab / LLM / Slack 共用连接池
    http_client = httpx.AsyncClient(timeout=httpx.Timeout(60.0))

    # 3) 外部协作方：全部显式注入，没有模块级单例
    llm_client = OpenAICompatLLMClient(
        api_key=config.llm.api_key,
        base_url=str(config.llm.base_url).rstrip("/"),
        http_client=http_client,
        model=config.llm.model,
    )
    gitlab_client = GitLabClient(
        base_url=str(config.gitlab.base_url).rstrip("/"),
        token=config.gitlab.token,
        http_client=http_client,
    )
    notifier = SlackNotifier(
        webhook_url=str(config.slack.webhook_url) if config.slack.webhook_url else None,
        http_client=http_client,
    )
    orchestrator = build_review_orchestrator(
        gitlab_client=gitlab_client,
        llm_client=llm_client,
        notifier=notifier,
        settings=config.review,
    )

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        yield
        await http_client.aclose()

    app = FastAPI(title="GitLab MR Reviewer", version="0.1.0", lifespan=lifespan)

    @app.get("/health")
    async def health() -> dict[str, str]:
        """健康检查：用于 k8s / LB 探活。"""
        return {"status": "ok"}

    app.include_router(
        build_gitlab_webhook_router(
            config=config.gitlab,
            trigger=orchestrator.run_review_in_background,
            target_branch=config.review.target_branch,
        )
    )
    return app


def create_app() -> FastAPI:
    """uvicorn factory 入口：`uvicorn mr_reviewer.main:create_app --factory`。"""
    return build_app()
