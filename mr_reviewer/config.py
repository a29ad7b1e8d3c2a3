"""
应用配置加载。

设计目标：
- **严格**：缺少必要环境变量就直接报错（GitLab token 缺失时服务不能启动）
- **类型安全**：使用 Pydantic 校验 URL/数字/枚举，减少运行时踩坑
- **可测试**：核心加载函数接收 `environ` 显式输入，便于单元测试
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Literal

from pydantic import BaseModel, Field, HttpUrl

AggregationPolicy = Literal["threshold", "categorical"]
ResponseMode = Literal["structured", "narrative"]


class GitLabConfig(BaseModel):
    """GitLab 连接配置（全部必填）。"""

    base_url: HttpUrl
    token: str
    webhook_secret: str


class LLMConfig(BaseModel):
    """OpenAI-compatible LLM 网关配置（全部必填）。"""

    base_url: HttpUrl
    api_key: str
    model: str


class SlackConfig(BaseModel):
    """Slack incoming webhook；不配置时通知直接跳过。"""

    webhook_url: HttpUrl | None = None


class ReviewSettings(BaseModel):
    """review 流程的可调参数。"""

    policy: AggregationPolicy = "categorical"
    approve_threshold: float = Field(default=8.0, ge=0, le=10)
    max_content_chars: int = Field(default=30000, gt=0)
    extra_ignore_files: list[str] = Field(default_factory=list)
    target_branch: str | None = None
    auto_approve: bool = True
    post_file_comments: bool = False

    @property
    def response_mode(self) -> ResponseMode:
        """threshold 策略需要模型直接给分，所以走结构化输出。"""
        return "structured" if self.policy == "threshold" else "narrative"


class AppConfig(BaseModel):
    """应用运行所需的配置集合。"""

    gitlab: GitLabConfig
    llm: LLMConfig
    slack: SlackConfig = Field(default_factory=SlackConfig)
    review: ReviewSettings = Field(default_factory=ReviewSettings)
    log_level: str = "INFO"


_REQUIRED_KEYS: tuple[str, ...] = (
    "GITLAB_BASE_URL",
    "GITLAB_TOKEN",
    "GITLAB_WEBHOOK_SECRET",
    "LLM_BASE_URL",
    "LLM_API_KEY",
    "LLM_MODEL",
)


def _parse_bool(raw: str, key: str) -> bool:
    lowered = raw.strip().lower()
    if lowered in ("1", "true", "yes", "on"):
        return True
    if lowered in ("0", "false", "no", "off"):
        return False
    raise ValueError(f"Invalid boolean for {key}: {raw}")


def _parse_csv(raw: str) -> list[str]:
    return [item.strip() for item in raw.split(",") if item.strip()]


def _load_review_settings(environ: Mapping[str, str]) -> ReviewSettings:
    """可选项：只把出现且非空的变量交给 Pydantic，其余走默认值。"""
    values: dict[str, object] = {}
    if environ.get("REVIEW_POLICY"):
        values["policy"] = environ["REVIEW_POLICY"].strip().lower()
    if environ.get("REVIEW_APPROVE_THRESHOLD"):
        values["approve_threshold"] = environ["REVIEW_APPROVE_THRESHOLD"]
    if environ.get("REVIEW_MAX_CONTENT_CHARS"):
        values["max_content_chars"] = environ["REVIEW_MAX_CONTENT_CHARS"]
    if environ.get("REVIEW_IGNORE_FILES"):
        values["extra_ignore_files"] = _parse_csv(environ["REVIEW_IGNORE_FILES"])
    if environ.get("REVIEW_TARGET_BRANCH"):
        values["target_branch"] = environ["REVIEW_TARGET_BRANCH"].strip()
    if environ.get("REVIEW_AUTO_APPROVE"):
        values["auto_approve"] = _parse_bool(environ["REVIEW_AUTO_APPROVE"], key="REVIEW_AUTO_APPROVE")
    if environ.get("REVIEW_POST_FILE_COMMENTS"):
        values["post_file_comments"] = _parse_bool(
            environ["REVIEW_POST_FILE_COMMENTS"],
            key="REVIEW_POST_FILE_COMMENTS",
        )
    return ReviewSettings.model_validate(values)


def load_config_from_env(environ: Mapping[str, str]) -> AppConfig:
    """
    从环境变量加载并校验配置。

    - **输入**：`environ`（例如 `os.environ`）
    - **输出**：`AppConfig`
    - **失败**：必填项缺失/为空、或可选项格式非法，都抛 `ValueError`
      （pydantic 的 `ValidationError` 本身就是 `ValueError` 子类）
    """
    missing: list[str] = [key for key in _REQUIRED_KEYS if key not in environ or not environ[key]]
    if missing:
        raise ValueError(f"Missing required env vars: {', '.join(missing)}")

    slack_url = environ.get("SLACK_WEBHOOK_URL") or None
    return AppConfig(
        gitlab=GitLabConfig(
            base_url=environ["GITLAB_BASE_URL"],
            token=environ["GITLAB_TOKEN"],
            webhook_secret=environ["GITLAB_WEBHOOK_SECRET"],
        ),
        llm=LLMConfig(
            base_url=environ["LLM_BASE_URL"],
            api_key=environ["LLM_API_KEY"],
            model=environ["LLM_MODEL"],
        ),
        slack=SlackConfig(webhook_url=slack_url),
        review=_load_review_settings(environ),
        log_level=(environ.get("LOG_LEVEL") or "INFO").upper(),
    )
