"""
LLM Client（基于 OpenAI SDK，对接任意 OpenAI-compatible 网关）。

目标：
- **尽量薄**：只做协议适配与错误处理，不做重试（review 层约定“每个文件只调用一次”）
- **统一接口**：`LLMClient` Protocol 让 reviewer/aggregator 只依赖接口，测试可注入 fake
- **严格 JSON**：结构化输出必须通过 schema 校验，失败直接抛错，由调用方决定如何降级
"""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from typing import Protocol, TypeVar

import httpx
from openai import AsyncOpenAI, OpenAIError
from pydantic import BaseModel, ValidationError

logger = logging.getLogger(__name__)

SchemaT = TypeVar("SchemaT", bound=BaseModel)


class ChatMessage(BaseModel):
    """OpenAI chat message 的最小结构。"""

    role: str
    content: str


class LLMClient(Protocol):
    """review 流程依赖的 LLM 能力（用于依赖倒置，方便替换/测试）。"""

    async def complete_text(self, messages: Sequence[ChatMessage]) -> str: ...

    async def complete_json(self, messages: Sequence[ChatMessage], schema: type[SchemaT]) -> SchemaT: ...


def _normalize_base_url(base_url: str) -> str:
    normalized = base_url.rstrip("/")
    if normalized.endswith("/v1"):
        return normalized
    return f"{normalized}/v1"


def parse_json_response(content: str, schema: type[SchemaT]) -> SchemaT:
    """
    把模型输出解析并校验为 `schema`。

    - 兼容模型偶尔包一层 ```json 代码块的情况
    - 失败统一抛 `ValueError`（上游按“单文件 review 失败”处理）
    """
    text = content.strip()
    if text.startswith("```"):
        text = text.strip("`")
        if text.lower().startswith("json"):
            text = text[4:]
        text = text.strip()

    try:
        parsed = json.loads(text)
    except json.JSONDecodeError as exc:
        logger.error(f"Invalid JSON from LLM. Raw content: {content}")
        raise ValueError(f"LLM did not return valid JSON. Raw: {content}") from exc

    try:
        return schema.model_validate(parsed)
    except ValidationError as exc:
        logger.error(f"Schema validation failed: {exc}")
        raise ValueError(f"LLM JSON does not match schema {schema.__name__}: {exc}") from exc


class OpenAICompatLLMClient:
    """通过 OpenAI-compatible chat completions 调用 LLM。"""

    def __init__(
        self,
        api_key: str,
        base_url: str,
        http_client: httpx.AsyncClient,
        model: str,
        temperature: float = 0.2,
        max_tokens: int = 4000,
    ) -> None:
        """
        - api_key: LLM API key
        - base_url: OpenAI-compatible base URL（自动补 `/v1`）
        - http_client: 复用 httpx.AsyncClient 连接池
        - model: 模型名
        - temperature/max_tokens: review 场景偏保守、长输出
        """
        self._base_url = _normalize_base_url(base_url=base_url)
        self._model = model
        self._temperature = temperature
        self._max_tokens = max_tokens
        self._client = AsyncOpenAI(api_key=api_key, base_url=self._base_url, http_client=http_client)

    async def _create(self, messages: Sequence[ChatMessage], json_mode: bool) -> str:
        kwargs: dict[str, object] = {}
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}
        try:
            logger.info(f"LLM request: model={self._model}, messages={len(messages)} msg(s), json={json_mode}")
            response = await self._client.chat.completions.create(
                model=self._model,
                messages=[m.model_dump() for m in messages],
                temperature=self._temperature,
                max_tokens=self._max_tokens,
                **kwargs,
            )
        except OpenAIError as exc:
            logger.error(f"LLM API error: {exc}")
            raise
        except httpx.HTTPError as exc:
            logger.error(f"LLM HTTP error: {exc}")
            raise

        if not response.choices:
            raise RuntimeError("LLM returned no choices")
        content = response.choices[0].message.content
        if content is None:
            logger.error("LLM returned None content")
            raise RuntimeError("LLM returned None content")

        logger.info(f"LLM response: {len(content)} chars")
        return str(content)

    async def complete_text(self, messages: Sequence[ChatMessage]) -> str:
        """返回纯文本 content；出错直接抛异常，便于上游统一降级/告警。"""
        return await self._create(messages=messages, json_mode=False)

    async def complete_json(self, messages: Sequence[ChatMessage], schema: type[SchemaT]) -> SchemaT:
        """
        约定：让模型输出"纯 JSON"，然后做严格 schema 校验。

        - **JSON mode**：使用 response_format 尽量保证返回纯 JSON
        - **失败策略**：解析失败/校验失败抛 `ValueError`
        """
        content = await self._create(messages=messages, json_mode=True)
        return parse_json_response(content=content, schema=schema)
