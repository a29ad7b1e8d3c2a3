from __future__ import annotations

from collections.abc import Sequence

import httpx
import pytest

from mr_reviewer.dev.mock_gitlab_server import MockGitLabState
from mr_reviewer.dev.mock_gitlab_server import build_mock_gitlab_app
from mr_reviewer.gitlab.client import GitLabClient
from mr_reviewer.llm.client import ChatMessage
from mr_reviewer.llm.client import SchemaT
from mr_reviewer.llm.client import parse_json_response

HEAD_SHA = "1111111111111111111111111111111111111111"
BASE_SHA = "0000000000000000000000000000000000000000"


class FakeLLMClient:
    """按顺序返回预设响应的 LLM；`error` 非空时每次调用都抛出。"""

    def __init__(
        self,
        text_responses: Sequence[str] = (),
        json_responses: Sequence[str] = (),
        error: Exception | None = None,
    ) -> None:
        self.text_responses = list(text_responses)
        self.json_responses = list(json_responses)
        self.error = error
        self.calls: list[list[ChatMessage]] = []

    async def complete_text(self, messages: Sequence[ChatMessage]) -> str:
        self.calls.append(list(messages))
        if self.error is not None:
            raise self.error
        return self.text_responses.pop(0)

    async def complete_json(self, messages: Sequence[ChatMessage], schema: type[SchemaT]) -> SchemaT:
        self.calls.append(list(messages))
        if self.error is not None:
            raise self.error
        return parse_json_response(content=self.json_responses.pop(0), schema=schema)


class RecordingNotifier:
    def __init__(self) -> None:
        self.completed: list[object] = []
        self.errors: list[str] = []

    async def send_review_completed(self, outcome: object) -> None:
        self.completed.append(outcome)

    async def send_error(self, error: str) -> None:
        self.errors.append(error)


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def gitlab_state() -> MockGitLabState:
    return MockGitLabState(token="t")


@pytest.fixture
def gitlab_client(gitlab_state: MockGitLabState) -> GitLabClient:
    transport = httpx.ASGITransport(app=build_mock_gitlab_app(gitlab_state))
    http_client = httpx.AsyncClient(transport=transport)
    return GitLabClient(base_url="http://gitlab.test", token="t", http_client=http_client)
