from __future__ import annotations

import httpx
import pytest
from pydantic import BaseModel

from mr_reviewer.dev.mock_openai_server import app as mock_openai_app
from mr_reviewer.dev.mock_openai_server import decide_mock_response
from mr_reviewer.llm.client import ChatMessage
from mr_reviewer.llm.client import OpenAICompatLLMClient
from mr_reviewer.llm.client import _normalize_base_url
from mr_reviewer.llm.client import parse_json_response
from mr_reviewer.review.reviewer import StructuredFileReview
from mr_reviewer.review.reviewer import _system_prompt
from mr_reviewer.review.reviewer import _user_prompt


class _Verdict(BaseModel):
    ok: bool


def test_normalize_base_url() -> None:
    assert _normalize_base_url("https://llm.example.com") == "https://llm.example.com/v1"
    assert _normalize_base_url("https://llm.example.com/v1/") == "https://llm.example.com/v1"


def test_parse_json_response_accepts_code_fence() -> None:
    assert parse_json_response('```json\n{"ok": true}\n```', _Verdict).ok is True
    assert parse_json_response('  {"ok": false}  ', _Verdict).ok is False


def test_parse_json_response_rejects_bad_json_and_schema() -> None:
    with pytest.raises(ValueError, match="valid JSON"):
        parse_json_response("nope", _Verdict)
    with pytest.raises(ValueError, match="_Verdict"):
        parse_json_response('{"ok": "maybe"}', _Verdict)


def test_mock_openai_dispatches_by_prompt() -> None:
    structured = [
        ChatMessage(role="system", content=_system_prompt(file_type="Python", response_mode="structured")),
        ChatMessage(role="user", content=_user_prompt(payload='{"path": "src/a.py", "diff": "", "content": ""}', file_type="Python")),
    ]
    review = parse_json_response(decide_mock_response(structured), StructuredFileReview)
    assert review.specificComments[0].filePath == "src/a.py"

    narrative = [
        ChatMessage(role="system", content=_system_prompt(file_type="Python", response_mode="narrative")),
        ChatMessage(role="user", content="Review this"),
    ]
    assert "Critical issues" in decide_mock_response(narrative)


def _client() -> OpenAICompatLLMClient:
    http_client = httpx.AsyncClient(transport=httpx.ASGITransport(app=mock_openai_app))
    return OpenAICompatLLMClient(api_key="k", base_url="http://llm.test", http_client=http_client, model="mock")


@pytest.mark.anyio
async def test_openai_compat_client_structured_round_trip() -> None:
    messages = [
        ChatMessage(role="system", content=_system_prompt(file_type="Python", response_mode="structured")),
        ChatMessage(role="user", content=_user_prompt(payload='{"path": "src/a.py", "diff": "", "content": ""}', file_type="Python")),
    ]
    review = await _client().complete_json(messages=messages, schema=StructuredFileReview)
    assert review.score == 8
    assert review.specificComments[0].line == 1


@pytest.mark.anyio
async def test_openai_compat_client_text() -> None:
    messages = [
        ChatMessage(role="system", content="You are a senior software engineering team lead."),
        ChatMessage(role="user", content="Individual file reviews: ..."),
    ]
    text = await _client().complete_text(messages=messages)
    assert "## Recommendation\nAPPROVE" in text
