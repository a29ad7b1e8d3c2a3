"""
本地 Mock OpenAI-compatible LLM server。

用途：
- 在没有真实 LLM 网关的情况下，本地跑通闭环：
  - 结构化文件 review（threshold 策略）
  - 文本文件 review + 整体 review（categorical 策略）

启动：
  python -m mr_reviewer.dev.mock_openai_server
"""

from __future__ import annotations

import json
from collections.abc import Sequence

import uvicorn
from fastapi import FastAPI
from pydantic import BaseModel, Field

from mr_reviewer.llm.client import ChatMessage


class ChatCompletionRequest(BaseModel):
    model: str
    messages: list[ChatMessage] = Field(default_factory=list)


def _extract_path_from_review_prompt(prompt: str) -> str:
    """文件 review 的 user prompt 里带着 JSON payload，取其中的 path。"""
    start = prompt.find("{")
    if start < 0:
        raise ValueError("Cannot find JSON payload in reviewer prompt")
    payload = json.loads(prompt[start:])
    return str(payload["path"])


def _build_mock_structured_review(path: str) -> str:
    return json.dumps(
        {
            "score": 8,
            "overallComment": "[MOCK] Looks reasonable; consider adding tests for edge cases.",
            "specificComments": [{"filePath": path, "line": 1, "comment": "[MOCK] Add a docstring here."}],
        }
    )


def _build_mock_narrative_review() -> str:
    return (
        "- Critical issues: None found\n"
        "- Style/quality issues: None found\n"
        "- Suggestions: [MOCK] consider adding tests for edge cases\n"
        "- Checklist compliance: None found\n"
        "- Positive aspects: small, focused change"
    )


def _build_mock_overall_review() -> str:
    return (
        "## Summary\n[MOCK] Small, focused change.\n\n"
        "## Checklist Evaluation\nMost items pass.\n\n"
        "## Key Findings\n- No blocking issues\n\n"
        "## Recommendation\nAPPROVE\n\n"
        "## Action Items\n- None"
    )


def decide_mock_response(messages: Sequence[ChatMessage]) -> str:
    system = "\n".join(m.content for m in messages if m.role == "system")
    user = "\n".join(m.content for m in messages if m.role == "user")
    if not user:
        raise ValueError("Mock server expects at least one user message")

    if "team lead" in system:
        return _build_mock_overall_review()
    if "Return ONLY a JSON object" in system:
        return _build_mock_structured_review(path=_extract_path_from_review_prompt(prompt=user))
    return _build_mock_narrative_review()


app = FastAPI(title="Mock OpenAI-compatible LLM", version="0.1.0")


@app.post("/v1/chat/completions")
async def chat_completions(req: ChatCompletionRequest) -> dict[str, object]:
    content = decide_mock_response(messages=req.messages)
    return {
        "id": "chatcmpl-mock",
        "object": "chat.completion",
        "created": 0,
        "model": req.model,
        "choices": [
            {"index": 0, "finish_reason": "stop", "message": {"role": "assistant", "content": content}},
        ],
    }


def main() -> None:
    uvicorn.run(app, host="127.0.0.1", port=9001)


if __name__ == "__main__":
    main()
