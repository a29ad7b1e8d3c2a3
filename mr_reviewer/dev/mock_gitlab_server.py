"""
本地 Mock GitLab API server（只覆盖 review 流程用到的接口）。

用途：
- 在没有真实 GitLab 的情况下，本地跑通：
  get MR -> get changes -> get raw file -> post note / discussion -> approve
- 测试里通过 `httpx.ASGITransport` 直接挂载，端到端验证 GitLabClient + publisher

启动：
  python -m mr_reviewer.dev.mock_gitlab_server
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field

import uvicorn
from fastapi import FastAPI
from fastapi import Header
from fastapi import HTTPException
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel


class NoteCreateRequest(BaseModel):
    body: str


class DiscussionCreateRequest(BaseModel):
    body: str
    position: dict[str, object]


def _default_merge_request() -> dict[str, object]:
    return {
        "id": 1001,
        "iid": 7,
        "project_id": 42,
        "title": "Add subtraction helper",
        "description": "Adds sub() next to add(). Trello: https://trello.com/c/abc123",
        "state": "opened",
        "source_branch": "feature/sub",
        "target_branch": "main",
        "draft": False,
        "web_url": "http://localhost:9002/group/project/-/merge_requests/7",
    }


def _default_changes() -> dict[str, object]:
    return {
        "changes": [
            {
                "old_path": "src/example.py",
                "new_path": "src/example.py",
                "a_mode": "100644",
                "b_mode": "100644",
                "new_file": False,
                "renamed_file": False,
                "deleted_file": False,
                "diff": (
                    "@@ -1,2 +1,5 @@\n"
                    " def add(a: int, b: int) -> int:\n"
                    "     return a + b\n"
                    "+\n"
                    "+def sub(a: int, b: int) -> int:\n"
                    "+    return a - b\n"
                ),
            }
        ],
        "diff_refs": {
            "base_sha": "0000000000000000000000000000000000000000",
            "head_sha": "1111111111111111111111111111111111111111",
            "start_sha": "0000000000000000000000000000000000000000",
        },
    }


@dataclass
class MockGitLabState:
    """mock server 的全部可变状态（每个 app 实例一份）。"""

    merge_request: dict[str, object] = field(default_factory=_default_merge_request)
    changes: dict[str, object] = field(default_factory=_default_changes)
    files: dict[tuple[str, str], str] = field(default_factory=dict)
    token: str | None = None
    reject_discussions: bool = False
    reject_approvals: bool = False
    notes: list[dict[str, object]] = field(default_factory=list)
    discussions: list[dict[str, object]] = field(default_factory=list)
    approvals: list[int] = field(default_factory=list)


def build_mock_gitlab_app(state: MockGitLabState | None = None) -> FastAPI:
    state = state or MockGitLabState()
    app = FastAPI(title="Mock GitLab API", version="0.1.0")

    def check_auth(authorization: str | None) -> None:
        if state.token is not None and authorization != f"Bearer {state.token}":
            raise HTTPException(status_code=401, detail="401 Unauthorized")

    @app.get("/api/v4/projects/{project_id}/merge_requests/{mr_iid}")
    async def get_merge_request(
        project_id: str,
        mr_iid: int,
        authorization: str | None = Header(default=None),
    ) -> dict[str, object]:
        check_auth(authorization)
        return {**state.merge_request, "iid": mr_iid}

    @app.get("/api/v4/projects/{project_id}/merge_requests/{mr_iid}/changes")
    async def get_merge_request_changes(
        project_id: str,
        mr_iid: int,
        authorization: str | None = Header(default=None),
    ) -> dict[str, object]:
        check_auth(authorization)
        return state.changes

    @app.get("/api/v4/projects/{project_id}/repository/files/{file_path:path}/raw", response_class=PlainTextResponse)
    async def get_raw_file(
        project_id: str,
        file_path: str,
        ref: str,
        authorization: str | None = Header(default=None),
    ) -> str:
        check_auth(authorization)
        content = state.files.get((file_path, ref))
        if content is None:
            raise HTTPException(status_code=404, detail="404 File Not Found")
        return content

    @app.post("/api/v4/projects/{project_id}/merge_requests/{mr_iid}/notes", status_code=201)
    async def post_merge_request_note(
        project_id: str,
        mr_iid: int,
        req: NoteCreateRequest,
        authorization: str | None = Header(default=None),
    ) -> dict[str, object]:
        check_auth(authorization)
        note_id = len(state.notes) + 1
        state.notes.append({"id": note_id, "body": req.body, "mr_iid": mr_iid, "created_at": int(time.time())})
        return {"id": note_id, "body": req.body}

    @app.post("/api/v4/projects/{project_id}/merge_requests/{mr_iid}/discussions", status_code=201)
    async def post_merge_request_discussion(
        project_id: str,
        mr_iid: int,
        req: DiscussionCreateRequest,
        authorization: str | None = Header(default=None),
    ) -> dict[str, object]:
        check_auth(authorization)
        if state.reject_discussions:
            raise HTTPException(status_code=400, detail="line_code can't be blank")
        discussion_id = f"d{len(state.discussions) + 1}"
        state.discussions.append({"id": discussion_id, "body": req.body, "position": req.position})
        return {"id": discussion_id, "notes": [{"id": 1000 + len(state.discussions), "body": req.body}]}

    @app.post("/api/v4/projects/{project_id}/merge_requests/{mr_iid}/approve", status_code=201)
    async def approve_merge_request(
        project_id: str,
        mr_iid: int,
        authorization: str | None = Header(default=None),
    ) -> dict[str, object]:
        check_auth(authorization)
        if state.reject_approvals:
            raise HTTPException(status_code=401, detail="401 Unauthorized")
        state.approvals.append(mr_iid)
        return {"id": mr_iid, "approved": True}

    @app.get("/__debug__/state")
    async def debug_state() -> dict[str, object]:
        return {"notes": state.notes, "discussions": state.discussions, "approvals": state.approvals}

    return app


def main() -> None:
    state = MockGitLabState(files={("src/example.py", "1111111111111111111111111111111111111111"): "def add(a, b):\n"})
    uvicorn.run(build_mock_gitlab_app(state), host="127.0.0.1", port=9002)


if __name__ == "__main__":
    main()
