"""
GitLab API 客户端（外部系统连接器）。

约定：
- 这里只做“HTTP 调用 + 错误处理 + schema 校验”，不做业务决策
- 发生错误时**直接抛错**，不要吞异常；是否降级由调用方（reviewer/publisher）决定
- 凭证通过构造函数注入（Bearer token），不使用模块级全局 client
"""

from __future__ import annotations

import logging
from urllib.parse import quote

import httpx

from mr_reviewer.gitlab.schemas import GitLabDiscussion
from mr_reviewer.gitlab.schemas import GitLabMergeRequest
from mr_reviewer.gitlab.schemas import GitLabMergeRequestChanges
from mr_reviewer.gitlab.schemas import GitLabNote

logger = logging.getLogger(__name__)


class GitLabAPIError(RuntimeError):
    """GitLab 返回 4xx/5xx。"""

    def __init__(self, status_code: int, detail: str) -> None:
        super().__init__(f"GitLab API error {status_code}: {detail}")
        self.status_code = status_code


class GitLabClient:
    """review 流程需要的最小 GitLab v4 API client。"""

    def __init__(self, base_url: str, token: str, http_client: httpx.AsyncClient) -> None:
        """
        - base_url: GitLab 实例地址（不包含 /api/v4）
        - token: 访问令牌（建议用专用机器人账号）
        - http_client: 复用的 httpx.AsyncClient
        """
        if not token:
            raise ValueError("GitLab token must be non-empty")
        self._api_url = f"{base_url.rstrip('/')}/api/v4"
        self._token = token
        self._http_client = http_client

    def _headers(self) -> dict[str, str]:
        """GitLab API 鉴权头。"""
        return {"Authorization": f"Bearer {self._token}"}

    def _mr_url(self, project_id: int | str, mr_iid: int) -> str:
        # project_id 可能是 "group/project" 形式，必须整体编码
        return f"{self._api_url}/projects/{quote(str(project_id), safe='')}/merge_requests/{mr_iid}"

    @staticmethod
    def _raise_for_status(response: httpx.Response) -> None:
        if response.status_code >= 400:
            logger.error(f"GitLab API error {response.status_code} for {response.request.method} {response.request.url}")
            raise GitLabAPIError(status_code=response.status_code, detail=response.text)

    async def get_merge_request(self, project_id: int | str, mr_iid: int) -> GitLabMergeRequest:
        """GET /projects/:id/merge_requests/:iid"""
        response = await self._http_client.get(self._mr_url(project_id, mr_iid), headers=self._headers())
        self._raise_for_status(response)
        return GitLabMergeRequest.model_validate(response.json())

    async def get_merge_request_changes(self, project_id: int | str, mr_iid: int) -> GitLabMergeRequestChanges:
        """
        获取 MR changes（包含每个文件的 diff 与 diff_refs）。

        - GitLab v4 API: GET /projects/:id/merge_requests/:iid/changes
        """
        response = await self._http_client.get(f"{self._mr_url(project_id, mr_iid)}/changes", headers=self._headers())
        self._raise_for_status(response)
        return GitLabMergeRequestChanges.model_validate(response.json())

    async def get_raw_file(self, project_id: int | str, path: str, ref: str) -> str:
        """GET /projects/:id/repository/files/:path/raw?ref=..."""
        url = f"{self._api_url}/projects/{quote(str(project_id), safe='')}/repository/files/{quote(path, safe='')}/raw"
        response = await self._http_client.get(url, headers=self._headers(), params={"ref": ref})
        self._raise_for_status(response)
        return response.text

    async def post_merge_request_note(self, project_id: int | str, mr_iid: int, body: str) -> GitLabNote:
        """在 MR 下发布一条全局评论（note）。"""
        response = await self._http_client.post(
            f"{self._mr_url(project_id, mr_iid)}/notes",
            headers=self._headers(),
            json={"body": body},
        )
        self._raise_for_status(response)
        return GitLabNote.model_validate(response.json())

    async def create_merge_request_discussion(
        self,
        project_id: int | str,
        mr_iid: int,
        body: str,
        position: dict[str, object],
    ) -> GitLabDiscussion:
        """
        创建行内评论：POST /discussions + position（diff_refs + new_path/new_line...）。

        GitLab 对 position 校验很严格，行号不在 diff 内会直接 400，调用方需要兜底。
        """
        response = await self._http_client.post(
            f"{self._mr_url(project_id, mr_iid)}/discussions",
            headers=self._headers(),
            json={"body": body, "position": position},
        )
        self._raise_for_status(response)
        return GitLabDiscussion.model_validate(response.json())

    async def approve_merge_request(self, project_id: int | str, mr_iid: int) -> None:
        """POST /projects/:id/merge_requests/:iid/approve"""
        response = await self._http_client.post(f"{self._mr_url(project_id, mr_iid)}/approve", headers=self._headers())
        self._raise_for_status(response)
