"""GitLab merge request API."""

from typing import Any
from urllib.parse import quote

from .client import ProviderClient, PullRequestRequest
from .provider import STATE_OPEN, PullRequest, repository_path

# GitLab reports open merge requests as "opened"
_STATE_ALIASES = {"OPENED": STATE_OPEN}


class GitLabClient(ProviderClient):
    """Client for the GitLab REST API v4."""

    @property
    def _project_prefix(self) -> str:
        project = quote("/".join(repository_path(self._repo_url)), safe="")
        return f"{self.api_base}/projects/{project}"

    def _headers(self) -> dict[str, str]:
        return {"PRIVATE-TOKEN": self._credentials.token}

    @staticmethod
    def _parse(data: dict[str, Any], branch: str) -> PullRequest:
        state = str(data.get("state", "")).upper()
        return PullRequest(
            number=int(data["iid"]),
            state=_STATE_ALIASES.get(state, state),
            url=data.get("web_url", ""),
            branch=data.get("source_branch") or branch,
        )

    async def create_pull_request(self, request: PullRequestRequest) -> PullRequest:
        payload: dict[str, Any] = {
            "title": request.title,
            "source_branch": request.head,
            "target_branch": request.base,
            "description": request.body,
        }
        if request.labels:
            payload["labels"] = ",".join(request.labels)
        data = await self._request(
            "POST", f"{self._project_prefix}/merge_requests", json=payload
        )
        return self._pull_request(data, request.head)

    async def _list_pull_requests(self, branch: str) -> list[PullRequest]:
        data = await self._request(
            "GET",
            f"{self._project_prefix}/merge_requests",
            params={"source_branch": branch, "state": "all"},
        )
        return [self._pull_request(item, branch) for item in data or []]

    async def merge_pull_request(self, number: int) -> None:
        await self._request(
            "PUT", f"{self._project_prefix}/merge_requests/{number}/merge"
        )

    async def _delete_branch(self, branch: str) -> None:
        await self._request(
            "DELETE",
            f"{self._project_prefix}/repository/branches/{quote(branch, safe='')}",
        )
