"""GitHub pull request API."""

from typing import Any

from .client import ProviderClient, PullRequestRequest
from .provider import STATE_MERGED, PullRequest, repository_path


class GitHubClient(ProviderClient):
    """Client for the GitHub REST API v3."""

    @property
    def _owner(self) -> str:
        return repository_path(self._repo_url)[0]

    @property
    def _repo_prefix(self) -> str:
        parts = repository_path(self._repo_url)
        return f"{self.api_base}/repos/{parts[0]}/{parts[1]}"

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"token {self._credentials.token}",
            "Accept": "application/vnd.github.v3+json",
        }

    @staticmethod
    def _parse(data: dict[str, Any], branch: str) -> PullRequest:
        state = str(data.get("state", "")).upper()
        if data.get("merged") or data.get("merged_at"):
            state = STATE_MERGED
        return PullRequest(
            number=int(data["number"]),
            state=state,
            url=data.get("html_url", ""),
            branch=branch,
        )

    async def create_pull_request(self, request: PullRequestRequest) -> PullRequest:
        payload: dict[str, Any] = {
            "title": request.title,
            "head": request.head,
            "base": request.base,
            "body": request.body,
        }
        if request.labels:
            payload["labels"] = request.labels
        data = await self._request("POST", f"{self._repo_prefix}/pulls", json=payload)
        return self._pull_request(data, request.head)

    async def _list_pull_requests(self, branch: str) -> list[PullRequest]:
        data = await self._request(
            "GET",
            f"{self._repo_prefix}/pulls",
            params={"head": f"{self._owner}:{branch}", "state": "all"},
        )
        return [self._pull_request(item, branch) for item in data or []]

    async def merge_pull_request(self, number: int) -> None:
        await self._request(
            "PUT",
            f"{self._repo_prefix}/pulls/{number}/merge",
            json={"merge_method": "merge"},
        )

    async def _delete_branch(self, branch: str) -> None:
        await self._request("DELETE", f"{self._repo_prefix}/git/refs/heads/{branch}")
