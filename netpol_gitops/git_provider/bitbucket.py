"""Bitbucket pull request API."""

from typing import Any

from .client import ProviderClient, PullRequestRequest
from .provider import PullRequest, repository_path

_STATES = ("OPEN", "MERGED", "DECLINED", "SUPERSEDED")


class BitbucketClient(ProviderClient):
    """Client for the Bitbucket REST API 2.0."""

    @property
    def _repo_prefix(self) -> str:
        parts = repository_path(self._repo_url)
        return f"{self.api_base}/repositories/{parts[-2]}/{parts[-1]}"

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._credentials.token}"}

    @staticmethod
    def _parse(data: dict[str, Any], branch: str) -> PullRequest:
        return PullRequest(
            number=int(data["id"]),
            state=str(data.get("state", "")).upper(),
            url=data.get("links", {}).get("html", {}).get("href", ""),
            branch=data.get("source", {}).get("branch", {}).get("name") or branch,
        )

    async def create_pull_request(self, request: PullRequestRequest) -> PullRequest:
        payload = {
            "title": request.title,
            "source": {"branch": {"name": request.head}},
            "destination": {"branch": {"name": request.base}},
            "description": request.body,
        }
        data = await self._request(
            "POST", f"{self._repo_prefix}/pullrequests", json=payload
        )
        return self._pull_request(data, request.head)

    async def _list_pull_requests(self, branch: str) -> list[PullRequest]:
        data = await self._request(
            "GET",
            f"{self._repo_prefix}/pullrequests",
            params={
                "q": f'source.branch.name="{branch}"',
                "state": list(_STATES),
                "sort": "-created_on",
            },
        )
        return [
            self._pull_request(item, branch)
            for item in (data or {}).get("values", [])
            if item.get("source", {}).get("branch", {}).get("name") == branch
        ]

    async def merge_pull_request(self, number: int) -> None:
        await self._request("POST", f"{self._repo_prefix}/pullrequests/{number}/merge")

    async def _delete_branch(self, branch: str) -> None:
        await self._request("DELETE", f"{self._repo_prefix}/refs/branches/{branch}")
