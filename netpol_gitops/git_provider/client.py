"""Common HTTP client for the Git hosting provider REST APIs."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
import logging
from typing import Any

import httpx

from netpol_gitops.credentials import Credentials
from netpol_gitops.exceptions import ProviderException
from netpol_gitops.sanitize import sanitize

from .provider import PullRequest

__all__ = [
    "ProviderClient",
    "PullRequestRequest",
]

_LOGGER = logging.getLogger(__name__)

TIMEOUT = 30.0
_MAX_ERROR_BODY = 500


@dataclass(frozen=True)
class PullRequestRequest:
    """The content of a pull request to create."""

    title: str
    head: str
    base: str
    body: str
    labels: list[str] = field(default_factory=list)


class ProviderClient(ABC):
    """A client for the pull request lifecycle of one repository.

    Errors raised from requests carry only sanitized text. A 404 response
    surfaces as a `ProviderException` with `is_not_found` set so that callers
    can treat it as normal control flow.
    """

    def __init__(
        self,
        repo_url: str,
        api_base: str,
        credentials: Credentials,
        tls_verify: bool = True,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize ProviderClient."""
        self._repo_url = repo_url
        self._api_base = api_base.rstrip("/")
        self._credentials = credentials
        self._client = httpx.AsyncClient(
            verify=tls_verify,
            timeout=TIMEOUT,
            transport=transport,
        )

    async def __aenter__(self) -> "ProviderClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the underlying connection pool."""
        await self._client.aclose()

    @property
    def api_base(self) -> str:
        """Return the REST API base URL."""
        return self._api_base

    @abstractmethod
    def _headers(self) -> dict[str, str]:
        """Return the authentication and content negotiation headers."""

    async def _request(
        self,
        method: str,
        url: str,
        json: Any = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        """Issue a request and return the decoded JSON body, if any."""
        safe_url = sanitize(url, self._credentials)
        _LOGGER.debug("%s %s", method, safe_url)
        try:
            response = await self._client.request(
                method, url, json=json, params=params, headers=self._headers()
            )
        except httpx.HTTPError as err:
            raise ProviderException(
                sanitize(f"{method} {url} failed: {err}", self._credentials)
            ) from None
        if response.is_error:
            text = sanitize(response.text[:_MAX_ERROR_BODY], self._credentials)
            raise ProviderException(
                f"{method} {safe_url} failed with status {response.status_code}: {text}",
                status_code=response.status_code,
            )
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            raise ProviderException(
                f"{method} {safe_url} returned a response that is not JSON"
            ) from None

    @staticmethod
    @abstractmethod
    def _parse(data: dict[str, Any], branch: str) -> PullRequest:
        """Convert a provider pull request object."""

    def _pull_request(self, data: Any, branch: str) -> PullRequest:
        """Convert a response body, rejecting one without the expected fields."""
        try:
            return self._parse(data, branch)
        except (KeyError, TypeError, ValueError, AttributeError) as err:
            raise ProviderException(
                f"Unexpected pull request response for branch {branch}: {err!r}"
            ) from None

    @abstractmethod
    async def create_pull_request(self, request: PullRequestRequest) -> PullRequest:
        """Open a pull request."""

    @abstractmethod
    async def _list_pull_requests(self, branch: str) -> list[PullRequest]:
        """Return pull requests in any state for a source branch, newest first."""

    async def find_pull_request(self, branch: str) -> PullRequest | None:
        """Return the pull request for a source branch, preferring an open one."""
        try:
            prs = await self._list_pull_requests(branch)
        except ProviderException as err:
            if err.is_not_found:
                return None
            raise
        for pr in prs:
            if pr.is_open:
                return pr
        return prs[0] if prs else None

    @abstractmethod
    async def merge_pull_request(self, number: int) -> None:
        """Merge a pull request."""

    @abstractmethod
    async def _delete_branch(self, branch: str) -> None:
        """Delete a branch through the provider specific endpoint."""

    async def delete_branch(self, branch: str) -> None:
        """Delete a branch, treating a missing branch as success."""
        try:
            await self._delete_branch(branch)
        except ProviderException as err:
            if err.is_not_found:
                _LOGGER.debug("Branch %s does not exist on the remote", branch)
                return
            raise
        _LOGGER.debug("Deleted remote branch %s", branch)
