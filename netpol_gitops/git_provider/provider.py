"""Git hosting provider detection and API endpoint resolution."""

from dataclasses import dataclass
from enum import StrEnum
import logging
from urllib.parse import urlparse

from netpol_gitops.exceptions import ConfigurationException

__all__ = [
    "GitProvider",
    "PullRequest",
    "detect_provider",
    "api_base_url",
    "repository_path",
]

_LOGGER = logging.getLogger(__name__)


class GitProvider(StrEnum):
    """Supported Git hosting providers."""

    GITHUB = "github"
    GITLAB = "gitlab"
    BITBUCKET = "bitbucket"


PUBLIC_API_BASE = {
    GitProvider.GITHUB: "https://api.github.com",
    GitProvider.GITLAB: "https://gitlab.com/api/v4",
    GitProvider.BITBUCKET: "https://api.bitbucket.org/2.0",
}

SELF_HOSTED_API_PATH = {
    GitProvider.GITHUB: "/api/v3",
    GitProvider.GITLAB: "/api/v4",
    GitProvider.BITBUCKET: "/rest/api/1.0",
}

PUBLIC_HOSTS = {
    GitProvider.GITHUB: "github.com",
    GitProvider.GITLAB: "gitlab.com",
    GitProvider.BITBUCKET: "bitbucket.org",
}

STATE_OPEN = "OPEN"
STATE_MERGED = "MERGED"
STATE_CLOSED = "CLOSED"
STATE_DECLINED = "DECLINED"


@dataclass(frozen=True)
class PullRequest:
    """A pull or merge request in a provider neutral shape."""

    number: int
    """The provider assigned number (GitLab iid, Bitbucket id)."""

    state: str
    """Upper-cased state: OPEN, MERGED, CLOSED or DECLINED."""

    url: str
    """The web URL of the pull request."""

    branch: str
    """The source branch."""

    @property
    def is_open(self) -> bool:
        """Return true if the pull request is still open."""
        return self.state == STATE_OPEN

    @property
    def is_merged(self) -> bool:
        """Return true if the pull request has been merged."""
        return self.state == STATE_MERGED


def _host(url: str) -> str:
    if not (host := urlparse(url).hostname):
        raise ConfigurationException(f"Unable to determine host of repository URL '{url}'")
    return host.lower()


def detect_provider(url: str, explicit: str | None = None) -> GitProvider:
    """Return the provider from configuration or a well-known public host.

    Self-hosted installations must configure the provider explicitly.
    """
    if explicit:
        try:
            return GitProvider(explicit.strip().lower())
        except ValueError:
            raise ConfigurationException(
                f"Unsupported git provider '{explicit}', expected one of "
                f"{', '.join(p.value for p in GitProvider)}"
            ) from None
    host = _host(url)
    if host == PUBLIC_HOSTS[GitProvider.BITBUCKET]:
        return GitProvider.BITBUCKET
    if host == PUBLIC_HOSTS[GitProvider.GITHUB]:
        return GitProvider.GITHUB
    if host == PUBLIC_HOSTS[GitProvider.GITLAB] or "gitlab." in host:
        return GitProvider.GITLAB
    raise ConfigurationException(
        f"Unable to detect git provider for host '{host}', "
        "set gitRepository.provider for self-hosted installations"
    )


def api_base_url(provider: GitProvider, url: str, override: str | None = None) -> str:
    """Return the REST API base for the provider."""
    if override:
        return override.rstrip("/")
    host = _host(url)
    if host == PUBLIC_HOSTS[provider]:
        return PUBLIC_API_BASE[provider]
    parsed = urlparse(url)
    scheme = parsed.scheme if parsed.scheme in ("http", "https") else "https"
    return f"{scheme}://{parsed.netloc.rsplit('@', 1)[-1]}{SELF_HOSTED_API_PATH[provider]}"


def repository_path(url: str) -> list[str]:
    """Return the path segments of the repository URL without a .git suffix."""
    path = urlparse(url).path.strip("/")
    if path.endswith(".git"):
        path = path[: -len(".git")]
    parts = [part for part in path.split("/") if part]
    if len(parts) < 2:
        raise ConfigurationException(f"Invalid repository URL '{url}'")
    return parts
