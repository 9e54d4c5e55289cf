"""Clients for the pull request lifecycle on Git hosting providers.

Each supported provider is a member of the closed `GitProvider` enum with one
`ProviderClient` implementation. Use `new_client` to build the client for a
repository configuration:

    async with new_client(spec, credentials) as client:
        pr = await client.find_pull_request(branch)
"""

import httpx

from netpol_gitops.credentials import Credentials
from netpol_gitops.manifest import GitRepositorySpec

from .bitbucket import BitbucketClient
from .client import ProviderClient, PullRequestRequest
from .github import GitHubClient
from .gitlab import GitLabClient
from .provider import (
    GitProvider,
    PullRequest,
    api_base_url,
    detect_provider,
    repository_path,
)

__all__ = [
    "GitProvider",
    "ProviderClient",
    "PullRequest",
    "PullRequestRequest",
    "api_base_url",
    "detect_provider",
    "new_client",
    "repository_path",
]

_CLIENTS: dict[GitProvider, type[ProviderClient]] = {
    GitProvider.GITHUB: GitHubClient,
    GitProvider.GITLAB: GitLabClient,
    GitProvider.BITBUCKET: BitbucketClient,
}


def new_client(
    spec: GitRepositorySpec,
    credentials: Credentials,
    transport: httpx.AsyncBaseTransport | None = None,
) -> ProviderClient:
    """Return the client for the provider of the repository."""
    provider = detect_provider(spec.url, spec.provider)
    api_base = api_base_url(provider, spec.url, spec.api_base_url)
    return _CLIENTS[provider](
        spec.url,
        api_base,
        credentials,
        tls_verify=spec.git_tls_verify,
        transport=transport,
    )
