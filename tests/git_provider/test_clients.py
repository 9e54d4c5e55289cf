"""Tests for the provider pull request clients."""

import json
from typing import Any

import httpx
import pytest

from netpol_gitops.credentials import Credentials
from netpol_gitops.exceptions import ConfigurationException, ProviderException
from netpol_gitops.git_provider import ProviderClient, PullRequestRequest, new_client
from netpol_gitops.git_provider.bitbucket import BitbucketClient
from netpol_gitops.git_provider.github import GitHubClient
from netpol_gitops.git_provider.gitlab import GitLabClient
from netpol_gitops.manifest import GitRepositorySpec

TOKEN = "tok_Abcdefghijklmnopqrstuvwxyz"
CREDENTIALS = Credentials(token=TOKEN)
BRANCH = "networkpolicy/prod/billing"
REQUEST = PullRequestRequest(
    title="NetworkPolicy: new for namespace billing",
    head=BRANCH,
    base="main",
    body="Cluster: prod",
    labels=["auto-merge"],
)


class Recorder:
    """Records requests and replies with canned responses."""

    def __init__(self, responses: dict[tuple[str, str], httpx.Response]) -> None:
        self.responses = responses
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        key = (request.method, request.url.raw_path.decode().split("?")[0])
        if key not in self.responses:
            return httpx.Response(404, json={"message": "Not Found"})
        return self.responses[key]

    def body(self, index: int = -1) -> Any:
        return json.loads(self.requests[index].content)


def make_spec(url: str) -> GitRepositorySpec:
    return GitRepositorySpec(url=url, base_branch="main", cluster_name="prod")


def client_for(url: str, recorder: Recorder) -> ProviderClient:
    return new_client(
        make_spec(url), CREDENTIALS, transport=httpx.MockTransport(recorder)
    )


async def test_new_client_dispatch() -> None:
    """Test that the client class follows the provider."""
    recorder = Recorder({})
    for url, cls in (
        ("https://github.com/acme/netpol.git", GitHubClient),
        ("https://gitlab.com/acme/netpol.git", GitLabClient),
        ("https://bitbucket.org/acme/netpol.git", BitbucketClient),
    ):
        async with client_for(url, recorder) as client:
            assert isinstance(client, cls)
    with pytest.raises(ConfigurationException):
        client_for("https://git.corp.example/acme/netpol.git", recorder)


async def test_github_create_pull_request() -> None:
    """Test the GitHub payload, headers and response parsing."""
    recorder = Recorder(
        {
            ("POST", "/repos/acme/netpol/pulls"): httpx.Response(
                201,
                json={
                    "number": 7,
                    "state": "open",
                    "html_url": "https://github.com/acme/netpol/pull/7",
                },
            )
        }
    )
    async with client_for("https://github.com/acme/netpol.git", recorder) as client:
        pr = await client.create_pull_request(REQUEST)
    assert pr.number == 7
    assert pr.is_open
    assert pr.url == "https://github.com/acme/netpol/pull/7"
    assert pr.branch == BRANCH
    request = recorder.requests[0]
    assert request.url.host == "api.github.com"
    assert request.headers["Authorization"] == f"token {TOKEN}"
    assert recorder.body() == {
        "title": REQUEST.title,
        "head": BRANCH,
        "base": "main",
        "body": "Cluster: prod",
        "labels": ["auto-merge"],
    }


async def test_github_find_prefers_open() -> None:
    """Test that an open pull request is preferred over older closed ones."""
    recorder = Recorder(
        {
            ("GET", "/repos/acme/netpol/pulls"): httpx.Response(
                200,
                json=[
                    {"number": 9, "state": "closed", "merged_at": "2026-01-01T00:00:00Z"},
                    {"number": 8, "state": "open"},
                ],
            )
        }
    )
    async with client_for("https://github.com/acme/netpol.git", recorder) as client:
        pr = await client.find_pull_request(BRANCH)
    assert pr is not None
    assert pr.number == 8
    params = recorder.requests[0].url.params
    assert params["head"] == f"acme:{BRANCH}"
    assert params["state"] == "all"


async def test_github_merged_state() -> None:
    """Test that a merged pull request is normalized to MERGED."""
    recorder = Recorder(
        {
            ("GET", "/repos/acme/netpol/pulls"): httpx.Response(
                200, json=[{"number": 9, "state": "closed", "merged_at": "2026-01-01"}]
            )
        }
    )
    async with client_for("https://github.com/acme/netpol.git", recorder) as client:
        pr = await client.find_pull_request(BRANCH)
    assert pr is not None
    assert pr.is_merged


async def test_github_merge_and_delete() -> None:
    """Test merge and branch deletion endpoints."""
    recorder = Recorder(
        {
            ("PUT", "/repos/acme/netpol/pulls/7/merge"): httpx.Response(
                200, json={"merged": True}
            ),
            ("DELETE", f"/repos/acme/netpol/git/refs/heads/{BRANCH}"): httpx.Response(204),
        }
    )
    async with client_for("https://github.com/acme/netpol.git", recorder) as client:
        await client.merge_pull_request(7)
        await client.delete_branch(BRANCH)
    assert recorder.body(0) == {"merge_method": "merge"}
    assert recorder.requests[1].method == "DELETE"


async def test_not_found_is_not_an_error() -> None:
    """Test that 404 responses are normal control flow for lookups and deletes."""
    recorder = Recorder({})
    async with client_for("https://github.com/acme/netpol.git", recorder) as client:
        assert await client.find_pull_request(BRANCH) is None
        await client.delete_branch(BRANCH)


async def test_empty_listing() -> None:
    """Test a listing without any pull request."""
    recorder = Recorder({("GET", "/repos/acme/netpol/pulls"): httpx.Response(200, json=[])})
    async with client_for("https://github.com/acme/netpol.git", recorder) as client:
        assert await client.find_pull_request(BRANCH) is None


async def test_error_is_sanitized() -> None:
    """Test that provider errors never echo the token."""
    recorder = Recorder(
        {
            ("POST", "/repos/acme/netpol/pulls"): httpx.Response(
                401, json={"message": f"Bad credentials for token {TOKEN}"}
            )
        }
    )
    async with client_for("https://github.com/acme/netpol.git", recorder) as client:
        with pytest.raises(ProviderException) as exc_info:
            await client.create_pull_request(REQUEST)
    assert exc_info.value.status_code == 401
    assert TOKEN not in str(exc_info.value)
    assert not exc_info.value.is_rate_limit


async def test_rate_limit() -> None:
    """Test that rate limit responses are recognized."""
    recorder = Recorder(
        {
            ("POST", "/repos/acme/netpol/pulls"): httpx.Response(
                403, json={"message": "API rate limit exceeded"}
            )
        }
    )
    async with client_for("https://github.com/acme/netpol.git", recorder) as client:
        with pytest.raises(ProviderException) as exc_info:
            await client.create_pull_request(REQUEST)
    assert exc_info.value.is_rate_limit


async def test_network_error() -> None:
    """Test that transport failures surface as provider errors."""

    def fail(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    client = new_client(
        make_spec("https://github.com/acme/netpol.git"),
        CREDENTIALS,
        transport=httpx.MockTransport(fail),
    )
    async with client:
        with pytest.raises(ProviderException, match="connection refused"):
            await client.find_pull_request(BRANCH)


async def test_gitlab() -> None:
    """Test the GitLab merge request contract."""
    project = "/api/v4/projects/acme%2Finfra%2Fnetpol"
    recorder = Recorder(
        {
            ("POST", f"{project}/merge_requests"): httpx.Response(
                201,
                json={
                    "iid": 3,
                    "state": "opened",
                    "web_url": "https://gitlab.com/acme/infra/netpol/-/merge_requests/3",
                    "source_branch": BRANCH,
                },
            ),
            ("GET", f"{project}/merge_requests"): httpx.Response(
                200, json=[{"iid": 3, "state": "merged", "source_branch": BRANCH}]
            ),
            ("PUT", f"{project}/merge_requests/3/merge"): httpx.Response(200, json={}),
        }
    )
    async with client_for("https://gitlab.com/acme/infra/netpol.git", recorder) as client:
        pr = await client.create_pull_request(REQUEST)
        assert pr.number == 3
        assert pr.is_open
        found = await client.find_pull_request(BRANCH)
        await client.merge_pull_request(3)
        await client.delete_branch(BRANCH)
    assert found is not None
    assert found.is_merged
    assert recorder.requests[0].url.raw_path.decode().startswith(project)
    assert recorder.requests[0].headers["PRIVATE-TOKEN"] == TOKEN
    assert recorder.body(0) == {
        "title": REQUEST.title,
        "source_branch": BRANCH,
        "target_branch": "main",
        "description": "Cluster: prod",
        "labels": "auto-merge",
    }
    assert recorder.requests[1].url.params["source_branch"] == BRANCH
    assert recorder.requests[3].method == "DELETE"
    assert recorder.requests[3].url.raw_path.decode().endswith(
        "repository/branches/networkpolicy%2Fprod%2Fbilling"
    )


async def test_bitbucket() -> None:
    """Test the Bitbucket pull request contract."""
    prefix = "/2.0/repositories/acme/netpol"
    html = "https://bitbucket.org/acme/netpol/pull-requests/5"
    recorder = Recorder(
        {
            ("POST", f"{prefix}/pullrequests"): httpx.Response(
                201,
                json={
                    "id": 5,
                    "state": "OPEN",
                    "links": {"html": {"href": html}},
                    "source": {"branch": {"name": BRANCH}},
                },
            ),
            ("GET", f"{prefix}/pullrequests"): httpx.Response(
                200,
                json={
                    "values": [
                        {"id": 6, "state": "OPEN", "source": {"branch": {"name": "other"}}},
                        {"id": 5, "state": "DECLINED", "source": {"branch": {"name": BRANCH}}},
                    ]
                },
            ),
            ("POST", f"{prefix}/pullrequests/5/merge"): httpx.Response(200, json={}),
        }
    )
    async with client_for("https://bitbucket.org/acme/netpol.git", recorder) as client:
        pr = await client.create_pull_request(REQUEST)
        found = await client.find_pull_request(BRANCH)
        await client.merge_pull_request(5)
    assert pr.number == 5
    assert pr.url == html
    assert found is not None
    assert found.number == 5
    assert found.state == "DECLINED"
    assert recorder.requests[0].headers["Authorization"] == f"Bearer {TOKEN}"
    assert recorder.body(0) == {
        "title": REQUEST.title,
        "source": {"branch": {"name": BRANCH}},
        "destination": {"branch": {"name": "main"}},
        "description": "Cluster: prod",
    }
    params = recorder.requests[1].url.params
    assert params["q"] == f'source.branch.name="{BRANCH}"'
    assert params.get_list("state") == ["OPEN", "MERGED", "DECLINED", "SUPERSEDED"]


@pytest.mark.parametrize(
    ("url", "path"),
    [
        ("https://github.com/acme/netpol.git", "/repos/acme/netpol/pulls"),
        ("https://gitlab.com/acme/netpol.git", "/api/v4/projects/acme%2Fnetpol/merge_requests"),
        ("https://bitbucket.org/acme/netpol.git", "/2.0/repositories/acme/netpol/pullrequests"),
    ],
)
async def test_create_response_without_number(url: str, path: str) -> None:
    """Test a successful response that does not identify the pull request."""
    recorder = Recorder({("POST", path): httpx.Response(201, json={"state": "open"})})
    async with client_for(url, recorder) as client:
        with pytest.raises(ProviderException, match="Unexpected pull request response"):
            await client.create_pull_request(REQUEST)
