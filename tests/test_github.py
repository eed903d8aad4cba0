"""Tests for the GitHub REST transport, driven through httpx.MockTransport."""

import datetime
from collections.abc import Callable

import httpx
import pytest

from fleet_sync.errors import DiscoveryError, RateLimitExceededError
from fleet_sync.github import GitHubClient

Handler = Callable[[httpx.Request], httpx.Response]


def make_client(handler: Handler, token: str | None = "ghp_test") -> GitHubClient:
    return GitHubClient(token=token, transport=httpx.MockTransport(handler))


def test_list_repositories_request_and_parsing() -> None:
    """Verifies the listing request shape and the parsed records."""
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200,
            json=[
                {
                    "name": "api",
                    "full_name": "acme/api",
                    "private": True,
                    "archived": False,
                    "fork": False,
                    "created_at": "2020-01-01T00:00:00Z",
                    "updated_at": "2024-01-01T00:00:00Z",
                    "clone_url": "https://github.com/acme/api.git",
                    "ssh_url": "git@github.com:acme/api.git",
                    "stargazers_count": 12,
                }
            ],
        )

    with make_client(handler) as client:
        repos = client.list_repositories("acme", page=2, per_page=50)

    request = seen[0]
    assert request.url.path == "/orgs/acme/repos"
    assert request.url.params["type"] == "all"
    assert request.url.params["page"] == "2"
    assert request.url.params["per_page"] == "50"
    assert request.headers["Authorization"] == "Bearer ghp_test"
    assert request.headers["Accept"] == "application/vnd.github+json"

    assert len(repos) == 1
    assert repos[0].full_name == "acme/api"
    assert repos[0].private is True
    assert repos[0].ssh_url == "git@github.com:acme/api.git"


def test_anonymous_client_sends_no_authorization() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=[])

    make_client(handler, token=None).list_repositories("acme", 1, 100)

    assert "Authorization" not in seen[0].headers


def test_rate_limit_parsing() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/rate_limit"
        return httpx.Response(
            200,
            json={
                "resources": {
                    "core": {"limit": 5000, "remaining": 4321, "reset": 1704114000}
                }
            },
        )

    status = make_client(handler).rate_limit()

    assert status.limit == 5000
    assert status.remaining == 4321
    assert status.reset_at == datetime.datetime(
        2024, 1, 1, 13, 0, tzinfo=datetime.timezone.utc
    )


@pytest.mark.parametrize(
    ("status_code", "headers", "body"),
    [
        (429, {}, {"message": "Too many requests"}),
        (403, {"x-ratelimit-remaining": "0"}, {"message": "Forbidden"}),
        (403, {}, {"message": "API rate limit exceeded for 1.2.3.4."}),
    ],
)
def test_rate_limited_responses(
    status_code: int, headers: dict[str, str], body: dict[str, str]
) -> None:
    """Verifies that exhausted quota is reported distinctly from other errors."""

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            status_code,
            headers={"x-ratelimit-reset": "1704114000", **headers},
            json=body,
        )

    with pytest.raises(RateLimitExceededError) as excinfo:
        make_client(handler).list_repositories("acme", 1, 100)

    assert excinfo.value.status_code == status_code
    assert excinfo.value.reset_at == datetime.datetime(
        2024, 1, 1, 13, 0, tzinfo=datetime.timezone.utc
    )


@pytest.mark.parametrize(
    ("status_code", "message"),
    [
        (401, "GitHub authentication failed: Bad credentials"),
        (403, "GitHub API HTTP 403: Resource not accessible"),
        (404, "Not found: /orgs/acme/repos"),
        (500, "GitHub API HTTP 500: Server Error"),
    ],
)
def test_http_errors_become_discovery_errors(status_code: int, message: str) -> None:
    body = {
        401: "Bad credentials",
        403: "Resource not accessible",
        404: "Not Found",
        500: "Server Error",
    }[status_code]

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code, json={"message": body})

    with pytest.raises(DiscoveryError) as excinfo:
        make_client(handler).list_repositories("acme", 1, 100)

    assert not isinstance(excinfo.value, RateLimitExceededError)
    assert str(excinfo.value) == message
    assert excinfo.value.status_code == status_code


def test_network_error_becomes_discovery_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(DiscoveryError, match="Network error contacting GitHub"):
        make_client(handler).list_repositories("acme", 1, 100)


@pytest.mark.parametrize(
    "payload", [{"message": "not a list"}, [{"full_name": "acme/nameless"}]]
)
def test_unexpected_payloads(payload: object) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=payload)

    with pytest.raises(DiscoveryError):
        make_client(handler).list_repositories("acme", 1, 100)
