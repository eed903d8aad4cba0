"""GitHub REST transport used by repository discovery."""

import datetime
import logging
from types import TracebackType
from typing import Any, Protocol

import httpx

from .constants import APP_NAME, GITHUB_API_URL, USER_AGENT
from .errors import DiscoveryError, RateLimitExceededError
from .models import RateLimitStatus, Repository

logger = logging.getLogger(APP_NAME)


class RepositoryLister(Protocol):
    """Interface for the paginated repository listing the discoverer consumes."""

    def list_repositories(
        self, organization: str, page: int, per_page: int
    ) -> list[Repository]:
        """Return one page (1-based) of the organization's repositories."""
        ...

    def rate_limit(self) -> RateLimitStatus:
        """Return the current API quota."""
        ...


def _reset_time(headers: httpx.Headers) -> datetime.datetime | None:
    raw = headers.get("x-ratelimit-reset")
    if not raw:
        return None
    try:
        return datetime.datetime.fromtimestamp(int(raw), tz=datetime.timezone.utc)
    except ValueError:
        return None


def _error_message(response: httpx.Response) -> str:
    try:
        return str(response.json().get("message", response.text))
    except (ValueError, AttributeError):
        return response.text


class GitHubClient:
    """Synchronous GitHub REST client covering the two calls discovery needs.

    Args:
        token (str | None): A personal access or app token. Anonymous when None.
        api_url (str): Base URL of the REST API.
        timeout (float): Per-request timeout in seconds.
        transport (httpx.BaseTransport | None): Override for tests.
    """

    def __init__(
        self,
        token: str | None = None,
        api_url: str = GITHUB_API_URL,
        timeout: float = 20.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        headers = {
            "Accept": "application/vnd.github+json",
            "User-Agent": USER_AGENT,
            "X-GitHub-Api-Version": "2022-11-28",
        }
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.Client(
            base_url=api_url.rstrip("/"),
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    def __enter__(self) -> "GitHubClient":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    def close(self) -> None:
        self._client.close()

    def list_repositories(
        self, organization: str, page: int, per_page: int
    ) -> list[Repository]:
        """Fetches one page of `GET /orgs/{org}/repos?type=all`.

        Raises:
            RateLimitExceededError: If the quota is exhausted.
            DiscoveryError: On network, authentication or response errors.
        """
        data = self._get(
            f"/orgs/{organization}/repos",
            params={"type": "all", "per_page": per_page, "page": page},
        )
        if not isinstance(data, list):
            raise DiscoveryError(
                f"Unexpected listing payload for {organization}: {type(data).__name__}"
            )
        try:
            return [Repository.from_dict(item) for item in data]
        except (KeyError, TypeError) as e:
            raise DiscoveryError(f"Malformed repository record: {e}") from e

    def rate_limit(self) -> RateLimitStatus:
        """Fetches `GET /rate_limit` and returns the core quota."""
        data = self._get("/rate_limit")
        try:
            core = data["resources"]["core"] if "resources" in data else data["rate"]
            return RateLimitStatus(
                limit=int(core["limit"]),
                remaining=int(core["remaining"]),
                reset_at=datetime.datetime.fromtimestamp(
                    int(core["reset"]), tz=datetime.timezone.utc
                ),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise DiscoveryError(f"Malformed rate limit payload: {e}") from e

    def _get(self, path: str, params: dict[str, Any] | None = None) -> Any:
        try:
            response = self._client.get(path, params=params)
        except httpx.RequestError as e:
            raise DiscoveryError(f"Network error contacting GitHub: {e}") from e

        if response.is_success:
            try:
                return response.json()
            except ValueError as e:
                raise DiscoveryError(f"Invalid JSON from GitHub: {e}") from e

        status = response.status_code
        message = _error_message(response)

        if status == 429 or (
            status == 403
            and (
                response.headers.get("x-ratelimit-remaining") == "0"
                or "rate limit" in message.lower()
            )
        ):
            raise RateLimitExceededError(
                status_code=status, reset_at=_reset_time(response.headers)
            )
        if status == 401:
            raise DiscoveryError(
                f"GitHub authentication failed: {message}", status_code=status
            )
        if status == 404:
            raise DiscoveryError(f"Not found: {path}", status_code=status)
        raise DiscoveryError(f"GitHub API HTTP {status}: {message}", status_code=status)
