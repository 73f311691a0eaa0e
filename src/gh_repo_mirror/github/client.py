from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Mapping
from urllib.parse import parse_qs, urlparse

import httpx
from aiolimiter import AsyncLimiter
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)
from tenacity.wait import wait_base

from ..config import SyncSettings
from ..errors import GitHubAPIError, RateLimitError, RetryableGitHubError

logger = logging.getLogger("gh_repo_mirror.github.client")

RETRYABLE_STATUS = {500, 502, 503, 504}


@dataclass(frozen=True)
class GitHubResponse:
    data: Any
    headers: Mapping[str, str]
    status_code: int | None = None


RequestFunc = Callable[
    [str, str, dict | None, dict | None, dict | None],
    Awaitable[GitHubResponse],
]


class GitHubClient:
    """Rate-limited, retrying access to the GitHub REST and GraphQL APIs.

    ``request_func`` replaces the HTTP transport entirely; it receives
    ``(method, path, params, headers, json_body)`` and returns a
    ``GitHubResponse``. Status classification and retries apply either way.
    """

    def __init__(
        self,
        token: str,
        settings: SyncSettings | None = None,
        limiter: AsyncLimiter | None = None,
        request_func: RequestFunc | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.settings = settings or SyncSettings()
        self.base_url = self.settings.api_base_url.rstrip("/")
        self._limiter = limiter or AsyncLimiter(self.settings.requests_per_second, 1)
        self._request_func = request_func
        self._sleep = sleep
        self._client: httpx.AsyncClient | None = None
        if request_func is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers={
                    "Authorization": f"Bearer {token}",
                    "Accept": "application/vnd.github+json",
                    "User-Agent": "gh-repo-mirror",
                },
                timeout=self.settings.request_timeout,
            )

    async def __aenter__(self) -> "GitHubClient":
        if self._client is None and self._request_func is None:
            raise RuntimeError("GitHub client unavailable.")
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()

    async def request(
        self,
        method: str,
        path: str,
        params: dict | None = None,
        headers: dict | None = None,
        json_body: dict | None = None,
        *,
        check: Callable[[GitHubResponse], None] | None = None,
    ) -> GitHubResponse:
        """Send one request, retrying transport errors, 5xx and rate limits.

        ``check`` inspects a successful response inside the retried attempt;
        raising ``RetryableGitHubError`` from it retries the same request.
        """
        async for attempt in AsyncRetrying(
            retry=retry_if_exception_type((httpx.TransportError, RetryableGitHubError)),
            wait=wait_retry_after(
                wait_exponential(
                    multiplier=self.settings.retry_wait_min,
                    min=self.settings.retry_wait_min,
                    max=self.settings.retry_wait_max,
                ),
                max_wait=self.settings.retry_after_max,
            ),
            stop=stop_after_attempt(self.settings.retry_attempts),
            before_sleep=_log_retry,
            sleep=self._sleep,
            reraise=True,
        ):
            with attempt:
                async with self._limiter:
                    response = await self._request(
                        method, path, params, headers, json_body
                    )
                response = _check_response(method, path, response)
                if check is not None:
                    check(response)
                return response
        raise RuntimeError("GitHub request retries exhausted")

    async def _request(
        self,
        method: str,
        path: str,
        params: dict | None,
        headers: dict | None,
        json_body: dict | None,
    ) -> GitHubResponse:
        if self._request_func is not None:
            return await self._request_func(method, path, params, headers, json_body)

        if self._client is None:
            raise RuntimeError("HTTP client not initialized")
        response = await self._client.request(
            method, path, params=params, headers=headers, json=json_body
        )
        data: Any = None
        if response.content:
            try:
                data = response.json()
            except ValueError:
                data = response.text
        return GitHubResponse(
            data=data, headers=response.headers, status_code=response.status_code
        )

    async def get_json(self, path: str, params: dict | None = None) -> Any:
        response = await self.request("GET", path, params=params)
        return response.data

    async def paginate(
        self,
        path: str,
        params: dict | None = None,
        *,
        headers: dict | None = None,
        max_pages: int | None = None,
    ):
        next_path: str | None = path
        next_params = params or {}
        pages_seen = 0
        while next_path:
            response = await self.request(
                "GET", next_path, params=next_params, headers=headers
            )
            data = response.data or []
            next_path, next_params = next_page(response.headers)
            for item in data:
                yield item
            pages_seen += 1
            if max_pages is not None and pages_seen >= max_pages:
                break

    async def graphql(self, query: str, variables: dict | None = None) -> dict:
        response = await self.request(
            "POST",
            self.settings.graphql_url,
            json_body={"query": query, "variables": variables or {}},
            check=_check_graphql,
        )
        return response.data["data"]


def _check_graphql(response: GitHubResponse) -> None:
    payload = response.data
    if not isinstance(payload, dict):
        raise GitHubAPIError("GraphQL response was not an object")
    errors = payload.get("errors") or []
    if errors:
        if any(err.get("type") == "RATE_LIMITED" for err in errors):
            raise RateLimitError("GraphQL rate limit exceeded")
        messages = "; ".join(str(err.get("message")) for err in errors)
        raise GitHubAPIError(f"GraphQL error: {messages}")
    if not isinstance(payload.get("data"), dict):
        raise GitHubAPIError("GraphQL response missing data")


class wait_retry_after(wait_base):
    """Wait at least as long as a rate limit's ``Retry-After`` asks for."""

    def __init__(self, fallback: wait_base, max_wait: float) -> None:
        self.fallback = fallback
        self.max_wait = max_wait

    def __call__(self, retry_state: RetryCallState) -> float:
        wait = self.fallback(retry_state)
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        if isinstance(exc, RateLimitError) and exc.retry_after is not None:
            wait = max(wait, min(exc.retry_after, self.max_wait))
        return wait


def _check_response(method: str, path: str, response: GitHubResponse) -> GitHubResponse:
    status = response.status_code
    if status is None or status < 400 or status == 304:
        return response
    if _is_rate_limited(status, response.headers):
        raise RateLimitError(
            f"GitHub rate limit hit on {method} {path} ({status})",
            retry_after=_retry_after_seconds(response.headers),
        )
    if status in RETRYABLE_STATUS:
        raise RetryableGitHubError(f"GitHub retryable {status} on {method} {path}")
    raise GitHubAPIError(f"GitHub API error {status} on {method} {path}", status_code=status)


def _is_rate_limited(status: int, headers: Mapping[str, str]) -> bool:
    if status == 429:
        return True
    if status != 403:
        return False
    return (
        _header(headers, "x-ratelimit-remaining") == "0"
        or _header(headers, "retry-after") is not None
    )


def _retry_after_seconds(headers: Mapping[str, str]) -> float | None:
    value = _header(headers, "retry-after")
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        # HTTP-date form; fall back to exponential backoff
        return None


def _header(headers: Mapping[str, str], name: str) -> str | None:
    value = headers.get(name)
    if value is None:
        for key, candidate in headers.items():
            if key.lower() == name:
                return candidate
    return value


def _log_retry(retry_state) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "retrying GitHub request (attempt %s): %s", retry_state.attempt_number, exc
    )


def next_page(headers: Mapping[str, str]) -> tuple[str | None, dict | None]:
    link = _header(headers, "link")
    if not link:
        return None, None
    for part in link.split(","):
        section = part.strip()
        if 'rel="next"' not in section:
            continue
        url = section.split(";")[0].strip().lstrip("<").rstrip(">")
        parsed = urlparse(url)
        params = {k: v[0] for k, v in parse_qs(parsed.query).items()}
        return parsed.path, params
    return None, None


def extract_page(params: dict | None) -> int | None:
    if not params:
        return None
    page_val = params.get("page")
    if page_val is None:
        return None
    try:
        return int(page_val)
    except (TypeError, ValueError):
        return None
