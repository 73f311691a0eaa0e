from __future__ import annotations

from typing import Any

from pydantic import ValidationError

from ..config import SyncSettings
from ..errors import MalformedResponseError
from ..utils.time import format_since
from .client import GitHubClient
from .models import Connection, GqlAssignee, GqlLabel, IssuesPage
from .queries import (
    ISSUE_ASSIGNEES_QUERY,
    ISSUE_COMMENTS_QUERY,
    ISSUE_LABELS_QUERY,
    ISSUE_TIMELINE_QUERY,
    ISSUES_PAGE_QUERY,
)


class IssueClient:
    """GraphQL access to one repository's issues and their sub-connections."""

    def __init__(
        self,
        client: GitHubClient,
        owner: str,
        name: str,
        settings: SyncSettings | None = None,
    ) -> None:
        self.client = client
        self.owner = owner
        self.name = name
        self.settings = settings or client.settings

    async def fetch_issues_page(
        self,
        *,
        first: int | None = None,
        after: str | None = None,
        since=None,
    ) -> IssuesPage:
        data = await self.client.graphql(
            ISSUES_PAGE_QUERY,
            {
                "owner": self.owner,
                "repo": self.name,
                "first": first or self.settings.issues_page_size,
                "after": after,
                "since": format_since(since) if since is not None else None,
                "subFirst": self.settings.sub_connection_page_size,
            },
        )
        issues = _dig(data, "repository", "issues")
        try:
            return IssuesPage.model_validate(issues)
        except ValidationError as exc:
            raise MalformedResponseError(f"failed to parse issues: {exc}") from exc

    async def fetch_issue_labels(
        self, number: int, *, first: int | None = None, after: str | None = None
    ) -> Connection[GqlLabel]:
        raw = await self._issue_connection(ISSUE_LABELS_QUERY, "labels", number, first, after)
        return _connection(Connection[GqlLabel], raw, "labels", number)

    async def fetch_issue_assignees(
        self, number: int, *, first: int | None = None, after: str | None = None
    ) -> Connection[GqlAssignee]:
        raw = await self._issue_connection(
            ISSUE_ASSIGNEES_QUERY, "assignees", number, first, after
        )
        return _connection(Connection[GqlAssignee], raw, "assignees", number)

    async def fetch_issue_comments(
        self, number: int, *, first: int | None = None, after: str | None = None
    ) -> Connection[Any]:
        raw = await self._issue_connection(
            ISSUE_COMMENTS_QUERY, "comments", number, first, after
        )
        return _connection(Connection[Any], raw, "comments", number)

    async def fetch_issue_timeline_items(
        self, number: int, *, first: int | None = None, after: str | None = None
    ) -> Connection[Any]:
        raw = await self._issue_connection(
            ISSUE_TIMELINE_QUERY, "timelineItems", number, first, after
        )
        return _connection(Connection[Any], raw, "timeline items", number)

    async def _issue_connection(
        self,
        query: str,
        field: str,
        number: int,
        first: int | None,
        after: str | None,
    ) -> Any:
        data = await self.client.graphql(
            query,
            {
                "owner": self.owner,
                "repo": self.name,
                "number": number,
                "first": first or self.settings.sub_connection_page_size,
                "after": after,
            },
        )
        return _dig(data, "repository", "issue", field)


def _dig(data: Any, *keys: str) -> Any:
    current = data
    path = []
    for key in keys:
        path.append(key)
        if not isinstance(current, dict) or current.get(key) is None:
            raise MalformedResponseError(f"GraphQL response missing {'.'.join(path)}")
        current = current[key]
    return current


def _connection(model, raw: Any, what: str, number: int):
    try:
        return model.model_validate(raw)
    except ValidationError as exc:
        raise MalformedResponseError(
            f"failed to parse {what} for issue #{number}: {exc}"
        ) from exc
