from __future__ import annotations

import asyncio
import dataclasses
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable

import httpx
from sqlalchemy.orm import Session

from ..config import SyncSettings
from ..errors import RateLimitError, SyncCancelled, SyncError, as_sync_error
from ..events.issues import (
    IssueBatchItem,
    assignee_logins,
    build_issue_batch,
    label_names,
    parse_comments,
    parse_timeline,
)
from ..github.issues import IssueClient
from ..storage.issues import write_issue_batch
from ..storage.watermarks import get_watermark, upsert_watermark
from ..utils.time import max_datetime, parse_datetime
from .result import PhaseResult
from .status import DownloadStatusTracker

logger = logging.getLogger("gh_repo_mirror.ingest.issues")

ISSUES_WATERMARK = "issues"


@dataclass
class IssueSyncProgress:
    issues: int = 0
    comments: int = 0
    timeline_items: int = 0
    pages: int = 0
    cursor: str | None = None
    done: bool = False
    max_updated_at: datetime | None = None


@dataclass
class IssueSyncer:
    session: Session
    client: IssueClient
    repo_id: int
    tracker: DownloadStatusTracker
    settings: SyncSettings = field(default_factory=SyncSettings)
    is_backfill: bool = False
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep

    async def run(
        self,
        *,
        since=None,
        cursor: str | None = None,
        max_pages: int | None = None,
        max_updated_at: datetime | None = None,
    ) -> PhaseResult[IssueSyncProgress]:
        progress = IssueSyncProgress(cursor=cursor, max_updated_at=max_updated_at)
        context = "failed to backfill issues" if self.is_backfill else "failed to sync issues"
        try:
            await self._paginate(progress, since=since, max_pages=max_pages)
        except SyncCancelled:
            self.session.rollback()
            logger.info("repo %s issue sync cancelled", self.repo_id)
            return PhaseResult(value=progress, cancelled=True)
        except (SyncError, httpx.HTTPError) as exc:
            self.session.rollback()
            error = as_sync_error(exc, context)
            logger.error("repo %s: %s", self.repo_id, error)
            return PhaseResult(value=progress, error=error)
        return PhaseResult.success(progress)

    async def _paginate(self, progress: IssueSyncProgress, *, since, max_pages: int | None) -> None:
        while True:
            self.tracker.ensure_not_cancelled()
            page = await self.client.fetch_issues_page(
                first=self.settings.issues_page_size,
                after=progress.cursor,
                since=since,
            )
            batch = build_issue_batch(self.repo_id, page.nodes)
            for item in batch:
                if item.overflow:
                    await self._complete_overflow(item)

            written = write_issue_batch(self.session, self.repo_id, batch)
            progress.issues += written.issues
            progress.comments += written.comments
            progress.timeline_items += written.timeline_items
            for item in batch:
                progress.max_updated_at = max_datetime(
                    progress.max_updated_at, item.issue.updated_at
                )
            progress.pages += 1
            self.tracker.progress(
                f"Processed {progress.issues} issues, {progress.comments} comments"
            )
            self.tracker.ensure_not_cancelled()

            if not page.page_info.has_next_page or not page.page_info.end_cursor:
                progress.cursor = None
                progress.done = True
                self._advance_watermark(progress.max_updated_at)
                return
            progress.cursor = page.page_info.end_cursor
            if max_pages is not None and progress.pages >= max_pages:
                return
            await self.sleep(self.settings.page_delay_seconds)

    def _advance_watermark(self, seen: datetime | None) -> None:
        if seen is None:
            return
        current = get_watermark(self.session, self.repo_id, ISSUES_WATERMARK)
        latest = max_datetime(parse_datetime(current.updated_at) if current else None, seen)
        upsert_watermark(self.session, self.repo_id, ISSUES_WATERMARK, updated_at=latest)
        self.session.commit()

    async def _complete_overflow(self, item: IssueBatchItem) -> None:
        """Fetch the remaining pages of any sub-connection cut off by the page size."""
        number = item.issue.number
        issue = item.issue
        for name, after in item.overflow.items():
            try:
                nodes = await self._drain(name, number, after)
            except RateLimitError:
                raise
            except (SyncError, httpx.HTTPError) as exc:
                logger.error(
                    "repo %s issue #%s: could not page %s past the first page: %s",
                    self.repo_id,
                    number,
                    name,
                    exc,
                )
                continue
            if name == "labels":
                issue = dataclasses.replace(issue, labels=issue.labels + label_names(nodes))
            elif name == "assignees":
                issue = dataclasses.replace(
                    issue, assignees=issue.assignees + assignee_logins(nodes)
                )
            elif name == "comments":
                item.comments.extend(
                    parse_comments(nodes, repo_id=self.repo_id, issue_number=number)
                )
                issue = dataclasses.replace(
                    issue, comment_count=issue.comment_count + len(nodes)
                )
            elif name == "timeline_items":
                item.timeline.extend(
                    parse_timeline(nodes, repo_id=self.repo_id, issue_number=number)
                )
        item.issue = issue
        item.overflow = {}

    async def _drain(self, name: str, number: int, after: str | None) -> list[Any]:
        fetchers = {
            "labels": self.client.fetch_issue_labels,
            "assignees": self.client.fetch_issue_assignees,
            "comments": self.client.fetch_issue_comments,
            "timeline_items": self.client.fetch_issue_timeline_items,
        }
        fetch = fetchers[name]
        nodes: list[Any] = []
        while True:
            self.tracker.ensure_not_cancelled()
            connection = await fetch(
                number, first=self.settings.sub_connection_page_size, after=after
            )
            nodes.extend(connection.nodes)
            if not connection.has_next_page or not connection.end_cursor:
                return nodes
            after = connection.end_cursor


async def sync_issues(
    session: Session,
    client: IssueClient,
    repo_id: int,
    *,
    tracker: DownloadStatusTracker,
    settings: SyncSettings | None = None,
    since=None,
    cursor: str | None = None,
    max_pages: int | None = None,
    max_updated_at: datetime | None = None,
    is_backfill: bool = False,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> PhaseResult[IssueSyncProgress]:
    syncer = IssueSyncer(
        session=session,
        client=client,
        repo_id=repo_id,
        tracker=tracker,
        settings=settings or SyncSettings(),
        is_backfill=is_backfill,
        sleep=sleep,
    )
    return await syncer.run(
        since=since, cursor=cursor, max_pages=max_pages, max_updated_at=max_updated_at
    )
