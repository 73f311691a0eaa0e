from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Awaitable, Callable

from sqlalchemy.orm import Session

from ..config import SyncSettings, resolve_token
from ..errors import SyncError
from ..github.client import GitHubClient
from ..github.git import RefClient
from ..github.issues import IssueClient
from ..storage.db import open_session
from ..storage.objects import get_or_create_repo
from ..storage.watermarks import get_watermark
from ..utils.time import parse_datetime, utcnow
from .backfill import BACKFILL_RESOURCE, BackfillStep, run_backfill
from .issues import ISSUES_WATERMARK, sync_issues
from .objects import ingest_objects
from .refs import sync_refs
from .result import PhaseResult
from .status import BACKFILLING, PENDING, SYNCING, DownloadStatusTracker

logger = logging.getLogger("gh_repo_mirror.ingest.sync")


@dataclass(frozen=True)
class SyncSummary:
    mode: str
    skipped: bool = False
    commits_written: int = 0
    issues: int = 0
    comments: int = 0


async def sync_repo(
    session: Session,
    ref_client: RefClient,
    issue_client: IssueClient,
    repo_id: int,
    *,
    settings: SyncSettings | None = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> PhaseResult[SyncSummary]:
    """Bring one repo up to date: a full backfill first, incremental after."""
    settings = settings or SyncSettings()
    tracker = DownloadStatusTracker(session, repo_id)
    tracker.recover_stale(timedelta(seconds=settings.stale_run_seconds))
    if not tracker.can_start_sync():
        logger.info("repo %s already has a sync in progress, skipping", repo_id)
        return PhaseResult.success(SyncSummary(mode=tracker.status, skipped=True))

    last_synced_at = tracker.last_synced_at
    if last_synced_at is None or get_watermark(session, repo_id, BACKFILL_RESOURCE):
        if tracker.status != PENDING:
            tracker.request()
        result = await run_backfill(
            session, ref_client, issue_client, repo_id, settings=settings, sleep=sleep
        )
        if not result.ok:
            return PhaseResult(error=result.error, cancelled=result.cancelled)
        return PhaseResult.success(SyncSummary(mode="backfill"))

    started_at = utcnow()
    if not tracker.request("sync requested") or not tracker.update(SYNCING, "syncing"):
        return PhaseResult.stopped()

    refs = await sync_refs(session, ref_client, repo_id, tracker=tracker)
    if not refs.ok:
        return _halt(tracker, refs)

    objects = await ingest_objects(
        session,
        ref_client,
        repo_id,
        tracker=tracker,
        settings=settings,
        since=last_synced_at,
    )
    if not objects.ok:
        return _halt(tracker, objects)

    watermark = get_watermark(session, repo_id, ISSUES_WATERMARK)
    issues_since = parse_datetime(watermark.updated_at) if watermark else last_synced_at
    issues = await sync_issues(
        session,
        issue_client,
        repo_id,
        tracker=tracker,
        settings=settings,
        since=issues_since,
        sleep=sleep,
    )
    if not issues.ok:
        return _halt(tracker, issues)

    if not tracker.succeed(started_at, "sync complete"):
        return PhaseResult.stopped()
    return PhaseResult.success(
        SyncSummary(
            mode="incremental",
            commits_written=objects.value.commits_written,
            issues=issues.value.issues,
            comments=issues.value.comments,
        )
    )


def _halt(tracker: DownloadStatusTracker, result: PhaseResult) -> PhaseResult[SyncSummary]:
    if result.cancelled:
        return PhaseResult.stopped()
    tracker.fail(result.message or "sync failed")
    return PhaseResult.failure(result.error or SyncError("sync failed"))


@asynccontextmanager
async def _open_repository(owner: str, name: str, db_path, settings: SyncSettings, client):
    session = open_session(db_path)
    repo = get_or_create_repo(session, owner, name)
    session.commit()

    try:
        if client is None:
            client = GitHubClient(token=resolve_token(settings), settings=settings)
        async with client:
            yield (
                session,
                RefClient(client, owner, name),
                IssueClient(client, owner, name, settings),
                repo.id,
            )
    finally:
        session.close()


async def sync_repository(
    owner: str,
    name: str,
    db_path,
    *,
    settings: SyncSettings | None = None,
    client: GitHubClient | None = None,
) -> PhaseResult[SyncSummary]:
    """Open the per-repo database and run ``sync_repo`` against GitHub."""
    settings = settings or SyncSettings()
    async with _open_repository(owner, name, db_path, settings, client) as opened:
        session, ref_client, issue_client, repo_id = opened
        return await sync_repo(
            session, ref_client, issue_client, repo_id, settings=settings
        )


async def backfill_repository(
    owner: str,
    name: str,
    db_path,
    *,
    settings: SyncSettings | None = None,
    client: GitHubClient | None = None,
    max_steps: int | None = None,
) -> PhaseResult[BackfillStep]:
    """Run up to ``max_steps`` bounded backfill steps; rerun to resume."""
    settings = settings or SyncSettings()
    async with _open_repository(owner, name, db_path, settings, client) as opened:
        session, ref_client, issue_client, repo_id = opened
        tracker = DownloadStatusTracker(session, repo_id)
        tracker.recover_stale(timedelta(seconds=settings.stale_run_seconds))
        if tracker.status == SYNCING:
            logger.info("repo %s is syncing, not starting a backfill", repo_id)
            return PhaseResult.failure(SyncError("an incremental sync is in progress"))
        if tracker.status not in {PENDING, BACKFILLING}:
            tracker.request("backfill requested")
        return await run_backfill(
            session,
            ref_client,
            issue_client,
            repo_id,
            settings=settings,
            max_steps=max_steps,
        )
