from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable

from sqlalchemy.orm import Session

from ..config import SyncSettings
from ..errors import SyncError
from ..github.git import RefClient
from ..github.issues import IssueClient
from ..storage.issues import recompute_issue_counts
from ..storage.watermarks import clear_watermark, get_watermark, upsert_watermark
from ..utils.time import parse_datetime, utcnow
from .issues import sync_issues
from .objects import ingest_objects
from .refs import sync_refs
from .result import PhaseResult
from .status import BACKFILLING, INITIAL, PENDING, DownloadStatusTracker

logger = logging.getLogger("gh_repo_mirror.ingest.backfill")

BACKFILL_RESOURCE = "backfill"

STAGE_REFS = "refs"
STAGE_OBJECTS = "objects"
STAGE_ISSUES = "issues"
STAGE_DONE = "done"


@dataclass
class BackfillContinuation:
    """Resumable backfill position carried between bounded steps."""

    stage: str
    started_at: datetime
    cursor: str | None = None
    pages_processed: int = 0
    max_issue_updated_at: datetime | None = None


@dataclass(frozen=True)
class BackfillStep:
    continuation: BackfillContinuation
    pages: int

    @property
    def done(self) -> bool:
        return self.continuation.stage == STAGE_DONE


def load_continuation(session: Session, repo_id: int) -> BackfillContinuation | None:
    row = get_watermark(session, repo_id, BACKFILL_RESOURCE)
    if row is None or row.stage is None:
        return None
    return BackfillContinuation(
        stage=row.stage,
        started_at=parse_datetime(row.started_at) or utcnow(),
        cursor=row.cursor,
        pages_processed=row.pages_processed or 0,
        max_issue_updated_at=parse_datetime(row.updated_at),
    )


def save_continuation(session: Session, repo_id: int, cont: BackfillContinuation) -> None:
    upsert_watermark(
        session,
        repo_id,
        BACKFILL_RESOURCE,
        updated_at=cont.max_issue_updated_at,
        cursor=cont.cursor,
        stage=cont.stage,
        pages_processed=cont.pages_processed,
        started_at=cont.started_at,
    )
    session.commit()


def start_backfill(session: Session, repo_id: int) -> BackfillContinuation | None:
    """Begin a fresh backfill, or return None if the run is not pending."""
    tracker = DownloadStatusTracker(session, repo_id)
    if tracker.status == INITIAL:
        tracker.request()
    if tracker.status != PENDING:
        return None
    cont = BackfillContinuation(stage=STAGE_REFS, started_at=utcnow())
    if not tracker.update(BACKFILLING, "starting download"):
        return None
    save_continuation(session, repo_id, cont)
    return cont


async def run_backfill_step(
    session: Session,
    ref_client: RefClient,
    issue_client: IssueClient,
    repo_id: int,
    *,
    settings: SyncSettings | None = None,
    seen: set[str] | None = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> PhaseResult[BackfillStep]:
    """Run at most ``backfill_pages_per_step`` provider pages of a backfill.

    The continuation is persisted after every stage change and page budget,
    so the next call resumes where this one stopped, even in a new process.
    On completion the repo's issue counters are recomputed and the download
    is marked successful with the backfill's start time as the watermark.
    """
    settings = settings or SyncSettings()
    tracker = DownloadStatusTracker(session, repo_id)

    cont = load_continuation(session, repo_id)
    if cont is None:
        cont = start_backfill(session, repo_id)
        if cont is None:
            return _not_pending(tracker)
    elif tracker.status != BACKFILLING:
        if tracker.status != PENDING:
            return _not_pending(tracker)
        if not tracker.update(BACKFILLING, "resuming download"):
            return PhaseResult.stopped()

    budget = settings.backfill_pages_per_step
    pages = 0

    if cont.stage == STAGE_REFS:
        result = await sync_refs(session, ref_client, repo_id, tracker=tracker)
        if not result.ok:
            return _halt(tracker, result, cont)
        cont.stage = STAGE_OBJECTS
        cont.cursor = None
        save_continuation(session, repo_id, cont)

    if cont.stage == STAGE_OBJECTS and budget > pages:
        objects = await ingest_objects(
            session,
            ref_client,
            repo_id,
            tracker=tracker,
            settings=settings,
            cursor=cont.cursor,
            max_pages=budget - pages,
            is_backfill=True,
            seen=seen,
        )
        progress = objects.value
        if progress is not None:
            pages += progress.pages
            cont.pages_processed += progress.pages
            cont.cursor = progress.cursor
        if not objects.ok:
            save_continuation(session, repo_id, cont)
            return _halt(tracker, objects, cont)
        if progress is not None and progress.done:
            cont.stage = STAGE_ISSUES
            cont.cursor = None
        save_continuation(session, repo_id, cont)

    if cont.stage == STAGE_ISSUES and budget > pages:
        issues = await sync_issues(
            session,
            issue_client,
            repo_id,
            tracker=tracker,
            settings=settings,
            cursor=cont.cursor,
            max_pages=budget - pages,
            max_updated_at=cont.max_issue_updated_at,
            is_backfill=True,
            sleep=sleep,
        )
        progress = issues.value
        if progress is not None:
            pages += progress.pages
            cont.pages_processed += progress.pages
            cont.cursor = progress.cursor
            cont.max_issue_updated_at = progress.max_updated_at
        if not issues.ok:
            save_continuation(session, repo_id, cont)
            return _halt(tracker, issues, cont)
        if progress is not None and progress.done:
            cont.stage = STAGE_DONE
            cont.cursor = None
        else:
            save_continuation(session, repo_id, cont)

    if cont.stage == STAGE_DONE:
        open_count, closed_count = recompute_issue_counts(session, repo_id)
        clear_watermark(session, repo_id, BACKFILL_RESOURCE)
        session.commit()
        if not tracker.succeed(cont.started_at, "backfill complete"):
            return PhaseResult.stopped()
        logger.info(
            "repo %s backfill complete: %s pages, %s open / %s closed issues",
            repo_id,
            cont.pages_processed,
            open_count,
            closed_count,
        )

    return PhaseResult.success(BackfillStep(continuation=cont, pages=pages))


def _not_pending(tracker: DownloadStatusTracker) -> PhaseResult[BackfillStep]:
    if tracker.is_cancelled():
        return PhaseResult.stopped()
    return PhaseResult.failure(
        SyncError(
            f"backfill for repo {tracker.repo_id} is {tracker.status}, request a new run first"
        )
    )


def _halt(tracker: DownloadStatusTracker, result: PhaseResult, cont: BackfillContinuation):
    if result.cancelled:
        return PhaseResult(value=BackfillStep(continuation=cont, pages=0), cancelled=True)
    tracker.fail(result.message or "download error")
    return PhaseResult(value=BackfillStep(continuation=cont, pages=0), error=result.error)


async def run_backfill(
    session: Session,
    ref_client: RefClient,
    issue_client: IssueClient,
    repo_id: int,
    *,
    settings: SyncSettings | None = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    max_steps: int | None = None,
) -> PhaseResult[BackfillStep]:
    """Drive ``run_backfill_step`` until the backfill finishes or stops."""
    seen: set[str] = set()
    steps = 0
    while True:
        result = await run_backfill_step(
            session,
            ref_client,
            issue_client,
            repo_id,
            settings=settings,
            seen=seen,
            sleep=sleep,
        )
        steps += 1
        if not result.ok or result.value is None or result.value.done:
            return result
        if max_steps is not None and steps >= max_steps:
            return result
        logger.debug(
            "repo %s backfill step %s stopped at stage %s",
            repo_id,
            steps,
            result.value.continuation.stage,
        )
