from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from gh_repo_mirror.errors import SyncCancelled
from gh_repo_mirror.ingest.status import (
    BACKFILLING,
    CANCELLED,
    ERROR,
    INITIAL,
    PENDING,
    SUCCESS,
    SYNCING,
    DownloadStatusTracker,
    InvalidTransition,
    can_transition,
)
from gh_repo_mirror.storage.schema import DownloadStatus
from gh_repo_mirror.utils.time import utcnow


def test_new_repo_starts_initial(session, repo_id):
    tracker = DownloadStatusTracker(session, repo_id)
    assert tracker.status == INITIAL
    assert tracker.last_synced_at is None
    assert tracker.can_start_sync()


def test_happy_path_records_last_synced_at(session, repo_id):
    tracker = DownloadStatusTracker(session, repo_id)
    started = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

    assert tracker.request()
    assert tracker.update(BACKFILLING, "starting download")
    assert not tracker.can_start_sync()
    assert tracker.progress("added README.md")
    assert tracker.message == "added README.md"
    assert tracker.succeed(started, "backfill complete")

    assert tracker.status == SUCCESS
    assert tracker.last_synced_at == started


def test_request_refused_while_active(session, repo_id):
    tracker = DownloadStatusTracker(session, repo_id)
    tracker.request()
    tracker.update(SYNCING)
    assert tracker.request() is False
    assert tracker.status == SYNCING


def test_invalid_transition_raises(session, repo_id):
    tracker = DownloadStatusTracker(session, repo_id)
    with pytest.raises(InvalidTransition):
        tracker.update(SUCCESS)


def test_transition_table():
    assert can_transition(INITIAL, PENDING)
    assert can_transition(PENDING, BACKFILLING)
    assert can_transition(SYNCING, ERROR)
    assert can_transition(BACKFILLING, CANCELLED)
    assert can_transition(ERROR, PENDING)
    assert not can_transition(SUCCESS, SYNCING)
    assert not can_transition(INITIAL, SUCCESS)


def test_cancel_blocks_later_success(session, repo_id):
    tracker = DownloadStatusTracker(session, repo_id)
    tracker.request()
    tracker.update(BACKFILLING)

    tracker.cancel()

    assert tracker.status == CANCELLED
    assert tracker.is_cancelled()
    assert tracker.succeed(datetime.now(timezone.utc)) is False
    assert tracker.status == CANCELLED
    assert tracker.last_synced_at is None
    with pytest.raises(SyncCancelled):
        tracker.ensure_not_cancelled()


def test_fail_after_cancel_stays_cancelled(session, repo_id):
    tracker = DownloadStatusTracker(session, repo_id)
    tracker.request()
    tracker.update(SYNCING)
    tracker.cancel()

    assert tracker.fail("boom") is False
    assert tracker.status == CANCELLED


def test_request_clears_cancellation(session, repo_id):
    tracker = DownloadStatusTracker(session, repo_id)
    tracker.request()
    tracker.update(BACKFILLING)
    tracker.cancel()

    assert tracker.request("again")
    assert tracker.status == PENDING
    assert not tracker.is_cancelled()
    tracker.ensure_not_cancelled()


def test_error_then_retry(session, repo_id):
    tracker = DownloadStatusTracker(session, repo_id)
    tracker.request()
    tracker.update(SYNCING)
    assert tracker.fail("failed to sync commits: boom")
    assert tracker.status == ERROR
    assert tracker.message == "failed to sync commits: boom"
    assert tracker.request()
    assert tracker.status == PENDING


def _backdate(session, repo_id, age):
    row = session.scalar(select(DownloadStatus).where(DownloadStatus.repo_id == repo_id))
    row.updated_at = utcnow() - age
    session.commit()


def test_stale_active_run_is_failed(session, repo_id):
    tracker = DownloadStatusTracker(session, repo_id)
    tracker.request()
    tracker.update(BACKFILLING, "added README.md")
    _backdate(session, repo_id, timedelta(hours=2))

    assert tracker.recover_stale(timedelta(hours=1))
    assert tracker.status == ERROR
    assert tracker.message == "backfilling run stopped without finishing"
    assert tracker.can_start_sync()
    assert tracker.request()


def test_recent_active_run_is_left_alone(session, repo_id):
    tracker = DownloadStatusTracker(session, repo_id)
    tracker.request()
    tracker.update(SYNCING)
    _backdate(session, repo_id, timedelta(minutes=5))

    assert not tracker.recover_stale(timedelta(hours=1))
    assert tracker.status == SYNCING
    assert not tracker.can_start_sync()


def test_idle_status_is_never_stale(session, repo_id):
    tracker = DownloadStatusTracker(session, repo_id)
    tracker.request()
    tracker.update(SYNCING)
    tracker.succeed(utcnow())
    _backdate(session, repo_id, timedelta(days=30))

    assert not tracker.recover_stale(timedelta(hours=1))
    assert tracker.status == SUCCESS
