from __future__ import annotations

import logging
from datetime import datetime, timedelta

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..errors import SyncCancelled
from ..storage.schema import DownloadStatus
from ..utils.time import parse_datetime, utcnow

logger = logging.getLogger("gh_repo_mirror.ingest.status")

INITIAL = "initial"
PENDING = "pending"
BACKFILLING = "backfilling"
SYNCING = "syncing"
SUCCESS = "success"
ERROR = "error"
CANCELLED = "cancelled"

STATUSES = (INITIAL, PENDING, BACKFILLING, SYNCING, SUCCESS, ERROR, CANCELLED)
ACTIVE = frozenset({BACKFILLING, SYNCING})

_TRANSITIONS: dict[str, frozenset[str]] = {
    INITIAL: frozenset({PENDING}),
    PENDING: frozenset({PENDING, BACKFILLING, SYNCING}),
    BACKFILLING: frozenset({BACKFILLING, SUCCESS}),
    SYNCING: frozenset({SYNCING, SUCCESS}),
    SUCCESS: frozenset({PENDING}),
    ERROR: frozenset({PENDING}),
    CANCELLED: frozenset({PENDING}),
}


class InvalidTransition(ValueError):
    pass


def can_transition(current: str, target: str) -> bool:
    # error and cancelled are reachable from anywhere
    if current == target or target in {ERROR, CANCELLED}:
        return True
    return target in _TRANSITIONS.get(current, frozenset())


class DownloadStatusTracker:
    """Persisted download status for one repo, guarded by the cancel flag.

    Every write checks the cancellation flag first. Once the flag is set the
    write is coerced to ``cancelled`` and reported as refused, so a run that
    was cancelled mid-flight can never end as ``success``.
    """

    def __init__(self, session: Session, repo_id: int) -> None:
        self.session = session
        self.repo_id = repo_id

    def _row(self) -> DownloadStatus:
        row = self.session.scalar(
            select(DownloadStatus)
            .where(DownloadStatus.repo_id == self.repo_id)
            .execution_options(populate_existing=True)
        )
        if row is None:
            row = DownloadStatus(
                repo_id=self.repo_id, status=INITIAL, cancelled=False, updated_at=utcnow()
            )
            self.session.add(row)
            self.session.flush()
        return row

    @property
    def status(self) -> str:
        return self._row().status

    @property
    def message(self) -> str | None:
        return self._row().message

    @property
    def last_synced_at(self) -> datetime | None:
        return parse_datetime(self._row().last_synced_at)

    def is_cancelled(self) -> bool:
        flag = self.session.scalar(
            select(DownloadStatus.cancelled).where(DownloadStatus.repo_id == self.repo_id)
        )
        return bool(flag)

    def ensure_not_cancelled(self) -> None:
        if self.is_cancelled():
            raise SyncCancelled(self.repo_id)

    def can_start_sync(self) -> bool:
        return self.status not in ACTIVE

    def recover_stale(self, max_age: timedelta) -> bool:
        """Fail an active run that has not written its status for ``max_age``.

        A process that dies mid-run leaves the row backfilling or syncing.
        Live runs write progress often, so an old ``updated_at`` means the
        run is gone and the repo may be requested again.
        """
        row = self._row()
        if row.status not in ACTIVE:
            return False
        last_write = parse_datetime(row.updated_at)
        if last_write is not None and utcnow() - last_write < max_age:
            return False
        logger.warning(
            "repo %s: %s run stalled since %s, marking it failed",
            self.repo_id,
            row.status,
            last_write,
        )
        return self._write(row, ERROR, f"{row.status} run stopped without finishing")

    def request(self, message: str | None = None) -> bool:
        """Queue a new run: clears a previous cancellation and moves to pending."""
        row = self._row()
        if row.status in ACTIVE:
            return False
        row.cancelled = False
        return self._write(row, PENDING, message)

    def update(
        self,
        status: str,
        message: str | None = None,
        *,
        last_synced_at: datetime | None = None,
    ) -> bool:
        return self._write(self._row(), status, message, last_synced_at=last_synced_at)

    def progress(self, message: str) -> bool:
        row = self._row()
        return self._write(row, row.status, message)

    def succeed(self, last_synced_at: datetime, message: str | None = None) -> bool:
        return self.update(SUCCESS, message, last_synced_at=last_synced_at)

    def fail(self, message: str) -> bool:
        return self.update(ERROR, message)

    def cancel(self, message: str = "download cancelled") -> None:
        row = self._row()
        row.cancelled = True
        if row.status in ACTIVE or row.status == PENDING:
            row.status = CANCELLED
            row.message = message
        row.updated_at = utcnow()
        self.session.commit()
        logger.info("repo %s download cancelled", self.repo_id)

    def _write(
        self,
        row: DownloadStatus,
        status: str,
        message: str | None,
        *,
        last_synced_at: datetime | None = None,
    ) -> bool:
        if status not in STATUSES:
            raise ValueError(f"unknown download status: {status}")
        if row.cancelled:
            if row.status != CANCELLED:
                row.status = CANCELLED
                row.updated_at = utcnow()
                self.session.commit()
            logger.info(
                "repo %s is cancelled, refusing status %s", self.repo_id, status
            )
            return False
        if not can_transition(row.status, status):
            raise InvalidTransition(f"cannot move download status from {row.status} to {status}")
        row.status = status
        if message is not None:
            row.message = message
        if last_synced_at is not None:
            row.last_synced_at = last_synced_at
        row.updated_at = utcnow()
        self.session.commit()
        return True
