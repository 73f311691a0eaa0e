from __future__ import annotations

from datetime import datetime

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from ..utils.time import parse_datetime
from .objects import _upsert
from .schema import Watermark


def get_watermark(session: Session, repo_id: int, resource: str) -> Watermark | None:
    return session.scalar(
        select(Watermark).where(
            Watermark.repo_id == repo_id, Watermark.resource == resource
        )
        .execution_options(populate_existing=True)
    )


def upsert_watermark(
    session: Session,
    repo_id: int,
    resource: str,
    *,
    updated_at: datetime | str | None = None,
    cursor: str | None = None,
    stage: str | None = None,
    pages_processed: int = 0,
    started_at: datetime | str | None = None,
) -> None:
    _upsert(
        session,
        Watermark,
        {
            "repo_id": repo_id,
            "resource": resource,
            "updated_at": parse_datetime(updated_at),
            "cursor": cursor,
            "stage": stage,
            "pages_processed": pages_processed,
            "started_at": parse_datetime(started_at),
        },
        ["repo_id", "resource"],
    )


def clear_watermark(session: Session, repo_id: int, resource: str) -> None:
    session.execute(
        delete(Watermark).where(
            Watermark.repo_id == repo_id, Watermark.resource == resource
        )
    )
