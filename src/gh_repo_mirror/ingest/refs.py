from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx
from sqlalchemy.orm import Session

from ..errors import SyncCancelled, SyncError, as_sync_error
from ..github.git import RefClient
from ..github.models import GitRefItem
from ..storage.objects import RefChanges, RefRecord, replace_refs, set_repo_head
from ..storage.schema import Repo
from .result import PhaseResult
from .status import DownloadStatusTracker

logger = logging.getLogger("gh_repo_mirror.ingest.refs")

HEADS_PREFIX = "refs/heads/"
TAGS_PREFIX = "refs/tags/"


@dataclass(frozen=True)
class RefSyncResult:
    changes: RefChanges
    head: str | None
    refs: int


def normalize_ref(item: GitRefItem) -> RefRecord:
    name = item.ref
    if name.startswith(HEADS_PREFIX):
        return RefRecord(name=name[len(HEADS_PREFIX):], commit_sha=item.object.sha, is_tag=False)
    if name.startswith(TAGS_PREFIX):
        return RefRecord(name=name[len(TAGS_PREFIX):], commit_sha=item.object.sha, is_tag=True)
    raise ValueError(f"unexpected ref name: {name}")


async def sync_refs(
    session: Session,
    client: RefClient,
    repo_id: int,
    *,
    tracker: DownloadStatusTracker | None = None,
) -> PhaseResult[RefSyncResult]:
    """Replace the stored branches and tags with the provider's current set.

    Nothing is written unless the metadata, heads and tags calls all succeed.
    """
    try:
        if tracker is not None:
            tracker.ensure_not_cancelled()
        metadata = await client.get_repo()
        heads = await client.list_refs("heads")
        tags = await client.list_refs("tags")
    except SyncCancelled:
        return PhaseResult.stopped()
    except (SyncError, httpx.HTTPError) as exc:
        return PhaseResult.failure(as_sync_error(exc, "failed to sync refs"))

    try:
        records = [normalize_ref(item) for item in [*heads, *tags]]
    except ValueError as exc:
        return PhaseResult.failure(SyncError(f"failed to sync refs: {exc}"))

    changes = replace_refs(session, repo_id, records)
    repo = session.get(Repo, repo_id)
    if repo is not None:
        repo.private = metadata.private
    head_id = set_repo_head(session, repo_id, metadata.default_branch)
    if head_id is None:
        logger.warning(
            "repo %s default branch %s not among fetched refs",
            repo_id,
            metadata.default_branch,
        )
    session.commit()
    logger.info(
        "repo %s refs synced: %s inserted, %s updated, %s deleted",
        repo_id,
        changes.inserted,
        changes.updated,
        changes.deleted,
    )
    return PhaseResult.success(
        RefSyncResult(
            changes=changes,
            head=metadata.default_branch if head_id is not None else None,
            refs=len(records),
        )
    )
