from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

import httpx
from sqlalchemy.orm import Session

from ..config import SyncSettings
from ..errors import (
    MalformedResponseError,
    SyncCancelled,
    SyncError,
    TruncatedTreeError,
    as_sync_error,
)
from ..github.git import RefClient
from ..github.models import BlobPayload, CommitSummary, TreeItem
from ..storage.objects import (
    commit_exists,
    insert_blob,
    insert_commit,
    insert_tree,
    insert_tree_entry,
)
from ..utils.batching import batch_tree_files
from ..utils.encoding import DecodedBlob, detect_blob_encoding
from .result import PhaseResult
from .status import DownloadStatusTracker

logger = logging.getLogger("gh_repo_mirror.ingest.objects")

ENTRY_TYPES = {"blob", "tree"}


@dataclass
class ObjectIngestProgress:
    commits_written: int = 0
    commits_skipped: int = 0
    blobs_written: int = 0
    trees_written: int = 0
    entries_written: int = 0
    pages: int = 0
    cursor: str | None = None
    done: bool = False


@dataclass
class ObjectIngester:
    """Walks commit pages and mirrors each new commit's tree and blobs.

    ``seen`` holds tree and blob shas already written during this run so a
    sha shared by many commits is fetched once. The commit row is written
    after all of its entries, so a commit interrupted half way is picked up
    again by the next run.
    """

    session: Session
    client: RefClient
    repo_id: int
    tracker: DownloadStatusTracker
    settings: SyncSettings = field(default_factory=SyncSettings)
    is_backfill: bool = False
    seen: set[str] = field(default_factory=set)

    async def run(
        self,
        *,
        since=None,
        cursor: str | None = None,
        max_pages: int | None = None,
    ) -> PhaseResult[ObjectIngestProgress]:
        progress = ObjectIngestProgress(cursor=cursor)
        context = "failed to backfill commits" if self.is_backfill else "failed to sync commits"
        try:
            await self._walk(progress, since=since, max_pages=max_pages)
        except SyncCancelled:
            self._discard_uncommitted()
            logger.info("repo %s object ingestion cancelled", self.repo_id)
            return PhaseResult(value=progress, cancelled=True)
        except (SyncError, httpx.HTTPError) as exc:
            self._discard_uncommitted()
            error = as_sync_error(exc, context)
            logger.error("repo %s: %s", self.repo_id, error)
            return PhaseResult(value=progress, error=error)
        return PhaseResult.success(progress)

    def _discard_uncommitted(self) -> None:
        # rolled back rows may still be marked seen
        self.session.rollback()
        self.seen.clear()

    async def _walk(self, progress: ObjectIngestProgress, *, since, max_pages: int | None) -> None:
        page = progress.cursor
        while True:
            self.tracker.ensure_not_cancelled()
            listing = await self.client.list_commits_page(
                since=since, page=page, per_page=self.settings.commits_per_page
            )
            for commit in listing.items:
                await self.ingest_commit(commit, progress)
            progress.pages += 1
            if not listing.has_next_page:
                progress.cursor = None
                progress.done = True
                return
            page = listing.cursor
            progress.cursor = page
            if max_pages is not None and progress.pages >= max_pages:
                return

    async def ingest_commit(self, commit: CommitSummary, progress: ObjectIngestProgress) -> None:
        if commit_exists(self.session, self.repo_id, commit.sha):
            progress.commits_skipped += 1
            return

        context = f"failed to get tree for commit {commit.sha}"
        try:
            tree = await self.client.get_tree(commit.tree_sha, recursive=True)
        except SyncError as exc:
            raise exc.wrap(context) from exc
        if tree.truncated:
            raise TruncatedTreeError().wrap(context)

        entries = [item for item in tree.tree if item.type in ENTRY_TYPES]
        skipped = len(tree.tree) - len(entries)
        if skipped:
            logger.debug("commit %s: skipped %s submodule entries", commit.sha, skipped)

        # Network first: no rows are written (and no write lock is held)
        # until every blob of the commit is in memory.
        blobs = await self._fetch_new_blobs(entries)
        self._write_commit(commit, entries, blobs, progress)

        progress.commits_written += 1
        if self.is_backfill:
            for entry in entries:
                if entry.sha in blobs:
                    self.tracker.progress(f"added {entry.path}")
        self.tracker.progress(f"{progress.commits_written} commits written")
        self.tracker.ensure_not_cancelled()

    def _write_commit(
        self,
        commit: CommitSummary,
        entries: list[TreeItem],
        blobs: dict[str, tuple[BlobPayload, DecodedBlob]],
        progress: ObjectIngestProgress,
    ) -> None:
        root_sha = commit.tree_sha
        if root_sha not in self.seen:
            insert_tree(self.session, self.repo_id, root_sha)
            self.seen.add(root_sha)
            progress.trees_written += 1

        for payload, decoded in blobs.values():
            insert_blob(
                self.session,
                self.repo_id,
                sha=payload.sha,
                content=decoded.content,
                encoding=decoded.encoding,
                size=payload.size if payload.size is not None else decoded.size,
            )
            self.seen.add(payload.sha)
            progress.blobs_written += 1

        for entry in entries:
            if entry.type == "tree" and entry.sha not in self.seen:
                insert_tree(self.session, self.repo_id, entry.sha)
                self.seen.add(entry.sha)
                progress.trees_written += 1
            insert_tree_entry(
                self.session,
                self.repo_id,
                root_tree_sha=root_sha,
                path=entry.path,
                entry_sha=entry.sha,
                entry_type=entry.type,
                mode=entry.mode,
            )
            progress.entries_written += 1

        author = commit.commit.author
        committer = commit.commit.committer
        insert_commit(
            self.session,
            self.repo_id,
            sha=commit.sha,
            tree_sha=root_sha,
            message=commit.commit.message,
            parent_shas=commit.parent_shas,
            author_name=author.name if author else None,
            author_email=author.email if author else None,
            authored_at=author.date if author else None,
            committer_name=committer.name if committer else None,
            committer_email=committer.email if committer else None,
            committed_at=committer.date if committer else None,
        )
        self.session.commit()

    async def _fetch_new_blobs(
        self, entries: list[TreeItem]
    ) -> dict[str, tuple[BlobPayload, DecodedBlob]]:
        pending: dict[str, TreeItem] = {}
        for entry in entries:
            if entry.type == "blob" and entry.sha not in self.seen:
                pending.setdefault(entry.sha, entry)

        fetched: dict[str, tuple[BlobPayload, DecodedBlob]] = {}
        for batch in batch_tree_files(
            list(pending.values()),
            max_bytes=self.settings.max_batch_bytes,
            max_files=self.settings.max_batch_files,
        ):
            self.tracker.ensure_not_cancelled()
            payloads = await asyncio.gather(
                *(self.client.get_blob(item.sha) for item in batch)
            )
            for payload in payloads:
                fetched[payload.sha] = (payload, _decode_blob(payload))
        self.tracker.ensure_not_cancelled()
        return fetched


def _decode_blob(payload: BlobPayload) -> DecodedBlob:
    try:
        return detect_blob_encoding(payload.content, payload.encoding)
    except ValueError as exc:
        raise MalformedResponseError(f"blob {payload.sha}: {exc}") from exc


async def ingest_objects(
    session: Session,
    client: RefClient,
    repo_id: int,
    *,
    tracker: DownloadStatusTracker,
    settings: SyncSettings | None = None,
    since=None,
    cursor: str | None = None,
    max_pages: int | None = None,
    is_backfill: bool = False,
    seen: set[str] | None = None,
) -> PhaseResult[ObjectIngestProgress]:
    ingester = ObjectIngester(
        session=session,
        client=client,
        repo_id=repo_id,
        tracker=tracker,
        settings=settings or SyncSettings(),
        is_backfill=is_backfill,
        seen=seen if seen is not None else set(),
    )
    return await ingester.run(since=since, cursor=cursor, max_pages=max_pages)
