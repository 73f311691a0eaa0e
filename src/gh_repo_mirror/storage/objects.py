from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import delete, select
from sqlalchemy.dialects.sqlite import insert
from sqlalchemy.orm import Session

from ..utils.encoding import blob_to_bytes
from ..utils.time import parse_datetime
from .schema import (
    Blob,
    Commit,
    DownloadStatus,
    Issue,
    IssueBody,
    IssueComment,
    IssueTimelineItem,
    Ref,
    Repo,
    Tree,
    TreeEntry,
    Watermark,
)


@dataclass(frozen=True)
class RefRecord:
    name: str
    commit_sha: str
    is_tag: bool


@dataclass(frozen=True)
class RefChanges:
    inserted: int
    updated: int
    deleted: int


def _upsert(session: Session, model, values: dict, index_elements: list[str]) -> None:
    stmt = insert(model).values(**values)
    update = {k: v for k, v in values.items() if k not in index_elements}
    stmt = stmt.on_conflict_do_update(index_elements=index_elements, set_=update)
    session.execute(stmt)


def _insert_ignore(session: Session, model, values: dict, index_elements: list[str]) -> None:
    stmt = insert(model).values(**values)
    stmt = stmt.on_conflict_do_nothing(index_elements=index_elements)
    session.execute(stmt)


def get_repo(session: Session, owner: str, name: str) -> Repo | None:
    return session.scalar(select(Repo).where(Repo.owner == owner, Repo.name == name))


def get_or_create_repo(
    session: Session,
    owner: str,
    name: str,
    *,
    private: bool = False,
    installation_id: int | None = None,
) -> Repo:
    """Return the repo row, creating it with zeroed issue counters if missing."""
    repo = get_repo(session, owner, name)
    if repo is not None:
        return repo
    _insert_ignore(
        session,
        Repo,
        {
            "owner": owner,
            "name": name,
            "private": private,
            "open_issues": 0,
            "closed_issues": 0,
            "installation_id": installation_id,
        },
        ["owner", "name"],
    )
    session.flush()
    repo = get_repo(session, owner, name)
    if repo is None:
        raise RuntimeError(f"failed to create repo {owner}/{name}")
    return repo


def commit_exists(session: Session, repo_id: int, sha: str) -> bool:
    row = session.execute(
        select(Commit.sha).where(Commit.repo_id == repo_id, Commit.sha == sha)
    ).first()
    return row is not None


def insert_tree(session: Session, repo_id: int, sha: str) -> None:
    _insert_ignore(session, Tree, {"repo_id": repo_id, "sha": sha}, ["repo_id", "sha"])


def insert_commit(
    session: Session,
    repo_id: int,
    *,
    sha: str,
    tree_sha: str,
    message: str | None,
    parent_shas: list[str],
    author_name: str | None = None,
    author_email: str | None = None,
    authored_at: datetime | str | None = None,
    committer_name: str | None = None,
    committer_email: str | None = None,
    committed_at: datetime | str | None = None,
) -> None:
    # commits are immutable once written
    _insert_ignore(
        session,
        Commit,
        {
            "repo_id": repo_id,
            "sha": sha,
            "tree_sha": tree_sha,
            "message": message,
            "parent_shas_json": json.dumps(list(parent_shas)),
            "author_name": author_name,
            "author_email": author_email,
            "authored_at": parse_datetime(authored_at),
            "committer_name": committer_name,
            "committer_email": committer_email,
            "committed_at": parse_datetime(committed_at),
        },
        ["repo_id", "sha"],
    )


def insert_tree_entry(
    session: Session,
    repo_id: int,
    *,
    root_tree_sha: str,
    path: str,
    entry_sha: str,
    entry_type: str,
    mode: str | None = None,
) -> None:
    if entry_type not in {"blob", "tree"}:
        raise ValueError(f"unsupported tree entry type: {entry_type}")
    _insert_ignore(
        session,
        TreeEntry,
        {
            "repo_id": repo_id,
            "root_tree_sha": root_tree_sha,
            "path": path,
            "entry_sha": entry_sha,
            "entry_type": entry_type,
            "mode": mode,
        },
        ["repo_id", "root_tree_sha", "path"],
    )


def insert_blob(
    session: Session,
    repo_id: int,
    *,
    sha: str,
    content: str,
    encoding: str,
    size: int,
) -> None:
    _insert_ignore(
        session,
        Blob,
        {
            "repo_id": repo_id,
            "sha": sha,
            "content": content,
            "encoding": encoding,
            "size": size,
        },
        ["repo_id", "sha"],
    )


def read_blob(session: Session, repo_id: int, sha: str) -> Blob | None:
    return session.get(Blob, (repo_id, sha))


def blob_bytes(session: Session, repo_id: int, sha: str) -> bytes | None:
    blob = read_blob(session, repo_id, sha)
    if blob is None:
        return None
    return blob_to_bytes(blob.content, blob.encoding)


def list_tree_entries(session: Session, repo_id: int, root_tree_sha: str) -> list[TreeEntry]:
    return list(
        session.scalars(
            select(TreeEntry)
            .where(TreeEntry.repo_id == repo_id, TreeEntry.root_tree_sha == root_tree_sha)
            .order_by(TreeEntry.path)
        )
    )


def list_refs(session: Session, repo_id: int) -> list[Ref]:
    return list(session.scalars(select(Ref).where(Ref.repo_id == repo_id).order_by(Ref.name)))


def replace_refs(session: Session, repo_id: int, refs: list[RefRecord]) -> RefChanges:
    """Make the stored ref set equal ``refs``: insert new, update moved, drop missing."""
    existing = {ref.name: ref for ref in list_refs(session, repo_id)}
    incoming = {ref.name: ref for ref in refs}

    inserted = updated = deleted = 0
    for name, record in incoming.items():
        current = existing.get(name)
        if current is None:
            session.add(
                Ref(
                    repo_id=repo_id,
                    name=name,
                    commit_sha=record.commit_sha,
                    is_tag=record.is_tag,
                )
            )
            inserted += 1
        elif current.commit_sha != record.commit_sha or current.is_tag != record.is_tag:
            current.commit_sha = record.commit_sha
            current.is_tag = record.is_tag
            updated += 1

    stale = [ref for name, ref in existing.items() if name not in incoming]
    for ref in stale:
        session.delete(ref)
        deleted += 1

    repo = session.get(Repo, repo_id)
    if repo is not None and repo.head_ref_id in {ref.id for ref in stale}:
        repo.head_ref_id = None
    session.flush()
    return RefChanges(inserted=inserted, updated=updated, deleted=deleted)


def set_repo_head(session: Session, repo_id: int, ref_name: str) -> int | None:
    """Point the repo head at ``ref_name``; returns the ref id or None if absent."""
    ref = session.scalar(select(Ref).where(Ref.repo_id == repo_id, Ref.name == ref_name))
    if ref is None:
        return None
    repo = session.get(Repo, repo_id)
    if repo is None:
        return None
    repo.head_ref_id = ref.id
    session.flush()
    return ref.id


def delete_repo_data(session: Session, repo_id: int) -> None:
    """Delete a repo and everything it owns, child tables first."""
    for model in (
        IssueTimelineItem,
        IssueComment,
        IssueBody,
        Issue,
        TreeEntry,
        Blob,
        Tree,
        Commit,
        Ref,
        Watermark,
        DownloadStatus,
    ):
        session.execute(delete(model).where(model.repo_id == repo_id))
    session.execute(delete(Repo).where(Repo.id == repo_id))
    session.flush()
