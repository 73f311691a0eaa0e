from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class Repo(Base):
    __tablename__ = "repos"
    __table_args__ = (UniqueConstraint("owner", "name", name="ux_repos_owner_name"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    owner: Mapped[str] = mapped_column(String, nullable=False)
    name: Mapped[str] = mapped_column(String, nullable=False)
    private: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    head_ref_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    open_issues: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    closed_issues: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    installation_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)


class Ref(Base):
    __tablename__ = "refs"
    __table_args__ = (UniqueConstraint("repo_id", "name", name="ux_refs_repo_name"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    repo_id: Mapped[int] = mapped_column(Integer, ForeignKey("repos.id"), nullable=False)
    name: Mapped[str] = mapped_column(String, nullable=False)
    commit_sha: Mapped[str] = mapped_column(String, nullable=False)
    is_tag: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)


class Commit(Base):
    __tablename__ = "commits"

    repo_id: Mapped[int] = mapped_column(Integer, ForeignKey("repos.id"), primary_key=True)
    sha: Mapped[str] = mapped_column(String, primary_key=True)
    tree_sha: Mapped[str] = mapped_column(String, nullable=False)
    message: Mapped[str | None] = mapped_column(Text, nullable=True)
    parent_shas_json: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    author_name: Mapped[str | None] = mapped_column(String, nullable=True)
    author_email: Mapped[str | None] = mapped_column(String, nullable=True)
    authored_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    committer_name: Mapped[str | None] = mapped_column(String, nullable=True)
    committer_email: Mapped[str | None] = mapped_column(String, nullable=True)
    committed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))


class Tree(Base):
    __tablename__ = "trees"

    repo_id: Mapped[int] = mapped_column(Integer, ForeignKey("repos.id"), primary_key=True)
    sha: Mapped[str] = mapped_column(String, primary_key=True)


class TreeEntry(Base):
    __tablename__ = "tree_entries"
    __table_args__ = (Index("ix_tree_entries_entry_sha", "repo_id", "entry_sha"),)

    repo_id: Mapped[int] = mapped_column(Integer, ForeignKey("repos.id"), primary_key=True)
    root_tree_sha: Mapped[str] = mapped_column(String, primary_key=True)
    path: Mapped[str] = mapped_column(String, primary_key=True)
    entry_sha: Mapped[str] = mapped_column(String, nullable=False)
    entry_type: Mapped[str] = mapped_column(String, nullable=False)
    mode: Mapped[str | None] = mapped_column(String, nullable=True)


class Blob(Base):
    __tablename__ = "blobs"

    repo_id: Mapped[int] = mapped_column(Integer, ForeignKey("repos.id"), primary_key=True)
    sha: Mapped[str] = mapped_column(String, primary_key=True)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    encoding: Mapped[str] = mapped_column(String, nullable=False)
    size: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class Issue(Base):
    __tablename__ = "issues"
    __table_args__ = (
        UniqueConstraint("repo_id", "number", name="ux_issues_repo_number"),
        Index("ix_issues_repo_updated", "repo_id", "updated_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    repo_id: Mapped[int] = mapped_column(Integer, ForeignKey("repos.id"), nullable=False)
    github_id: Mapped[int] = mapped_column(BigInteger, nullable=False, unique=True)
    number: Mapped[int] = mapped_column(Integer, nullable=False)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    state: Mapped[str] = mapped_column(String, nullable=False)
    author_json: Mapped[str] = mapped_column(Text, nullable=False, default="null")
    labels_json: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    assignees_json: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    closed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    comment_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class IssueBody(Base):
    __tablename__ = "issue_bodies"

    issue_id: Mapped[int] = mapped_column(Integer, ForeignKey("issues.id"), primary_key=True)
    repo_id: Mapped[int] = mapped_column(Integer, ForeignKey("repos.id"), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False, default="")


class IssueComment(Base):
    __tablename__ = "issue_comments"
    __table_args__ = (
        UniqueConstraint("issue_id", "github_id", name="ux_issue_comments_issue_github"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    repo_id: Mapped[int] = mapped_column(Integer, ForeignKey("repos.id"), nullable=False)
    issue_id: Mapped[int] = mapped_column(Integer, ForeignKey("issues.id"), nullable=False)
    github_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    author_json: Mapped[str] = mapped_column(Text, nullable=False, default="null")
    body: Mapped[str] = mapped_column(Text, nullable=False, default="")
    created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))


class IssueTimelineItem(Base):
    __tablename__ = "issue_timeline_items"
    __table_args__ = (
        UniqueConstraint(
            "issue_id", "github_node_id", name="ux_issue_timeline_issue_node"
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    repo_id: Mapped[int] = mapped_column(Integer, ForeignKey("repos.id"), nullable=False)
    issue_id: Mapped[int] = mapped_column(Integer, ForeignKey("issues.id"), nullable=False)
    github_node_id: Mapped[str] = mapped_column(String, nullable=False)
    created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    actor_json: Mapped[str] = mapped_column(Text, nullable=False, default="null")
    item_type: Mapped[str] = mapped_column(String, nullable=False)
    item_json: Mapped[str] = mapped_column(Text, nullable=False)


class DownloadStatus(Base):
    __tablename__ = "download_statuses"

    repo_id: Mapped[int] = mapped_column(Integer, ForeignKey("repos.id"), primary_key=True)
    status: Mapped[str] = mapped_column(String, nullable=False, default="initial")
    message: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_synced_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    cancelled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))


class Watermark(Base):
    __tablename__ = "watermarks"
    __table_args__ = (
        UniqueConstraint("repo_id", "resource", name="ux_watermarks_repo_resource"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    repo_id: Mapped[int] = mapped_column(Integer, ForeignKey("repos.id"), nullable=False)
    resource: Mapped[str] = mapped_column(String, nullable=False)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    cursor: Mapped[str | None] = mapped_column(String, nullable=True)
    stage: Mapped[str | None] = mapped_column(String, nullable=True)
    pages_processed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
