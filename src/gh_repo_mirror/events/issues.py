from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable

from pydantic import ValidationError

from ..github.models import CommentNode, GqlAssignee, GqlLabel, IssueNode
from .timeline import Actor, TimelineRecord, actor_from_gql, normalize_timeline_node

logger = logging.getLogger("gh_repo_mirror.events.issues")

SUB_RESOURCES = ("labels", "assignees", "comments", "timeline_items")


@dataclass(frozen=True)
class IssueRecord:
    github_id: int
    number: int
    title: str
    state: str
    author: Actor
    labels: list[str]
    assignees: list[str]
    created_at: str | None
    updated_at: str | None
    closed_at: str | None = None
    comment_count: int = 0


@dataclass(frozen=True)
class CommentRecord:
    github_id: int
    author: Actor
    body: str
    created_at: str | None
    updated_at: str | None


@dataclass
class IssueBatchItem:
    issue: IssueRecord
    body: str
    comments: list[CommentRecord]
    timeline: list[TimelineRecord]
    # sub-connection name -> end cursor, for connections with more pages
    overflow: dict[str, str | None] = field(default_factory=dict)


def parse_comment_node(
    raw: Any, *, repo_id: int | None = None, issue_number: int | None = None
) -> CommentRecord | None:
    try:
        node = CommentNode.model_validate(raw)
    except ValidationError as exc:
        logger.error(
            "invalid issue comment (repo=%s issue=%s), skipping: %s",
            repo_id,
            issue_number,
            exc,
        )
        return None
    return CommentRecord(
        github_id=node.database_id,
        author=actor_from_gql(node.author),
        body=node.body or "",
        created_at=node.created_at,
        updated_at=node.updated_at,
    )


def parse_comments(
    nodes: Iterable[Any], *, repo_id: int | None = None, issue_number: int | None = None
) -> list[CommentRecord]:
    parsed = (
        parse_comment_node(node, repo_id=repo_id, issue_number=issue_number)
        for node in nodes
    )
    return [comment for comment in parsed if comment is not None]


def parse_timeline(
    nodes: Iterable[Any], *, repo_id: int | None = None, issue_number: int | None = None
) -> list[TimelineRecord]:
    parsed = (
        normalize_timeline_node(node, repo_id=repo_id, issue_number=issue_number)
        for node in nodes
    )
    return [item for item in parsed if item is not None]


def label_names(labels: Iterable[GqlLabel]) -> list[str]:
    return [label.name for label in labels]


def assignee_logins(assignees: Iterable[GqlAssignee]) -> list[str]:
    return [assignee.login for assignee in assignees]


def issue_record_from_node(node: IssueNode, comment_count: int | None = None) -> IssueRecord:
    return IssueRecord(
        github_id=node.database_id,
        number=node.number,
        title=node.title,
        state="closed" if node.state == "CLOSED" else "open",
        author=actor_from_gql(node.author),
        labels=label_names(node.labels.nodes),
        assignees=assignee_logins(node.assignees.nodes),
        created_at=node.created_at,
        updated_at=node.updated_at,
        closed_at=node.closed_at,
        comment_count=len(node.comments.nodes) if comment_count is None else comment_count,
    )


def build_issue_batch(repo_id: int, nodes: Iterable[Any]) -> list[IssueBatchItem]:
    """Parse one page of raw issue nodes, dropping any that fail validation."""
    items: list[IssueBatchItem] = []
    for raw in nodes:
        try:
            node = IssueNode.model_validate(raw)
        except ValidationError as exc:
            logger.error("invalid issue node (repo=%s), skipping: %s", repo_id, exc)
            continue

        overflow: dict[str, str | None] = {}
        for name in SUB_RESOURCES:
            connection = getattr(node, name)
            if connection.has_next_page:
                overflow[name] = connection.end_cursor

        comments = parse_comments(node.comments.nodes, repo_id=repo_id, issue_number=node.number)
        items.append(
            IssueBatchItem(
                issue=issue_record_from_node(node),
                body=node.body or "",
                comments=comments,
                timeline=parse_timeline(
                    node.timeline_items.nodes, repo_id=repo_id, issue_number=node.number
                ),
                overflow=overflow,
            )
        )
    return items
