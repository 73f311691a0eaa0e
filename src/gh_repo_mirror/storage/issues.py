from __future__ import annotations

import json
from dataclasses import dataclass

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session

from ..events.issues import CommentRecord, IssueBatchItem, IssueRecord
from ..events.timeline import TimelineRecord, actor_to_json
from ..utils.time import parse_datetime
from .objects import _upsert
from .schema import Issue, IssueBody, IssueComment, IssueTimelineItem, Repo


@dataclass(frozen=True)
class BatchWriteResult:
    issues: int
    comments: int
    timeline_items: int


def get_issue(session: Session, repo_id: int, number: int) -> Issue | None:
    return session.scalar(
        select(Issue)
        .where(Issue.repo_id == repo_id, Issue.number == number)
        .execution_options(populate_existing=True)
    )


def _counter_delta(previous_state: str | None, new_state: str) -> tuple[int, int]:
    if previous_state == new_state:
        return 0, 0
    open_delta = closed_delta = 0
    if previous_state == "open":
        open_delta -= 1
    elif previous_state == "closed":
        closed_delta -= 1
    if new_state == "open":
        open_delta += 1
    else:
        closed_delta += 1
    return open_delta, closed_delta


def _adjust_counters(session: Session, repo_id: int, open_delta: int, closed_delta: int) -> None:
    if not open_delta and not closed_delta:
        return
    session.execute(
        update(Repo)
        .where(Repo.id == repo_id)
        .values(
            open_issues=Repo.open_issues + open_delta,
            closed_issues=Repo.closed_issues + closed_delta,
        )
        .execution_options(synchronize_session="fetch")
    )


def upsert_issue(session: Session, repo_id: int, record: IssueRecord) -> int:
    """Upsert by (repo, number), moving the repo's open/closed counters with it."""
    if record.state not in {"open", "closed"}:
        raise ValueError(f"unsupported issue state: {record.state}")
    previous_state = session.scalar(
        select(Issue.state).where(Issue.repo_id == repo_id, Issue.number == record.number)
    )
    values = {
        "repo_id": repo_id,
        "github_id": record.github_id,
        "number": record.number,
        "title": record.title,
        "state": record.state,
        "author_json": json.dumps(actor_to_json(record.author)),
        "labels_json": json.dumps(list(record.labels)),
        "assignees_json": json.dumps(list(record.assignees)),
        "created_at": parse_datetime(record.created_at),
        "updated_at": parse_datetime(record.updated_at),
        "closed_at": parse_datetime(record.closed_at),
        "comment_count": record.comment_count,
    }
    _upsert(session, Issue, values, ["repo_id", "number"])
    _adjust_counters(session, repo_id, *_counter_delta(previous_state, record.state))
    issue_id = session.scalar(
        select(Issue.id).where(Issue.repo_id == repo_id, Issue.number == record.number)
    )
    if issue_id is None:
        raise RuntimeError(f"issue #{record.number} missing after upsert")
    return issue_id


def upsert_issue_body(session: Session, repo_id: int, issue_id: int, body: str) -> None:
    _upsert(
        session,
        IssueBody,
        {"issue_id": issue_id, "repo_id": repo_id, "body": body or ""},
        ["issue_id"],
    )


def replace_issue_comments(
    session: Session, repo_id: int, issue_id: int, comments: list[CommentRecord]
) -> int:
    session.execute(delete(IssueComment).where(IssueComment.issue_id == issue_id))
    unique = {comment.github_id: comment for comment in comments}
    for comment in unique.values():
        session.add(
            IssueComment(
                repo_id=repo_id,
                issue_id=issue_id,
                github_id=comment.github_id,
                author_json=json.dumps(actor_to_json(comment.author)),
                body=comment.body,
                created_at=parse_datetime(comment.created_at),
                updated_at=parse_datetime(comment.updated_at),
            )
        )
    session.flush()
    return len(unique)


def replace_issue_timeline(
    session: Session, repo_id: int, issue_id: int, items: list[TimelineRecord]
) -> int:
    session.execute(delete(IssueTimelineItem).where(IssueTimelineItem.issue_id == issue_id))
    unique = {item.github_node_id: item for item in items}
    for item in unique.values():
        session.add(
            IssueTimelineItem(
                repo_id=repo_id,
                issue_id=issue_id,
                github_node_id=item.github_node_id,
                created_at=parse_datetime(item.created_at),
                actor_json=json.dumps(actor_to_json(item.actor)),
                item_type=item.item.type,
                item_json=item.item_json(),
            )
        )
    session.flush()
    return len(unique)


def write_issue_batch(
    session: Session, repo_id: int, items: list[IssueBatchItem]
) -> BatchWriteResult:
    comments = timeline = 0
    for item in items:
        issue_id = upsert_issue(session, repo_id, item.issue)
        upsert_issue_body(session, repo_id, issue_id, item.body)
        comments += replace_issue_comments(session, repo_id, issue_id, item.comments)
        timeline += replace_issue_timeline(session, repo_id, issue_id, item.timeline)
    session.commit()
    return BatchWriteResult(issues=len(items), comments=comments, timeline_items=timeline)


def recompute_issue_counts(session: Session, repo_id: int) -> tuple[int, int]:
    """Repair path: recount open/closed issues from the issue table."""
    rows = session.execute(
        select(Issue.state, func.count())
        .where(Issue.repo_id == repo_id)
        .group_by(Issue.state)
    ).all()
    counts = {state: count for state, count in rows}
    open_count = counts.get("open", 0)
    closed_count = counts.get("closed", 0)
    session.execute(
        update(Repo)
        .where(Repo.id == repo_id)
        .values(open_issues=open_count, closed_issues=closed_count)
        .execution_options(synchronize_session="fetch")
    )
    session.commit()
    return open_count, closed_count
