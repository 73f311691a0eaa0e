"""Consumers for already-verified webhook payloads.

Ingress, signature checks and JSON decoding happen upstream; these handlers
receive the normalized issue and installation shapes and apply simple upserts.
"""

from __future__ import annotations

import logging

from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import select, update
from sqlalchemy.orm import Session

from ..events.issues import IssueRecord
from ..events.timeline import Actor, GitHubUser
from ..storage.issues import upsert_issue, upsert_issue_body
from ..storage.objects import get_or_create_repo, get_repo
from ..storage.schema import Repo

logger = logging.getLogger("gh_repo_mirror.ingest.webhooks")

ISSUE_ACTIONS = frozenset(
    {"opened", "closed", "edited", "reopened", "assigned", "unassigned", "labeled", "unlabeled"}
)


class WebhookUser(BaseModel):
    login: str
    id: int


class IssueEvent(BaseModel):
    model_config = ConfigDict(extra="ignore")

    owner: str
    repo: str
    action: str = "edited"
    github_id: int
    number: int
    title: str
    state: str = "open"
    body: str | None = None
    author: WebhookUser | None = None
    labels: list[str] = Field(default_factory=list)
    assignees: list[str] = Field(default_factory=list)
    created_at: str | None = None
    updated_at: str | None = None
    closed_at: str | None = None
    comments: int = 0


class InstallationRepo(BaseModel):
    owner: str
    name: str
    private: bool = False


class InstallationEvent(BaseModel):
    model_config = ConfigDict(extra="ignore")

    installation_id: int
    github_user_id: int | None = None
    repos: list[InstallationRepo] = Field(default_factory=list)


def handle_issue_event(session: Session, event: IssueEvent) -> int | None:
    """Upsert the issue carried by an ``issues`` event; returns its row id."""
    if event.action not in ISSUE_ACTIONS:
        logger.info("ignoring issues event with action %s", event.action)
        return None
    repo = get_repo(session, event.owner, event.repo)
    if repo is None:
        logger.warning("issues event for unknown repo %s/%s", event.owner, event.repo)
        return None

    author: Actor = None
    if event.author is not None:
        author = GitHubUser(login=event.author.login, id=event.author.id)
    record = IssueRecord(
        github_id=event.github_id,
        number=event.number,
        title=event.title,
        state=event.state or "open",
        author=author,
        labels=list(event.labels),
        assignees=list(event.assignees),
        created_at=event.created_at,
        updated_at=event.updated_at,
        closed_at=event.closed_at,
        comment_count=event.comments,
    )
    issue_id = upsert_issue(session, repo.id, record)
    upsert_issue_body(session, repo.id, issue_id, event.body or "")
    session.commit()
    logger.info(
        "issue %s: %s/%s#%s", event.action, event.owner, event.repo, event.number
    )
    return issue_id


def handle_installation_event(
    session: Session, event: InstallationEvent, action: str
) -> list[int]:
    """Link or unlink repos for an installation; returns repo ids to sync."""
    if action == "created":
        repo_ids = []
        for item in event.repos:
            repo = get_or_create_repo(
                session,
                item.owner,
                item.name,
                private=item.private,
                installation_id=event.installation_id,
            )
            repo.installation_id = event.installation_id
            repo.private = item.private
            repo_ids.append(repo.id)
        session.commit()
        return repo_ids

    if action == "deleted":
        session.execute(
            update(Repo)
            .where(Repo.installation_id == event.installation_id)
            .values(installation_id=None)
            .execution_options(synchronize_session="fetch")
        )
        session.commit()
        return []

    if action == "installation_removed":
        for item in event.repos:
            repo = session.scalar(
                select(Repo).where(
                    Repo.owner == item.owner,
                    Repo.name == item.name,
                    Repo.installation_id == event.installation_id,
                )
            )
            if repo is not None:
                repo.installation_id = None
        session.commit()
        return []

    logger.info("ignoring installation action %s", action)
    return []
