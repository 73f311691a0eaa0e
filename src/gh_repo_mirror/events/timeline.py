from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, ClassVar, Literal, Union

from pydantic import ValidationError

from ..github.models import (
    TIMELINE_NODE_ADAPTER,
    TIMELINE_TYPENAMES,
    AssignedEventNode,
    ClosedEventNode,
    CrossReferencedEventNode,
    DemilestonedEventNode,
    GqlActor,
    LabeledEventNode,
    LockedEventNode,
    MilestonedEventNode,
    PinnedEventNode,
    ReferencedEventNode,
    RenamedTitleEventNode,
    ReopenedEventNode,
    TransferredEventNode,
    UnassignedEventNode,
    UnlabeledEventNode,
    UnlockedEventNode,
    UnpinnedEventNode,
)

logger = logging.getLogger("gh_repo_mirror.events.timeline")

GITHUB_ACTIONS = "github-actions"


@dataclass(frozen=True)
class GitHubUser:
    login: str
    id: int


# None is a deleted (ghost) account; GITHUB_ACTIONS is a bot without a database id.
Actor = Union[GitHubUser, Literal["github-actions"], None]


def actor_from_gql(actor: GqlActor | None) -> Actor:
    if actor is None or not actor.login:
        return None
    if not actor.database_id:
        return GITHUB_ACTIONS
    return GitHubUser(login=actor.login, id=actor.database_id)


def actor_to_json(actor: Actor) -> Any:
    if isinstance(actor, GitHubUser):
        return {"login": actor.login, "id": actor.id}
    return actor


def actor_from_json(value: Any) -> Actor:
    if value is None:
        return None
    if value == GITHUB_ACTIONS:
        return GITHUB_ACTIONS
    if isinstance(value, dict):
        return GitHubUser(login=value["login"], id=value["id"])
    raise ValueError(f"unrecognised actor value: {value!r}")


@dataclass(frozen=True)
class LabelRef:
    name: str
    color: str


@dataclass(frozen=True)
class CommitRef:
    oid: str
    url: str


@dataclass(frozen=True)
class RepoRef:
    owner: str
    name: str


@dataclass(frozen=True)
class CrossRefSource:
    type: Literal["Issue", "PullRequest"]
    owner: str
    name: str
    number: int


class TimelineItem:
    type: ClassVar[str]

    def payload(self) -> dict[str, Any]:
        return {}

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, **self.payload()}


@dataclass(frozen=True)
class Assigned(TimelineItem):
    type: ClassVar[str] = "assigned"
    assignee: Actor

    def payload(self) -> dict[str, Any]:
        return {"assignee": actor_to_json(self.assignee)}


@dataclass(frozen=True)
class Unassigned(TimelineItem):
    type: ClassVar[str] = "unassigned"
    assignee: Actor

    def payload(self) -> dict[str, Any]:
        return {"assignee": actor_to_json(self.assignee)}


@dataclass(frozen=True)
class Labeled(TimelineItem):
    type: ClassVar[str] = "labeled"
    label: LabelRef

    def payload(self) -> dict[str, Any]:
        return {"label": {"name": self.label.name, "color": self.label.color}}


@dataclass(frozen=True)
class Unlabeled(TimelineItem):
    type: ClassVar[str] = "unlabeled"
    label: LabelRef

    def payload(self) -> dict[str, Any]:
        return {"label": {"name": self.label.name, "color": self.label.color}}


@dataclass(frozen=True)
class Milestoned(TimelineItem):
    type: ClassVar[str] = "milestoned"
    milestone_title: str

    def payload(self) -> dict[str, Any]:
        return {"milestone_title": self.milestone_title}


@dataclass(frozen=True)
class Demilestoned(TimelineItem):
    type: ClassVar[str] = "demilestoned"
    milestone_title: str

    def payload(self) -> dict[str, Any]:
        return {"milestone_title": self.milestone_title}


@dataclass(frozen=True)
class Closed(TimelineItem):
    type: ClassVar[str] = "closed"


@dataclass(frozen=True)
class Reopened(TimelineItem):
    type: ClassVar[str] = "reopened"


@dataclass(frozen=True)
class Renamed(TimelineItem):
    type: ClassVar[str] = "renamed"
    previous_title: str
    current_title: str

    def payload(self) -> dict[str, Any]:
        return {"previous_title": self.previous_title, "current_title": self.current_title}


@dataclass(frozen=True)
class Referenced(TimelineItem):
    type: ClassVar[str] = "referenced"
    commit: CommitRef

    def payload(self) -> dict[str, Any]:
        return {"commit": {"oid": self.commit.oid, "url": self.commit.url}}


@dataclass(frozen=True)
class CrossReferenced(TimelineItem):
    type: ClassVar[str] = "cross_referenced"
    source: CrossRefSource

    def payload(self) -> dict[str, Any]:
        return {
            "source": {
                "type": self.source.type,
                "owner": self.source.owner,
                "name": self.source.name,
                "number": self.source.number,
            }
        }


@dataclass(frozen=True)
class Locked(TimelineItem):
    type: ClassVar[str] = "locked"


@dataclass(frozen=True)
class Unlocked(TimelineItem):
    type: ClassVar[str] = "unlocked"


@dataclass(frozen=True)
class Pinned(TimelineItem):
    type: ClassVar[str] = "pinned"


@dataclass(frozen=True)
class Unpinned(TimelineItem):
    type: ClassVar[str] = "unpinned"


@dataclass(frozen=True)
class Transferred(TimelineItem):
    type: ClassVar[str] = "transferred"
    from_repository: RepoRef

    def payload(self) -> dict[str, Any]:
        return {
            "from_repository": {
                "owner": self.from_repository.owner,
                "name": self.from_repository.name,
            }
        }


@dataclass(frozen=True)
class TimelineRecord:
    github_node_id: str
    created_at: str
    actor: Actor
    item: TimelineItem

    def item_json(self) -> str:
        return json.dumps(self.item.to_dict(), sort_keys=True)


def _convert(node) -> TimelineItem:
    if isinstance(node, AssignedEventNode):
        return Assigned(assignee=actor_from_gql(node.assignee))
    elif isinstance(node, UnassignedEventNode):
        return Unassigned(assignee=actor_from_gql(node.assignee))
    elif isinstance(node, LabeledEventNode):
        return Labeled(label=LabelRef(name=node.label.name, color=node.label.color))
    elif isinstance(node, UnlabeledEventNode):
        return Unlabeled(label=LabelRef(name=node.label.name, color=node.label.color))
    elif isinstance(node, MilestonedEventNode):
        return Milestoned(milestone_title=node.milestone_title)
    elif isinstance(node, DemilestonedEventNode):
        return Demilestoned(milestone_title=node.milestone_title)
    elif isinstance(node, ClosedEventNode):
        return Closed()
    elif isinstance(node, ReopenedEventNode):
        return Reopened()
    elif isinstance(node, RenamedTitleEventNode):
        return Renamed(previous_title=node.previous_title, current_title=node.current_title)
    elif isinstance(node, ReferencedEventNode):
        return Referenced(commit=CommitRef(oid=node.commit.oid, url=node.commit.url))
    elif isinstance(node, CrossReferencedEventNode):
        return CrossReferenced(
            source=CrossRefSource(
                type=node.source.typename,
                owner=node.source.repository.owner.login,
                name=node.source.repository.name,
                number=node.source.number,
            )
        )
    elif isinstance(node, LockedEventNode):
        return Locked()
    elif isinstance(node, UnlockedEventNode):
        return Unlocked()
    elif isinstance(node, PinnedEventNode):
        return Pinned()
    elif isinstance(node, UnpinnedEventNode):
        return Unpinned()
    elif isinstance(node, TransferredEventNode):
        return Transferred(
            from_repository=RepoRef(
                owner=node.from_repository.owner.login,
                name=node.from_repository.name,
            )
        )
    raise AssertionError(f"unhandled timeline node {type(node).__name__}")


def normalize_timeline_node(
    raw: Any, *, repo_id: int | None = None, issue_number: int | None = None
) -> TimelineRecord | None:
    """Convert one raw timeline node, or return None after logging why it was dropped."""
    typename = raw.get("__typename") if isinstance(raw, dict) else None
    if typename not in TIMELINE_TYPENAMES:
        logger.warning(
            "unknown timeline item type %r (repo=%s issue=%s), skipping",
            typename,
            repo_id,
            issue_number,
        )
        return None
    try:
        node = TIMELINE_NODE_ADAPTER.validate_python(raw)
    except ValidationError as exc:
        logger.error(
            "invalid %s timeline item (repo=%s issue=%s), skipping: %s",
            typename,
            repo_id,
            issue_number,
            exc,
        )
        return None
    if not node.id or not node.created_at:
        logger.error(
            "timeline item missing id or createdAt (repo=%s issue=%s), skipping",
            repo_id,
            issue_number,
        )
        return None
    return TimelineRecord(
        github_node_id=node.id,
        created_at=node.created_at,
        actor=actor_from_gql(node.actor),
        item=_convert(node),
    )
