"""Pydantic shapes for the GitHub payloads the mirror consumes."""

from __future__ import annotations

from typing import Annotated, Any, Generic, Literal, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator

T = TypeVar("T")


class GitHubModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


# REST


class RepoOwner(GitHubModel):
    login: str


class RepoMetadata(GitHubModel):
    name: str
    owner: RepoOwner
    private: bool = False
    default_branch: str


class GitObject(GitHubModel):
    sha: str


class GitRefItem(GitHubModel):
    ref: str
    object: GitObject


class CommitIdentity(GitHubModel):
    name: str | None = None
    email: str | None = None
    date: str | None = None


class CommitDetail(GitHubModel):
    tree: GitObject
    message: str | None = None
    author: CommitIdentity | None = None
    committer: CommitIdentity | None = None


class CommitSummary(GitHubModel):
    sha: str
    commit: CommitDetail
    parents: list[GitObject] = Field(default_factory=list)

    @property
    def tree_sha(self) -> str:
        return self.commit.tree.sha

    @property
    def parent_shas(self) -> list[str]:
        return [parent.sha for parent in self.parents]


class TreeItem(GitHubModel):
    path: str
    mode: str | None = None
    type: str
    sha: str
    size: int | None = None


class TreeListing(GitHubModel):
    sha: str
    truncated: bool = False
    tree: list[TreeItem] = Field(default_factory=list)


class BlobPayload(GitHubModel):
    sha: str
    content: str
    encoding: str = "base64"
    size: int | None = None


class Page(GitHubModel, Generic[T]):
    items: list[T]
    has_next_page: bool
    cursor: str | None = None


# GraphQL


class PageInfo(GitHubModel):
    has_next_page: bool = Field(alias="hasNextPage")
    end_cursor: str | None = Field(default=None, alias="endCursor")


class GqlActor(GitHubModel):
    login: str | None = None
    database_id: int | None = Field(default=None, alias="databaseId")


class GqlLabel(GitHubModel):
    name: str
    color: str


class GqlAssignee(GitHubModel):
    login: str


class GqlRepoRef(GitHubModel):
    name: str
    owner: RepoOwner


class GqlCommitRef(GitHubModel):
    oid: str
    url: str


class GqlCrossRefSource(GitHubModel):
    typename: Literal["Issue", "PullRequest"] = Field(alias="__typename")
    number: int
    repository: GqlRepoRef


class Connection(GitHubModel, Generic[T]):
    nodes: list[T] = Field(default_factory=list)
    page_info: PageInfo | None = Field(default=None, alias="pageInfo")

    @field_validator("nodes", mode="before")
    @classmethod
    def _drop_null_nodes(cls, value):
        if value is None:
            return []
        return [node for node in value if node is not None]

    @property
    def has_next_page(self) -> bool:
        return bool(self.page_info and self.page_info.has_next_page)

    @property
    def end_cursor(self) -> str | None:
        return self.page_info.end_cursor if self.page_info else None


class IssueNode(GitHubModel):
    database_id: int = Field(alias="databaseId")
    number: int
    title: str
    state: Literal["OPEN", "CLOSED"]
    body: str | None = None
    created_at: str = Field(alias="createdAt")
    updated_at: str = Field(alias="updatedAt")
    closed_at: str | None = Field(default=None, alias="closedAt")
    author: GqlActor | None = None
    labels: Connection[GqlLabel] = Field(default_factory=Connection)
    assignees: Connection[GqlAssignee] = Field(default_factory=Connection)
    # comment and timeline nodes are validated one at a time downstream
    comments: Connection[Any] = Field(default_factory=Connection)
    timeline_items: Connection[Any] = Field(
        default_factory=Connection, alias="timelineItems"
    )


class CommentNode(GitHubModel):
    database_id: int = Field(alias="databaseId")
    author: GqlActor | None = None
    body: str | None = None
    created_at: str = Field(alias="createdAt")
    updated_at: str = Field(alias="updatedAt")


class IssuesPage(GitHubModel):
    nodes: list[Any] = Field(default_factory=list)
    page_info: PageInfo = Field(alias="pageInfo")


# Timeline events


class TimelineNodeBase(GitHubModel):
    id: str
    created_at: str = Field(alias="createdAt")
    actor: GqlActor | None = None


class AssignedEventNode(TimelineNodeBase):
    typename: Literal["AssignedEvent"] = Field(alias="__typename")
    assignee: GqlActor | None = None


class UnassignedEventNode(TimelineNodeBase):
    typename: Literal["UnassignedEvent"] = Field(alias="__typename")
    assignee: GqlActor | None = None


class LabeledEventNode(TimelineNodeBase):
    typename: Literal["LabeledEvent"] = Field(alias="__typename")
    label: GqlLabel


class UnlabeledEventNode(TimelineNodeBase):
    typename: Literal["UnlabeledEvent"] = Field(alias="__typename")
    label: GqlLabel


class MilestonedEventNode(TimelineNodeBase):
    typename: Literal["MilestonedEvent"] = Field(alias="__typename")
    milestone_title: str = Field(alias="milestoneTitle")


class DemilestonedEventNode(TimelineNodeBase):
    typename: Literal["DemilestonedEvent"] = Field(alias="__typename")
    milestone_title: str = Field(alias="milestoneTitle")


class ClosedEventNode(TimelineNodeBase):
    typename: Literal["ClosedEvent"] = Field(alias="__typename")


class ReopenedEventNode(TimelineNodeBase):
    typename: Literal["ReopenedEvent"] = Field(alias="__typename")


class RenamedTitleEventNode(TimelineNodeBase):
    typename: Literal["RenamedTitleEvent"] = Field(alias="__typename")
    previous_title: str = Field(alias="previousTitle")
    current_title: str = Field(alias="currentTitle")


class ReferencedEventNode(TimelineNodeBase):
    typename: Literal["ReferencedEvent"] = Field(alias="__typename")
    commit: GqlCommitRef


class CrossReferencedEventNode(TimelineNodeBase):
    typename: Literal["CrossReferencedEvent"] = Field(alias="__typename")
    source: GqlCrossRefSource


class LockedEventNode(TimelineNodeBase):
    typename: Literal["LockedEvent"] = Field(alias="__typename")


class UnlockedEventNode(TimelineNodeBase):
    typename: Literal["UnlockedEvent"] = Field(alias="__typename")


class PinnedEventNode(TimelineNodeBase):
    typename: Literal["PinnedEvent"] = Field(alias="__typename")


class UnpinnedEventNode(TimelineNodeBase):
    typename: Literal["UnpinnedEvent"] = Field(alias="__typename")


class TransferredEventNode(TimelineNodeBase):
    typename: Literal["TransferredEvent"] = Field(alias="__typename")
    from_repository: GqlRepoRef = Field(alias="fromRepository")


TimelineEventNode = Annotated[
    Union[
        AssignedEventNode,
        UnassignedEventNode,
        LabeledEventNode,
        UnlabeledEventNode,
        MilestonedEventNode,
        DemilestonedEventNode,
        ClosedEventNode,
        ReopenedEventNode,
        RenamedTitleEventNode,
        ReferencedEventNode,
        CrossReferencedEventNode,
        LockedEventNode,
        UnlockedEventNode,
        PinnedEventNode,
        UnpinnedEventNode,
        TransferredEventNode,
    ],
    Field(discriminator="typename"),
]

TIMELINE_NODE_ADAPTER: TypeAdapter[TimelineEventNode] = TypeAdapter(TimelineEventNode)

TIMELINE_TYPENAMES = frozenset(
    {
        "AssignedEvent",
        "UnassignedEvent",
        "LabeledEvent",
        "UnlabeledEvent",
        "MilestonedEvent",
        "DemilestonedEvent",
        "ClosedEvent",
        "ReopenedEvent",
        "RenamedTitleEvent",
        "ReferencedEvent",
        "CrossReferencedEvent",
        "LockedEvent",
        "UnlockedEvent",
        "PinnedEvent",
        "UnpinnedEvent",
        "TransferredEvent",
    }
)
