from __future__ import annotations

ACTOR_FIELDS = "login ... on User { databaseId }"

ASSIGNEE_FIELDS = """
  ... on User { login databaseId }
  ... on Mannequin { login databaseId }
  ... on Organization { login: name databaseId }
  ... on Bot { login databaseId }
"""

REPO_REF_FIELDS = "name owner { login }"

TIMELINE_ITEM_TYPES = """[
  ASSIGNED_EVENT,
  UNASSIGNED_EVENT,
  LABELED_EVENT,
  UNLABELED_EVENT,
  MILESTONED_EVENT,
  DEMILESTONED_EVENT,
  CLOSED_EVENT,
  REOPENED_EVENT,
  RENAMED_TITLE_EVENT,
  REFERENCED_EVENT,
  CROSS_REFERENCED_EVENT,
  LOCKED_EVENT,
  UNLOCKED_EVENT,
  PINNED_EVENT,
  UNPINNED_EVENT,
  TRANSFERRED_EVENT
]"""


def _actor_only(typename: str) -> str:
    return f"... on {typename} {{ id createdAt actor {{ {ACTOR_FIELDS} }} }}"


TIMELINE_NODE_FIELDS = f"""
  __typename
  ... on AssignedEvent {{
    id createdAt actor {{ {ACTOR_FIELDS} }}
    assignee {{ {ASSIGNEE_FIELDS} }}
  }}
  ... on UnassignedEvent {{
    id createdAt actor {{ {ACTOR_FIELDS} }}
    assignee {{ {ASSIGNEE_FIELDS} }}
  }}
  ... on LabeledEvent {{
    id createdAt actor {{ {ACTOR_FIELDS} }}
    label {{ name color }}
  }}
  ... on UnlabeledEvent {{
    id createdAt actor {{ {ACTOR_FIELDS} }}
    label {{ name color }}
  }}
  ... on MilestonedEvent {{
    id createdAt actor {{ {ACTOR_FIELDS} }}
    milestoneTitle
  }}
  ... on DemilestonedEvent {{
    id createdAt actor {{ {ACTOR_FIELDS} }}
    milestoneTitle
  }}
  {_actor_only("ClosedEvent")}
  {_actor_only("ReopenedEvent")}
  ... on RenamedTitleEvent {{
    id createdAt actor {{ {ACTOR_FIELDS} }}
    previousTitle currentTitle
  }}
  ... on ReferencedEvent {{
    id createdAt actor {{ {ACTOR_FIELDS} }}
    commit {{ oid url }}
  }}
  ... on CrossReferencedEvent {{
    id createdAt actor {{ {ACTOR_FIELDS} }}
    source {{
      __typename
      ... on Issue {{ number repository {{ {REPO_REF_FIELDS} }} }}
      ... on PullRequest {{ number repository {{ {REPO_REF_FIELDS} }} }}
    }}
  }}
  {_actor_only("LockedEvent")}
  {_actor_only("UnlockedEvent")}
  {_actor_only("PinnedEvent")}
  {_actor_only("UnpinnedEvent")}
  ... on TransferredEvent {{
    id createdAt actor {{ {ACTOR_FIELDS} }}
    fromRepository {{ {REPO_REF_FIELDS} }}
  }}
"""

COMMENT_NODE_FIELDS = f"""
  databaseId
  author {{ {ACTOR_FIELDS} }}
  body
  createdAt
  updatedAt
"""

PAGE_INFO = "pageInfo { hasNextPage endCursor }"

ISSUES_PAGE_QUERY = f"""
query IssuesPage(
  $owner: String!, $repo: String!, $first: Int!, $after: String,
  $since: DateTime, $subFirst: Int!
) {{
  repository(owner: $owner, name: $repo) {{
    issues(
      first: $first, after: $after,
      orderBy: {{ field: UPDATED_AT, direction: DESC }},
      states: [OPEN, CLOSED],
      filterBy: {{ since: $since }}
    ) {{
      {PAGE_INFO}
      nodes {{
        databaseId
        number
        title
        state
        body
        createdAt
        updatedAt
        closedAt
        author {{ {ACTOR_FIELDS} }}
        labels(first: $subFirst) {{ {PAGE_INFO} nodes {{ name color }} }}
        assignees(first: $subFirst) {{ {PAGE_INFO} nodes {{ login }} }}
        comments(first: $subFirst) {{ {PAGE_INFO} nodes {{ {COMMENT_NODE_FIELDS} }} }}
        timelineItems(first: $subFirst, itemTypes: {TIMELINE_ITEM_TYPES}) {{
          {PAGE_INFO}
          nodes {{ {TIMELINE_NODE_FIELDS} }}
        }}
      }}
    }}
  }}
}}
"""


def _issue_connection_query(name: str, connection: str, node_fields: str) -> str:
    return f"""
query {name}($owner: String!, $repo: String!, $number: Int!, $first: Int!, $after: String) {{
  repository(owner: $owner, name: $repo) {{
    issue(number: $number) {{
      {connection} {{
        {PAGE_INFO}
        nodes {{ {node_fields} }}
      }}
    }}
  }}
}}
"""


ISSUE_LABELS_QUERY = _issue_connection_query(
    "IssueLabels", "labels(first: $first, after: $after)", "name color"
)

ISSUE_ASSIGNEES_QUERY = _issue_connection_query(
    "IssueAssignees", "assignees(first: $first, after: $after)", "login"
)

ISSUE_COMMENTS_QUERY = _issue_connection_query(
    "IssueComments", "comments(first: $first, after: $after)", COMMENT_NODE_FIELDS
)

ISSUE_TIMELINE_QUERY = _issue_connection_query(
    "IssueTimeline",
    f"timelineItems(first: $first, after: $after, itemTypes: {TIMELINE_ITEM_TYPES})",
    TIMELINE_NODE_FIELDS,
)
