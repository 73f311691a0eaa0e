import json

from gh_repo_mirror.events.timeline import (
    GITHUB_ACTIONS,
    Assigned,
    Closed,
    CrossReferenced,
    GitHubUser,
    Labeled,
    Renamed,
    Transferred,
    actor_from_json,
    actor_to_json,
    normalize_timeline_node,
)

ACTOR = {"login": "octo", "databaseId": 1}


def _node(typename, **fields):
    return {
        "__typename": typename,
        "id": f"node-{typename}",
        "createdAt": "2024-01-01T00:00:00Z",
        "actor": ACTOR,
        **fields,
    }


def test_labeled_event():
    record = normalize_timeline_node(
        _node("LabeledEvent", label={"name": "bug", "color": "d73a4a"})
    )
    assert isinstance(record.item, Labeled)
    assert record.actor == GitHubUser(login="octo", id=1)
    assert json.loads(record.item_json()) == {
        "type": "labeled",
        "label": {"name": "bug", "color": "d73a4a"},
    }


def test_assigned_uses_assignee_not_actor():
    record = normalize_timeline_node(
        _node("AssignedEvent", assignee={"login": "hubot", "databaseId": 2})
    )
    assert record.item == Assigned(assignee=GitHubUser(login="hubot", id=2))
    assert record.actor == GitHubUser(login="octo", id=1)


def test_renamed_and_closed():
    renamed = normalize_timeline_node(
        _node("RenamedTitleEvent", previousTitle="old", currentTitle="new")
    )
    assert renamed.item == Renamed(previous_title="old", current_title="new")
    assert renamed.item.to_dict()["type"] == "renamed"
    assert normalize_timeline_node(_node("ClosedEvent")).item == Closed()


def test_cross_referenced_source():
    record = normalize_timeline_node(
        _node(
            "CrossReferencedEvent",
            source={
                "__typename": "PullRequest",
                "number": 42,
                "repository": {"name": "other", "owner": {"login": "acme"}},
            },
        )
    )
    assert isinstance(record.item, CrossReferenced)
    assert record.item.to_dict() == {
        "type": "cross_referenced",
        "source": {"type": "PullRequest", "owner": "acme", "name": "other", "number": 42},
    }


def test_transferred_event():
    record = normalize_timeline_node(
        _node("TransferredEvent", fromRepository={"name": "old", "owner": {"login": "acme"}})
    )
    assert isinstance(record.item, Transferred)
    assert record.item.from_repository.owner == "acme"


def test_actor_variants():
    ghost = normalize_timeline_node({**_node("LockedEvent"), "actor": None})
    assert ghost.actor is None
    bot = normalize_timeline_node({**_node("PinnedEvent"), "actor": {"login": "github-actions"}})
    assert bot.actor == GITHUB_ACTIONS


def test_unknown_typename_is_dropped(caplog):
    assert normalize_timeline_node(_node("SubscribedEvent")) is None
    assert "unknown timeline item type" in caplog.text


def test_invalid_node_is_dropped(caplog):
    assert normalize_timeline_node(_node("LabeledEvent")) is None
    assert "invalid LabeledEvent timeline item" in caplog.text


def test_actor_json_round_trip():
    for actor in (GitHubUser(login="octo", id=1), GITHUB_ACTIONS, None):
        assert actor_from_json(json.loads(json.dumps(actor_to_json(actor)))) == actor
