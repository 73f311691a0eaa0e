from sqlalchemy import func, select

from gh_repo_mirror.events.issues import CommentRecord, IssueBatchItem, IssueRecord
from gh_repo_mirror.events.timeline import GitHubUser
from gh_repo_mirror.storage.issues import recompute_issue_counts, upsert_issue, write_issue_batch
from gh_repo_mirror.storage.objects import (
    RefRecord,
    delete_repo_data,
    get_or_create_repo,
    get_repo,
    insert_blob,
    insert_commit,
    insert_tree,
    insert_tree_entry,
    replace_refs,
    set_repo_head,
)
from gh_repo_mirror.storage.schema import Blob, Commit, Issue, IssueComment, Ref, Repo
from gh_repo_mirror.storage.watermarks import clear_watermark, get_watermark, upsert_watermark


def _issue(number, state="open"):
    return IssueRecord(
        github_id=500 + number,
        number=number,
        title=f"Issue {number}",
        state=state,
        author=GitHubUser(login="octo", id=1),
        labels=[],
        assignees=[],
        created_at="2024-01-01T00:00:00Z",
        updated_at="2024-01-01T00:00:00Z",
    )


def _counters(session, repo_id):
    repo = session.get(Repo, repo_id)
    session.refresh(repo)
    return repo.open_issues, repo.closed_issues


def test_get_or_create_repo_is_idempotent(session):
    first = get_or_create_repo(session, "octo", "repo", private=True)
    second = get_or_create_repo(session, "octo", "repo")
    session.commit()
    assert first.id == second.id
    assert get_repo(session, "octo", "repo").private is True


def test_counters_follow_upserts(session, repo_id):
    upsert_issue(session, repo_id, _issue(1))
    upsert_issue(session, repo_id, _issue(2))
    upsert_issue(session, repo_id, _issue(3, state="closed"))
    session.commit()
    assert _counters(session, repo_id) == (2, 1)

    upsert_issue(session, repo_id, _issue(1, state="closed"))
    upsert_issue(session, repo_id, _issue(2))
    session.commit()
    assert _counters(session, repo_id) == (1, 2)

    issues = session.scalar(select(func.count()).select_from(Issue).where(Issue.repo_id == repo_id))
    assert issues == 3


def test_recompute_repairs_drifted_counters(session, repo_id):
    upsert_issue(session, repo_id, _issue(1))
    upsert_issue(session, repo_id, _issue(2, state="closed"))
    session.commit()
    repo = session.get(Repo, repo_id)
    repo.open_issues = 40
    repo.closed_issues = 0
    session.commit()

    assert recompute_issue_counts(session, repo_id) == (1, 1)
    assert _counters(session, repo_id) == (1, 1)


def test_rewriting_an_issue_replaces_comments(session, repo_id):
    def batch(comment_ids):
        comments = [
            CommentRecord(
                github_id=cid,
                author=None,
                body=f"c{cid}",
                created_at="2024-01-01T00:00:00Z",
                updated_at="2024-01-01T00:00:00Z",
            )
            for cid in comment_ids
        ]
        return [IssueBatchItem(issue=_issue(1), body="b", comments=comments, timeline=[])]

    write_issue_batch(session, repo_id, batch([1, 2, 2]))
    result = write_issue_batch(session, repo_id, batch([2, 3]))

    assert result.comments == 2
    ids = sorted(session.scalars(select(IssueComment.github_id)))
    assert ids == [2, 3]


def test_replace_refs_and_head(session, repo_id):
    replace_refs(
        session,
        repo_id,
        [RefRecord("main", "c1", False), RefRecord("v1", "c1", True)],
    )
    assert set_repo_head(session, repo_id, "main") is not None
    assert set_repo_head(session, repo_id, "missing") is None
    session.commit()

    changes = replace_refs(session, repo_id, [RefRecord("v1", "c1", True)])
    session.commit()
    assert (changes.inserted, changes.updated, changes.deleted) == (0, 0, 1)
    assert session.get(Repo, repo_id).head_ref_id is None


def test_watermark_upsert_and_clear(session, repo_id):
    upsert_watermark(session, repo_id, "issues", updated_at="2024-01-01T00:00:00Z")
    upsert_watermark(session, repo_id, "issues", updated_at="2024-02-01T00:00:00Z", cursor="x")
    session.commit()
    row = get_watermark(session, repo_id, "issues")
    assert row.cursor == "x"
    assert row.updated_at.month == 2

    clear_watermark(session, repo_id, "issues")
    session.commit()
    assert get_watermark(session, repo_id, "issues") is None


def test_delete_repo_data_removes_everything(session, repo_id):
    other = get_or_create_repo(session, "octo", "other")
    for rid in (repo_id, other.id):
        insert_tree(session, rid, "t1")
        insert_blob(session, rid, sha="b1", content="x", encoding="utf-8", size=1)
        insert_tree_entry(
            session, rid, root_tree_sha="t1", path="x", entry_sha="b1", entry_type="blob"
        )
        insert_commit(session, rid, sha="c1", tree_sha="t1", message="m", parent_shas=[])
        replace_refs(session, rid, [RefRecord("main", "c1", False)])
        upsert_issue(session, rid, _issue(rid))
    session.commit()

    delete_repo_data(session, repo_id)
    session.commit()

    assert session.get(Repo, repo_id) is None
    for model in (Blob, Commit, Ref, Issue):
        remaining = session.scalars(select(model.repo_id)).all()
        assert set(remaining) == {other.id}
