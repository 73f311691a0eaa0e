import pytest
from sqlalchemy import select
from stubs import StubRefClient, b64, cancel_from_another_connection, commit_payload

from gh_repo_mirror.ingest.objects import ingest_objects
from gh_repo_mirror.ingest.status import DownloadStatusTracker
from gh_repo_mirror.storage.objects import blob_bytes, list_tree_entries, read_blob
from gh_repo_mirror.storage.schema import Blob, Commit, Tree


def _tree(sha, entries, truncated=False):
    return {"sha": sha, "truncated": truncated, "tree": entries}


def _blob(path, sha, size=10):
    return {"path": path, "mode": "100644", "type": "blob", "sha": sha, "size": size}


def _subtree(path, sha):
    return {"path": path, "mode": "040000", "type": "tree", "sha": sha}


def _repo_client(**overrides):
    trees = {
        "t1": _tree("t1", [_blob("README.md", "b1"), _subtree("src", "t2"), _blob("src/a.py", "b2")]),
        "t3": _tree(
            "t3",
            [
                _blob("README.md", "b1"),
                _subtree("src", "t2"),
                _blob("src/a.py", "b2"),
                _blob("new.txt", "b3"),
                {"path": "vendor/lib", "mode": "160000", "type": "commit", "sha": "s1"},
            ],
        ),
    }
    blobs = {
        "b1": (b64("# readme\n"), "base64"),
        "b2": (b64("print('hi')\n"), "base64"),
        "b3": (b64("new\n"), "base64"),
    }
    options = {
        "commit_pages": [
            [commit_payload("c2", "t3", parents=["c1"])],
            [commit_payload("c1", "t1")],
        ],
        "trees": trees,
        "blobs": blobs,
    }
    options.update(overrides)
    return StubRefClient(**options)


def _commit_shas(session, repo_id):
    return set(session.scalars(select(Commit.sha).where(Commit.repo_id == repo_id)))


@pytest.mark.asyncio
async def test_ingest_writes_commits_trees_and_blobs(session, repo_id, settings):
    client = _repo_client()
    tracker = DownloadStatusTracker(session, repo_id)

    result = await ingest_objects(session, client, repo_id, tracker=tracker, settings=settings)

    assert result.ok
    assert result.value.commits_written == 2
    assert result.value.done is True
    assert _commit_shas(session, repo_id) == {"c1", "c2"}
    trees = set(session.scalars(select(Tree.sha).where(Tree.repo_id == repo_id)))
    assert trees == {"t1", "t2", "t3"}
    paths = [entry.path for entry in list_tree_entries(session, repo_id, "t3")]
    assert paths == ["README.md", "new.txt", "src", "src/a.py"]
    assert read_blob(session, repo_id, "b1").content == "# readme\n"
    assert read_blob(session, repo_id, "b1").encoding == "utf-8"


@pytest.mark.asyncio
async def test_shared_blobs_are_fetched_once(session, repo_id, settings):
    client = _repo_client()
    tracker = DownloadStatusTracker(session, repo_id)

    await ingest_objects(session, client, repo_id, tracker=tracker, settings=settings)

    assert client.count("blob") == 3
    assert client.count("tree") == 2


@pytest.mark.asyncio
async def test_second_run_skips_stored_commits(session, repo_id, settings):
    tracker = DownloadStatusTracker(session, repo_id)
    await ingest_objects(session, _repo_client(), repo_id, tracker=tracker, settings=settings)

    again = _repo_client()
    result = await ingest_objects(session, again, repo_id, tracker=tracker, settings=settings)

    assert result.ok
    assert result.value.commits_written == 0
    assert result.value.commits_skipped == 2
    assert again.count("tree") == 0
    assert again.count("blob") == 0
    blobs = session.scalars(select(Blob.sha).where(Blob.repo_id == repo_id)).all()
    assert sorted(blobs) == ["b1", "b2", "b3"]


@pytest.mark.asyncio
async def test_truncated_tree_fails_with_wrapped_message(session, repo_id, settings):
    client = _repo_client(
        commit_pages=[[commit_payload("c1", "t1")]],
        trees={"t1": _tree("t1", [_blob("a", "b1")], truncated=True)},
    )
    tracker = DownloadStatusTracker(session, repo_id)

    result = await ingest_objects(
        session, client, repo_id, tracker=tracker, settings=settings, is_backfill=True
    )

    assert not result.ok
    assert not result.cancelled
    assert result.message == (
        "failed to backfill commits: failed to get tree for commit c1: "
        "tree too big to process: truncated"
    )
    assert _commit_shas(session, repo_id) == set()


@pytest.mark.asyncio
async def test_cancel_between_commits_keeps_finished_work(session, repo_id, settings):
    class CancellingClient(StubRefClient):
        async def get_tree(self, sha, recursive=True):
            if sha == "t3":
                DownloadStatusTracker(session, repo_id).cancel()
            return await super().get_tree(sha, recursive)

    base = _repo_client()
    client = CancellingClient(
        commit_pages=[[commit_payload("c1", "t1")], [commit_payload("c2", "t3", parents=["c1"])]],
        trees=base.trees,
        blobs=base.blobs,
    )
    tracker = DownloadStatusTracker(session, repo_id)

    result = await ingest_objects(session, client, repo_id, tracker=tracker, settings=settings)

    assert result.cancelled
    assert _commit_shas(session, repo_id) == {"c1"}
    assert read_blob(session, repo_id, "b3") is None


@pytest.mark.asyncio
async def test_cancelled_before_start_writes_nothing(session, repo_id, settings):
    tracker = DownloadStatusTracker(session, repo_id)
    tracker.cancel()
    client = _repo_client()

    result = await ingest_objects(session, client, repo_id, tracker=tracker, settings=settings)

    assert result.cancelled
    assert client.calls == []
    assert _commit_shas(session, repo_id) == set()


@pytest.mark.asyncio
async def test_binary_blob_stored_as_base64(session, repo_id, settings):
    raw = bytes([0x89, 0x50, 0x4E, 0x47, 0x00, 0xFF])
    client = _repo_client(
        commit_pages=[[commit_payload("c1", "t1")]],
        trees={"t1": _tree("t1", [_blob("logo.png", "png")])},
        blobs={"png": (b64(raw), "base64")},
    )
    tracker = DownloadStatusTracker(session, repo_id)

    await ingest_objects(session, client, repo_id, tracker=tracker, settings=settings)

    assert read_blob(session, repo_id, "png").encoding == "base64"
    assert blob_bytes(session, repo_id, "png") == raw


@pytest.mark.asyncio
async def test_page_budget_returns_cursor(session, repo_id, settings):
    client = _repo_client()
    tracker = DownloadStatusTracker(session, repo_id)

    first = await ingest_objects(
        session, client, repo_id, tracker=tracker, settings=settings, max_pages=1
    )
    assert first.ok
    assert first.value.done is False
    assert first.value.cursor == "2"
    assert _commit_shas(session, repo_id) == {"c2"}

    second = await ingest_objects(
        session,
        client,
        repo_id,
        tracker=tracker,
        settings=settings,
        cursor=first.value.cursor,
    )
    assert second.value.done is True
    assert _commit_shas(session, repo_id) == {"c1", "c2"}


@pytest.mark.asyncio
async def test_cancel_from_another_connection_while_blobs_are_fetched(
    db_path, session, repo_id, settings
):
    class CancellingClient(StubRefClient):
        async def get_blob(self, sha):
            if sha == "b2":
                cancel_from_another_connection(db_path, repo_id)
            return await super().get_blob(sha)

    base = _repo_client()
    client = CancellingClient(
        commit_pages=[[commit_payload("c2", "t3")]],
        trees=base.trees,
        blobs=base.blobs,
    )
    tracker = DownloadStatusTracker(session, repo_id)
    one_blob_per_batch = settings.model_copy(update={"max_batch_files": 1})

    result = await ingest_objects(
        session,
        client,
        repo_id,
        tracker=tracker,
        settings=one_blob_per_batch,
        is_backfill=True,
    )

    assert result.cancelled
    assert client.count("blob") == 2
    assert tracker.is_cancelled()
    assert _commit_shas(session, repo_id) == set()
    assert session.scalars(select(Blob.sha).where(Blob.repo_id == repo_id)).all() == []


@pytest.mark.asyncio
async def test_commit_rows_are_written_after_all_blobs_arrive(session, repo_id, settings):
    class CheckingClient(StubRefClient):
        async def get_blob(self, sha):
            # nothing for this commit may be pending or stored yet
            assert not session.new
            assert read_blob(session, repo_id, sha) is None
            return await super().get_blob(sha)

    base = _repo_client()
    client = CheckingClient(
        commit_pages=[[commit_payload("c1", "t1")]], trees=base.trees, blobs=base.blobs
    )
    tracker = DownloadStatusTracker(session, repo_id)

    result = await ingest_objects(session, client, repo_id, tracker=tracker, settings=settings)

    assert result.ok
    assert _commit_shas(session, repo_id) == {"c1"}
