import pytest
from stubs import StubIssueClient, StubRefClient, b64, commit_payload, issue_node

from gh_repo_mirror.errors import GitHubAPIError
from gh_repo_mirror.ingest.backfill import (
    BACKFILL_RESOURCE,
    STAGE_ISSUES,
    STAGE_OBJECTS,
    load_continuation,
    run_backfill,
    run_backfill_step,
)
from gh_repo_mirror.ingest.status import CANCELLED, ERROR, SUCCESS, DownloadStatusTracker
from gh_repo_mirror.storage.issues import get_issue
from gh_repo_mirror.storage.objects import commit_exists
from gh_repo_mirror.storage.schema import Repo
from gh_repo_mirror.storage.watermarks import get_watermark


async def _no_sleep(seconds):
    return None


def _ref_client():
    tree = {
        "sha": "t1",
        "truncated": False,
        "tree": [{"path": "README.md", "mode": "100644", "type": "blob", "sha": "b1", "size": 6}],
    }
    return StubRefClient(
        commit_pages=[
            [commit_payload("c2", "t1", parents=["c1"])],
            [commit_payload("c1", "t1")],
        ],
        trees={"t1": tree},
        blobs={"b1": (b64("hello\n"), "base64")},
        heads={"main": "c2"},
    )


def _issue_client():
    return StubIssueClient(
        [
            [issue_node(1), issue_node(2, state="CLOSED")],
            [issue_node(3)],
        ]
    )


async def _step(session, repo_id, settings, ref_client, issue_client):
    return await run_backfill_step(
        session, ref_client, issue_client, repo_id, settings=settings, sleep=_no_sleep
    )


@pytest.mark.asyncio
async def test_backfill_runs_in_bounded_steps(session, repo_id, settings):
    ref_client, issue_client = _ref_client(), _issue_client()
    tracker = DownloadStatusTracker(session, repo_id)

    first = await _step(session, repo_id, settings, ref_client, issue_client)
    assert first.ok and not first.value.done
    stored = load_continuation(session, repo_id)
    assert stored.stage == STAGE_OBJECTS
    assert stored.cursor == "2"
    assert commit_exists(session, repo_id, "c2")
    assert not commit_exists(session, repo_id, "c1")
    assert tracker.status == "backfilling"

    second = await _step(session, repo_id, settings, ref_client, issue_client)
    assert second.ok
    assert load_continuation(session, repo_id).stage == STAGE_ISSUES
    assert commit_exists(session, repo_id, "c1")

    third = await _step(session, repo_id, settings, ref_client, issue_client)
    assert third.ok and not third.value.done
    assert get_issue(session, repo_id, 3) is None

    fourth = await _step(session, repo_id, settings, ref_client, issue_client)
    assert fourth.ok and fourth.value.done
    assert get_issue(session, repo_id, 3) is not None

    assert tracker.status == SUCCESS
    assert tracker.message == "backfill complete"
    assert tracker.last_synced_at == stored.started_at
    assert get_watermark(session, repo_id, BACKFILL_RESOURCE) is None
    repo = session.get(Repo, repo_id)
    session.refresh(repo)
    assert (repo.open_issues, repo.closed_issues) == (2, 1)
    assert repo.head_ref_id is not None


@pytest.mark.asyncio
async def test_run_backfill_drives_to_completion(session, repo_id, settings):
    ref_client = _ref_client()

    result = await run_backfill(
        session, ref_client, _issue_client(), repo_id, settings=settings, sleep=_no_sleep
    )

    assert result.ok
    assert result.value.done
    assert DownloadStatusTracker(session, repo_id).status == SUCCESS
    # the blob shared by both commits is fetched once across steps
    assert ref_client.count("blob") == 1


@pytest.mark.asyncio
async def test_cancel_between_steps_stops_and_resumes_after_request(session, repo_id, settings):
    ref_client, issue_client = _ref_client(), _issue_client()
    tracker = DownloadStatusTracker(session, repo_id)

    await _step(session, repo_id, settings, ref_client, issue_client)
    tracker.cancel()

    stopped = await _step(session, repo_id, settings, ref_client, issue_client)
    assert stopped.cancelled
    assert tracker.status == CANCELLED
    assert load_continuation(session, repo_id).cursor == "2"

    tracker.request("resume")
    resumed = await run_backfill(
        session, ref_client, issue_client, repo_id, settings=settings, sleep=_no_sleep
    )
    assert resumed.ok
    assert tracker.status == SUCCESS


@pytest.mark.asyncio
async def test_phase_error_marks_download_failed(session, repo_id, settings):
    ref_client = _ref_client()
    ref_client.fail_tags = GitHubAPIError("GitHub API error 500", status_code=500)
    tracker = DownloadStatusTracker(session, repo_id)

    result = await run_backfill(
        session, ref_client, _issue_client(), repo_id, settings=settings, sleep=_no_sleep
    )

    assert not result.ok
    assert tracker.status == ERROR
    assert tracker.message == "failed to sync refs: GitHub API error 500"
    assert tracker.last_synced_at is None


@pytest.mark.asyncio
async def test_step_refused_after_error_until_requested(session, repo_id, settings):
    ref_client = _ref_client()
    ref_client.fail_tags = GitHubAPIError("GitHub API error 500", status_code=500)
    await _step(session, repo_id, settings, ref_client, _issue_client())

    ref_client.fail_tags = None
    refused = await _step(session, repo_id, settings, ref_client, _issue_client())
    assert not refused.ok
    assert not refused.cancelled
    assert "request a new run first" in refused.message
