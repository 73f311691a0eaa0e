import pytest

from gh_repo_mirror.config import SyncSettings
from gh_repo_mirror.storage.db import get_engine, get_session, init_db
from gh_repo_mirror.storage.objects import get_or_create_repo


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "mirror.sqlite"


@pytest.fixture
def session(db_path):
    engine = get_engine(db_path)
    init_db(engine)
    session = get_session(engine)
    yield session
    session.close()


@pytest.fixture
def repo_id(session):
    repo = get_or_create_repo(session, "octo", "repo")
    session.commit()
    return repo.id


@pytest.fixture
def settings():
    return SyncSettings(
        retry_attempts=2,
        retry_wait_min=0,
        retry_wait_max=0,
        page_delay_seconds=0,
        backfill_pages_per_step=1,
    )
