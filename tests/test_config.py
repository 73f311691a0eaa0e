import subprocess

import pytest
from pydantic import ValidationError

from gh_repo_mirror.config import SyncSettings, load_settings, resolve_token
from gh_repo_mirror.errors import MissingTokenError


def test_defaults():
    settings = load_settings({})
    assert settings == SyncSettings()
    assert settings.issues_page_size == 20
    assert settings.max_batch_bytes == 800 * 1024
    assert settings.max_batch_files == 10


def test_environment_overrides():
    settings = load_settings(
        {
            "GH_MIRROR_REQUESTS_PER_SECOND": "2",
            "GH_MIRROR_ISSUES_PAGE_SIZE": "50",
            "GH_MIRROR_API_BASE_URL": "https://ghe.example.com/api/v3",
            "UNRELATED": "1",
        }
    )
    assert settings.requests_per_second == 2
    assert settings.issues_page_size == 50
    assert settings.api_base_url == "https://ghe.example.com/api/v3"


def test_invalid_value_rejected():
    with pytest.raises(ValidationError):
        load_settings({"GH_MIRROR_ISSUES_PAGE_SIZE": "many"})


class GhResult:
    def __init__(self, stdout="", returncode=0):
        self.stdout = stdout
        self.returncode = returncode


def _gh_unavailable(*args, **kwargs):
    raise FileNotFoundError()


def test_token_is_not_echoed():
    settings = load_settings({"GH_MIRROR_TOKEN": "ghp_secret"})
    assert settings.token.get_secret_value() == "ghp_secret"
    assert "ghp_secret" not in repr(settings)


def test_configured_token_wins(monkeypatch):
    monkeypatch.setattr(subprocess, "run", lambda *args, **kwargs: GhResult("ghp_cli\n"))
    settings = load_settings({"GH_MIRROR_TOKEN": "mirror_token"})
    assert resolve_token(settings, {"GITHUB_TOKEN": "env_token"}) == "mirror_token"


def test_gh_cli_token_preferred_over_environment(monkeypatch):
    monkeypatch.setattr(subprocess, "run", lambda *args, **kwargs: GhResult("ghp_cli\n"))
    assert resolve_token(SyncSettings(), {"GITHUB_TOKEN": "env_token"}) == "ghp_cli"


def test_failed_gh_cli_falls_back_to_environment(monkeypatch):
    monkeypatch.setattr(
        subprocess, "run", lambda *args, **kwargs: GhResult("", returncode=1)
    )
    assert resolve_token(SyncSettings(), {"GITHUB_TOKEN": "env_token"}) == "env_token"


def test_hung_gh_cli_falls_back_to_environment(monkeypatch):
    def timeout(*args, **kwargs):
        raise subprocess.TimeoutExpired(cmd=args[0], timeout=kwargs["timeout"])

    monkeypatch.setattr(subprocess, "run", timeout)
    assert resolve_token(SyncSettings(), {"GITHUB_TOKEN": "env_token"}) == "env_token"


def test_missing_token_raises(monkeypatch):
    monkeypatch.setattr(subprocess, "run", _gh_unavailable)
    with pytest.raises(MissingTokenError):
        resolve_token(SyncSettings(), {})
