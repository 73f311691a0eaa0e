from __future__ import annotations

import logging
import os
import subprocess
from typing import Mapping

from pydantic import BaseModel, Field, SecretStr

from .errors import MissingTokenError

logger = logging.getLogger("gh_repo_mirror.config")

ENV_PREFIX = "GH_MIRROR_"
FALLBACK_TOKEN_ENV = "GITHUB_TOKEN"
GH_CLI_TIMEOUT = 10


class SyncSettings(BaseModel):
    api_base_url: str = "https://api.github.com"
    graphql_url: str = "https://api.github.com/graphql"
    request_timeout: float = Field(default=30.0, gt=0)
    requests_per_second: float = Field(default=8, gt=0)
    token: SecretStr | None = None

    retry_attempts: int = Field(default=5, ge=1)
    retry_wait_min: float = Field(default=0.5, ge=0)
    retry_wait_max: float = Field(default=8.0, ge=0)
    # upper bound on a server-sent Retry-After
    retry_after_max: float = Field(default=120.0, ge=0)

    issues_page_size: int = Field(default=20, ge=1, le=100)
    sub_connection_page_size: int = Field(default=10, ge=1, le=100)
    commits_per_page: int = Field(default=100, ge=1, le=100)
    page_delay_seconds: float = Field(default=1.0, ge=0)

    backfill_pages_per_step: int = Field(default=10, ge=1)
    # an active run with no status write for this long is treated as dead
    stale_run_seconds: float = Field(default=3600.0, gt=0)

    max_batch_bytes: int = Field(default=800 * 1024, ge=1)
    max_batch_files: int = Field(default=10, ge=1)


def load_settings(environ: Mapping[str, str] | None = None) -> SyncSettings:
    """Build settings from defaults overlaid with ``GH_MIRROR_*`` variables."""
    env = os.environ if environ is None else environ
    overrides: dict[str, str] = {}
    for field_name in SyncSettings.model_fields:
        value = env.get(f"{ENV_PREFIX}{field_name.upper()}")
        if value is not None and value != "":
            overrides[field_name] = value
    return SyncSettings.model_validate(overrides)


def resolve_token(
    settings: SyncSettings, environ: Mapping[str, str] | None = None
) -> str:
    """Pick the API token: ``GH_MIRROR_TOKEN``, then ``gh auth token``, then ``GITHUB_TOKEN``."""
    if settings.token is not None and settings.token.get_secret_value():
        logger.debug("using token from %sTOKEN", ENV_PREFIX)
        return settings.token.get_secret_value()

    token = _gh_cli_token()
    if token:
        logger.debug("using token from gh auth token")
        return token

    env = os.environ if environ is None else environ
    token = env.get(FALLBACK_TOKEN_ENV)
    if token:
        logger.debug("using token from %s", FALLBACK_TOKEN_ENV)
        return token

    raise MissingTokenError(
        f"no GitHub token found: set {ENV_PREFIX}TOKEN or {FALLBACK_TOKEN_ENV}, "
        "or run `gh auth login`"
    )


def _gh_cli_token() -> str | None:
    try:
        result = subprocess.run(
            ["gh", "auth", "token"],
            check=False,
            capture_output=True,
            text=True,
            timeout=GH_CLI_TIMEOUT,
        )
    except FileNotFoundError:
        return None
    except subprocess.TimeoutExpired:
        logger.warning("gh auth token timed out after %ss", GH_CLI_TIMEOUT)
        return None
    token = (result.stdout or "").strip()
    if result.returncode != 0 or not token:
        return None
    return token
