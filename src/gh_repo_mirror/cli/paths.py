from __future__ import annotations

from pathlib import Path


def default_db_path(*, repo_full_name: str, data_dir: str | Path) -> Path:
    """Compute a stable per-repo SQLite database path.

    Layout:
      <data_dir>/github/<owner>/<repo>/mirror.sqlite
    """

    owner, repo = split_full_name(repo_full_name)
    base = Path(data_dir)
    return base / "github" / owner / repo / "mirror.sqlite"


def split_full_name(repo_full_name: str) -> tuple[str, str]:
    if repo_full_name.count("/") != 1:
        raise ValueError(f"expected owner/name, got {repo_full_name!r}")
    owner, repo = repo_full_name.split("/", 1)
    if not owner or not repo:
        raise ValueError(f"expected owner/name, got {repo_full_name!r}")
    return owner, repo
