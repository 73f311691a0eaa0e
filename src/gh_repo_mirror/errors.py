from __future__ import annotations

import copy


class SyncError(Exception):
    """Base class for expected sync failures.

    Errors accumulate context as they travel up through the phases, so the
    message persisted on the download status reads outermost-first, e.g.
    ``failed to backfill commits: failed to get tree for commit abc: ...``.
    """

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def wrap(self, context: str) -> "SyncError":
        wrapped = copy.copy(self)
        wrapped.message = f"{context}: {self.message}"
        wrapped.args = (wrapped.message,)
        wrapped.__cause__ = self
        return wrapped

    def __str__(self) -> str:
        return self.message


class RetryableGitHubError(SyncError):
    pass


class RateLimitError(RetryableGitHubError):
    def __init__(self, message: str, retry_after: float | None = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class GitHubAPIError(SyncError):
    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class StructuralError(SyncError):
    pass


class TruncatedTreeError(StructuralError):
    def __init__(self, message: str = "tree too big to process: truncated") -> None:
        super().__init__(message)


class MissingTreeError(StructuralError):
    pass


class MalformedResponseError(StructuralError):
    pass


class MissingTokenError(SyncError):
    pass


class SyncCancelled(Exception):
    """Raised when the cancellation flag is observed; not a failure."""

    def __init__(self, repo_id: int | None = None) -> None:
        super().__init__(f"download cancelled for repo {repo_id}")
        self.repo_id = repo_id


def as_sync_error(exc: Exception, context: str) -> SyncError:
    if isinstance(exc, SyncError):
        return exc.wrap(context)
    return SyncError(f"{context}: {exc}")
