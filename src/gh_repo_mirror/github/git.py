from __future__ import annotations

from pydantic import TypeAdapter, ValidationError

from ..errors import GitHubAPIError, MalformedResponseError, MissingTreeError
from ..utils.time import format_since
from .client import GitHubClient, extract_page, next_page
from .models import (
    BlobPayload,
    CommitSummary,
    GitRefItem,
    Page,
    RepoMetadata,
    TreeListing,
)

_REF_LIST = TypeAdapter(list[GitRefItem])
_COMMIT_LIST = TypeAdapter(list[CommitSummary])


class RefClient:
    """REST access to one repository's refs, commits, trees and blobs."""

    def __init__(self, client: GitHubClient, owner: str, name: str) -> None:
        self.client = client
        self.owner = owner
        self.name = name

    @property
    def _base(self) -> str:
        return f"/repos/{self.owner}/{self.name}"

    async def get_repo(self) -> RepoMetadata:
        data = await self.client.get_json(self._base)
        return _parse(RepoMetadata, data, "repo metadata")

    async def list_refs(self, namespace: str) -> list[GitRefItem]:
        if namespace not in {"heads", "tags"}:
            raise ValueError(f"unsupported ref namespace: {namespace}")
        items = [
            item
            async for item in self.client.paginate(
                f"{self._base}/git/matching-refs/{namespace}",
                params={"per_page": 100},
            )
        ]
        try:
            return _REF_LIST.validate_python(items)
        except ValidationError as exc:
            raise MalformedResponseError(f"invalid {namespace} ref listing: {exc}") from exc

    async def list_commits_page(
        self,
        *,
        since=None,
        page: str | int | None = None,
        per_page: int = 100,
    ) -> Page[CommitSummary]:
        params: dict = {"per_page": per_page, "page": int(page or 1)}
        if since is not None:
            params["since"] = format_since(since)
        try:
            response = await self.client.request(
                "GET", f"{self._base}/commits", params=params
            )
        except GitHubAPIError as exc:
            # empty repositories answer 409 on the commit listing
            if exc.status_code == 409:
                return Page[CommitSummary](items=[], has_next_page=False)
            raise
        try:
            items = _COMMIT_LIST.validate_python(response.data or [])
        except ValidationError as exc:
            raise MalformedResponseError(f"invalid commit listing: {exc}") from exc
        _, next_params = next_page(response.headers)
        next_number = extract_page(next_params)
        return Page[CommitSummary](
            items=items,
            has_next_page=next_number is not None,
            cursor=str(next_number) if next_number is not None else None,
        )

    async def get_tree(self, sha: str, recursive: bool = True) -> TreeListing:
        params = {"recursive": "1"} if recursive else None
        try:
            data = await self.client.get_json(f"{self._base}/git/trees/{sha}", params=params)
        except GitHubAPIError as exc:
            if exc.status_code in {404, 422}:
                raise MissingTreeError(f"tree {sha} not found") from exc
            raise
        if data is None:
            raise MissingTreeError(f"tree {sha} not found")
        return _parse(TreeListing, data, f"tree {sha}")

    async def get_blob(self, sha: str) -> BlobPayload:
        data = await self.client.get_json(f"{self._base}/git/blobs/{sha}")
        return _parse(BlobPayload, data, f"blob {sha}")


def _parse(model, data, what: str):
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        raise MalformedResponseError(f"invalid {what} response: {exc}") from exc
