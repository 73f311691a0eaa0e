from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable

DEFAULT_PATH = "README.md"
COMMIT_SHA_RE = re.compile(r"^[0-9a-f]{40}$", re.IGNORECASE)


@dataclass(frozen=True)
class RefAndPath:
    ref: str
    path: str


def resolve_ref_and_path(
    refs: Iterable[str], head: str, ref_and_path: str
) -> RefAndPath | None:
    """Split a ``<ref>/<path>`` URL segment into a stored ref and a file path.

    Ref names may contain slashes, so the longest leading run of segments that
    names a stored ref wins. A full 40 character commit sha is accepted as a
    ref even when no stored ref has that name. An empty segment resolves to
    the head ref's README.
    """
    if not ref_and_path:
        return RefAndPath(ref=head, path=DEFAULT_PATH)

    ref_names = set(refs)
    parts = ref_and_path.split("/")

    best: str | None = None
    best_len = 0
    candidate = ""
    for index, part in enumerate(parts):
        candidate = part if index == 0 else f"{candidate}/{part}"
        if candidate in ref_names:
            best = candidate
            best_len = index + 1

    if best is not None:
        path = "/".join(parts[best_len:])
        return RefAndPath(ref=best, path=path or DEFAULT_PATH)

    first = parts[0]
    if COMMIT_SHA_RE.match(first):
        path = "/".join(parts[1:])
        return RefAndPath(ref=first, path=path or DEFAULT_PATH)

    return None
