from __future__ import annotations

from typing import Iterable, Protocol, TypeVar


class SizedFile(Protocol):
    size: int | None


T = TypeVar("T", bound=SizedFile)


def batch_tree_files(
    files: Iterable[T], *, max_bytes: int, max_files: int
) -> list[list[T]]:
    """Group tree files into fetch batches bounded by total size and count.

    A file whose size alone exceeds ``max_bytes`` is placed in a batch by
    itself. Files without a size count as zero bytes.
    """
    batches: list[list[T]] = []
    current: list[T] = []
    current_bytes = 0
    for item in files:
        size = item.size or 0
        if size > max_bytes:
            if current:
                batches.append(current)
                current, current_bytes = [], 0
            batches.append([item])
            continue
        if current and (
            current_bytes + size > max_bytes or len(current) >= max_files
        ):
            batches.append(current)
            current, current_bytes = [], 0
        current.append(item)
        current_bytes += size
    if current:
        batches.append(current)
    return batches
