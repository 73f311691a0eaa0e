from dataclasses import dataclass

from gh_repo_mirror.utils.batching import batch_tree_files

MAX_BYTES = 800 * 1024
MAX_FILES = 10


@dataclass
class File:
    path: str
    size: int | None


def _batch(files):
    return batch_tree_files(files, max_bytes=MAX_BYTES, max_files=MAX_FILES)


def test_hundred_kb_files_group_by_size():
    files = [File(f"f{i}", 100 * 1024) for i in range(25)]
    batches = _batch(files)
    assert [len(b) for b in batches] == [8, 8, 8, 1]
    assert [f for b in batches for f in b] == files


def test_file_count_limit():
    files = [File(f"f{i}", 10) for i in range(25)]
    batches = _batch(files)
    assert all(len(b) <= MAX_FILES for b in batches)
    assert [len(b) for b in batches] == [10, 10, 5]


def test_oversized_file_is_isolated():
    big = File("big", MAX_BYTES + 1)
    batches = _batch([File("a", 10), big, File("b", 10)])
    assert batches == [[File("a", 10)], [big], [File("b", 10)]]


def test_large_small_large():
    files = [File("l1", MAX_BYTES - 10), File("s", 20), File("l2", MAX_BYTES - 10)]
    batches = _batch(files)
    assert batches == [[files[0]], [files[1]], [files[2]]]


def test_unknown_size_counts_as_zero():
    files = [File(f"f{i}", None) for i in range(5)]
    assert _batch(files) == [files]


def test_empty_input():
    assert _batch([]) == []
