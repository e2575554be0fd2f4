"""File-system helpers."""

from __future__ import annotations

import os
import stat
from collections.abc import Iterator


def _walk(path: str) -> Iterator[tuple[str, os.stat_result]]:
    """Yield every path under *path* in lexical order, without following links."""
    info = os.lstat(path)
    yield path, info
    if stat.S_ISDIR(info.st_mode):
        for name in sorted(os.listdir(path)):
            yield from _walk(os.path.join(path, name))


def latest_file(directory: str | os.PathLike[str]) -> str | None:
    """Return the most recently modified file below *directory*.

    Subdirectories are searched too. On equal times the first path in
    lexical order wins. Returns None when no file is found; raises OSError
    when the directory or one of its subdirectories cannot be read.
    """
    latest: str | None = None
    latest_mtime: int | None = None
    for path, info in _walk(os.fspath(directory)):
        if stat.S_ISDIR(info.st_mode):
            continue
        if latest_mtime is None or info.st_mtime_ns > latest_mtime:
            latest, latest_mtime = path, info.st_mtime_ns
    return latest