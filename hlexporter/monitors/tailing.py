"""Following the newest file of a directory as lines are appended to it."""

from __future__ import annotations

import os
import queue
import threading
from collections.abc import Callable
from typing import BinaryIO

from hlexporter import logger
from hlexporter.files import latest_file

ERROR_BACKOFF = 1.0


def _wrapped(message: str, cause: BaseException) -> RuntimeError:
    error = RuntimeError(f"{message}: {cause}")
    error.__cause__ = cause
    return error


class DirectoryTailer:
    """Reads complete lines from whichever file in a directory was modified last.

    The first file opened is read from its end, so only lines written after
    the tailer started are returned. Files switched to later are read from
    the beginning. An unterminated last line is held back until it is
    completed.
    """

    def __init__(self, directory: str | os.PathLike[str], label: str = "log") -> None:
        self.directory = os.fspath(directory)
        self.label = label
        self._path: str | None = None
        self._file: BinaryIO | None = None
        self._first_run = True

    @property
    def current_file(self) -> str | None:
        """The file being followed, if any."""
        return self._path

    def _switch(self, path: str) -> None:
        logger.info("Switching to new %s file: %s", self.label, path)
        handle = open(path, "rb")
        try:
            if self._first_run:
                handle.seek(0, os.SEEK_END)
                logger.info("First run: starting to stream from the end of file %s", path)
            else:
                logger.info("Not first run: reading entire file %s", path)
        except OSError:
            handle.close()
            raise
        self.close()
        self._file = handle
        self._path = path
        self._first_run = False

    def read_new_lines(self) -> list[str]:
        """Return the lines completed since the last call, without line endings.

        Raises OSError when the directory cannot be searched or the newest
        file cannot be opened or read.
        """
        latest = latest_file(self.directory)
        if latest is None:
            return []
        if latest != self._path:
            self._switch(latest)
        assert self._file is not None
        lines = []
        while True:
            start = self._file.tell()
            raw = self._file.readline()
            if not raw:
                break
            if not raw.endswith(b"\n"):
                self._file.seek(start)
                break
            lines.append(raw.decode("utf-8", errors="replace").rstrip("\r\n"))
        return lines

    def close(self) -> None:
        """Close the file being followed."""
        if self._file is not None:
            self._file.close()
            self._file = None

    def __enter__(self) -> DirectoryTailer:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


def follow_directory(
    directory: str | os.PathLike[str],
    handle_line: Callable[[str], None],
    errors: queue.Queue,
    stop: threading.Event,
    label: str = "log",
    poll_interval: float = 0.1,
) -> None:
    """Pass every new line in *directory* to *handle_line* until *stop* is set.

    File errors and ValueErrors raised by *handle_line* are put on *errors*.
    """
    with DirectoryTailer(directory, label) as tailer:
        while not stop.is_set():
            try:
                lines = tailer.read_new_lines()
            except OSError as exc:
                errors.put(_wrapped(f"error reading {label} files", exc))
                stop.wait(ERROR_BACKOFF)
                continue
            for line in lines:
                try:
                    handle_line(line)
                except ValueError as exc:
                    errors.put(_wrapped(f"error parsing {label} line", exc))
            stop.wait(poll_interval)