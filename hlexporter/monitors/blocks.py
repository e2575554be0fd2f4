"""Block height, block time and apply duration from the node's block time logs."""

from __future__ import annotations

import json
import os
import queue
import re
import threading
from datetime import datetime, timedelta, timezone

from hlexporter import logger
from hlexporter.config import Config
from hlexporter.monitors.tailing import follow_directory

BLOCK_TIMES_DIR = "data/block_times"

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_BLOCK_TIME = re.compile(
    r"(\d{4})-(\d{2})-(\d{2})T(\d{2}):(\d{2}):(\d{2})(?:\.(\d{1,9}))?"
)
_NS_PER_SECOND = 1_000_000_000
_NS_PER_MS = 1_000_000


def _block_time_ns(value: str) -> int:
    match = _BLOCK_TIME.fullmatch(value)
    if match is None:
        raise ValueError(f"error parsing block time: cannot parse {value!r}")
    *fields, fraction = match.groups()
    try:
        moment = datetime(*map(int, fields), tzinfo=timezone.utc)
    except ValueError as exc:
        raise ValueError(f"error parsing block time: {exc}") from exc
    seconds = (moment - _EPOCH) // timedelta(seconds=1)
    return seconds * _NS_PER_SECOND + int((fraction or "").ljust(9, "0"))


def parse_block_time(value: str) -> datetime:
    """Parse a timezone-less block time as UTC, to microsecond precision."""
    return _EPOCH + timedelta(microseconds=_block_time_ns(value) // 1000)


def _is_number(value: object) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


class BlockTimeTracker:
    """Turns block time log lines into metric updates."""

    def __init__(self, metrics) -> None:
        self.metrics = metrics
        self._last_block_ns: int | None = None
        self._lock = threading.Lock()

    def parse_line(self, line: str) -> None:
        """Update the metrics from one log line; raises ValueError if it is malformed."""
        try:
            data = json.loads(line)
        except ValueError as exc:
            raise ValueError(f"error parsing block time line: {exc}") from exc
        if not isinstance(data, dict):
            raise ValueError("error parsing block time line: not a JSON object")

        height = data.get("height")
        if not _is_number(height):
            raise ValueError("height not found or not a number")
        block_time = data.get("block_time")
        if not isinstance(block_time, str):
            raise ValueError("block time not found or not a string")
        apply_duration = data.get("apply_duration")
        if not _is_number(apply_duration):
            raise ValueError("apply duration not found or not a number")

        apply_duration_ms = apply_duration * 1000
        block_ns = _block_time_ns(block_time)

        with self._lock:
            if self._last_block_ns is not None:
                diff = block_ns - self._last_block_ns
                diff_ms = abs(diff) // _NS_PER_MS * (1 if diff >= 0 else -1)
                if diff_ms > 0:
                    self.metrics.record_block_time(float(diff_ms))
                    logger.debug("Block time difference: %d milliseconds", diff_ms)
                else:
                    logger.warning("Invalid block time difference: %d milliseconds", diff_ms)
            self._last_block_ns = block_ns

        self.metrics.set_block_height(int(height))
        self.metrics.record_apply_duration(apply_duration_ms)
        self.metrics.set_latest_block_time(block_ns // _NS_PER_SECOND)

        moment = _EPOCH + timedelta(seconds=block_ns // _NS_PER_SECOND)
        logger.debug(
            "Updated metrics: height=%.0f, apply_duration=%.6f, block_time=%s UTC",
            height,
            apply_duration,
            moment.strftime("%Y-%m-%dT%H:%M:%SZ"),
        )


def start_block_monitor(
    cfg: Config, metrics, errors: queue.Queue, stop: threading.Event
) -> threading.Thread:
    """Follow the block time logs in a background thread until *stop* is set."""
    tracker = BlockTimeTracker(metrics)
    thread = threading.Thread(
        target=follow_directory,
        args=(
            os.path.join(cfg.node_home, BLOCK_TIMES_DIR),
            tracker.parse_line,
            errors,
            stop,
            "block time",
            0.1,
        ),
        name="block-monitor",
        daemon=True,
    )
    thread.start()
    return thread