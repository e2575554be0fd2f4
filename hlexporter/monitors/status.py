"""Whether this node is a validator, from the node's hourly status logs."""

from __future__ import annotations

import json
import os
import queue
import threading
import time

from hlexporter import logger
from hlexporter.config import Config
from hlexporter.files import latest_file

STATUS_DIR = "data/node_logs/status/hourly"
STATUS_INTERVAL = 30.0
MONITOR_MAX_AGE = 12 * 3600.0
STARTUP_MAX_AGE = 24 * 3600.0


def read_last_line(path: str | os.PathLike[str]) -> str:
    """Return the last line of the file at *path* without its line ending."""
    last = ""
    with open(path, encoding="utf-8", errors="replace", newline="") as handle:
        for line in handle:
            last = line
    if last.endswith("\n"):
        last = last[:-1]
    if last.endswith("\r"):
        last = last[:-1]
    return last


def _status_data(line: str) -> dict:
    try:
        raw = json.loads(line)
    except ValueError as exc:
        raise ValueError(f"failed to parse status array: {exc}") from exc
    if raw is not None and not isinstance(raw, list):
        raise ValueError("failed to parse status array: not a JSON array")
    if raw is None or len(raw) != 2:
        raise ValueError("unexpected validator status data format")
    data = raw[1]
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError("failed to parse validator data: not a JSON object")
    return data


def parse_home_validator(line: str) -> str:
    """Return the home validator address from a status line, or ``""`` if none."""
    home = _status_data(line).get("home_validator")
    if home is None:
        return ""
    if not isinstance(home, str):
        raise ValueError("failed to parse validator data: home_validator is not a string")
    return home


def _check_status_fields(line: str) -> str:
    data = _status_data(line)
    home = parse_home_validator(line)
    round_ = data.get("round")
    if round_ is not None and (not isinstance(round_, int) or isinstance(round_, bool)):
        raise ValueError("failed to parse validator data: round is not an integer")
    stakes = data.get("current_stakes")
    if stakes is not None and (
        not isinstance(stakes, list)
        or any(entry is not None and not isinstance(entry, list) for entry in stakes)
    ):
        raise ValueError("failed to parse validator data: current_stakes is not a list of lists")
    return home


def _fresh_last_line(node_home: str, max_age: float) -> str | None:
    latest = latest_file(os.path.join(node_home, STATUS_DIR))
    if latest is None:
        raise FileNotFoundError("no status file found")
    if time.time() - os.stat(latest).st_mtime > max_age:
        return None
    return read_last_line(latest)


def _not_validator(metrics) -> None:
    metrics.set_is_validator(False)
    metrics.set_validator_address("")


def read_validator_status(node_home: str, metrics) -> None:
    """Update the validator flag and address from the newest status file.

    The node counts as no validator when the file is missing, older than
    twelve hours, or cannot be parsed.
    """
    try:
        line = _fresh_last_line(node_home, MONITOR_MAX_AGE)
    except OSError as exc:
        logger.warning("Error reading status file: %s", exc)
        _not_validator(metrics)
        return
    if line is None:
        _not_validator(metrics)
        return
    try:
        home = _check_status_fields(line)
    except ValueError as exc:
        logger.warning("Error processing validator status line: %s", exc)
        _not_validator(metrics)
        return
    if home:
        metrics.set_validator_address(home)
        metrics.set_is_validator(True)
        logger.info("Found validator address: %s", home)
    else:
        _not_validator(metrics)
        logger.info("No validator address found")


def get_validator_status(node_home: str) -> tuple[str, bool]:
    """Return the validator address and whether the node is one, at start-up."""
    try:
        line = _fresh_last_line(node_home, STARTUP_MAX_AGE)
    except OSError as exc:
        logger.warning("Error finding latest status file: %s", exc)
        return "", False
    if line is None:
        return "", False
    try:
        home = parse_home_validator(line)
    except ValueError as exc:
        logger.warning("%s", exc)
        return "", False
    return home, home != ""


def _run(node_home: str, metrics, errors: queue.Queue, stop: threading.Event) -> None:
    while not stop.wait(STATUS_INTERVAL):
        try:
            read_validator_status(node_home, metrics)
        except (OSError, ValueError) as exc:
            logger.error("Validator Status Monitor error: %s", exc)
            errors.put(exc)


def start_validator_status_monitor(
    cfg: Config, metrics, errors: queue.Queue, stop: threading.Event
) -> threading.Thread:
    """Refresh the validator status every thirty seconds in a background thread."""
    thread = threading.Thread(
        target=_run,
        args=(cfg.node_home, metrics, errors, stop),
        name="validator-status-monitor",
        daemon=True,
    )
    thread.start()
    return thread