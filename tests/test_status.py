import json
import os
import queue
import threading
import time

import pytest

from hlexporter.config import Config
from hlexporter.metrics.state import MetricsState
from hlexporter.monitors.status import (
    get_validator_status,
    parse_home_validator,
    read_last_line,
    read_validator_status,
    start_validator_status_monitor,
)

ADDRESS = "0xabc"


def status_line(home=ADDRESS, **extra):
    data = {"home_validator": home, "round": 5, "current_stakes": [[home, 10]], **extra}
    return json.dumps(["2024-01-01T00:00:00", data])


def write_status(node_home, *lines, age=0.0):
    directory = node_home / "data" / "node_logs" / "status" / "hourly"
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / "20240101"
    path.write_text("\n".join(lines) + "\n")
    if age:
        stamp = time.time() - age
        os.utime(path, (stamp, stamp))
    return path


def validator_state():
    state = MetricsState()
    state.set_is_validator(True)
    state.set_validator_address(ADDRESS)
    return state


def test_read_last_line(tmp_path):
    path = tmp_path / "log"
    path.write_bytes(b"first\r\nsecond\r\n")
    assert read_last_line(path) == "second"


def test_read_last_line_without_trailing_newline(tmp_path):
    path = tmp_path / "log"
    path.write_text("first\nlast")
    assert read_last_line(path) == "last"


def test_read_last_line_empty_file(tmp_path):
    path = tmp_path / "log"
    path.write_text("")
    assert read_last_line(path) == ""


def test_parse_home_validator():
    assert parse_home_validator(status_line()) == ADDRESS
    assert parse_home_validator('[0, null]') == ""
    assert parse_home_validator(status_line(home="")) == ""


@pytest.mark.parametrize("line", ["not json", "[1]", "[1, 2, 3]", '[0, "text"]', '{"a": 1}'])
def test_parse_home_validator_rejects(line):
    with pytest.raises(ValueError):
        parse_home_validator(line)


def test_read_validator_status_sets_address(tmp_path):
    write_status(tmp_path, status_line(home=""), status_line())
    state = MetricsState()
    read_validator_status(str(tmp_path), state)
    assert state.is_validator() is True
    assert state.identity.validator_address == ADDRESS


def test_read_validator_status_without_home_validator(tmp_path):
    write_status(tmp_path, status_line(home=""))
    state = validator_state()
    read_validator_status(str(tmp_path), state)
    assert state.is_validator() is False
    assert state.identity.validator_address == ""


def test_read_validator_status_stale_file(tmp_path):
    write_status(tmp_path, status_line(), age=13 * 3600)
    state = validator_state()
    read_validator_status(str(tmp_path), state)
    assert state.is_validator() is False


def test_read_validator_status_missing_directory(tmp_path):
    state = validator_state()
    read_validator_status(str(tmp_path), state)
    assert state.is_validator() is False
    assert state.identity.validator_address == ""


def test_read_validator_status_bad_round(tmp_path):
    write_status(tmp_path, status_line(round="x"))
    state = validator_state()
    read_validator_status(str(tmp_path), state)
    assert state.is_validator() is False


def test_get_validator_status(tmp_path):
    write_status(tmp_path, status_line())
    assert get_validator_status(str(tmp_path)) == (ADDRESS, True)


def test_get_validator_status_accepts_thirteen_hour_old_file(tmp_path):
    write_status(tmp_path, status_line(), age=13 * 3600)
    assert get_validator_status(str(tmp_path)) == (ADDRESS, True)


def test_get_validator_status_too_old_or_missing(tmp_path):
    assert get_validator_status(str(tmp_path)) == ("", False)
    write_status(tmp_path, status_line(), age=25 * 3600)
    assert get_validator_status(str(tmp_path)) == ("", False)


def test_monitor_ends_when_stopped(tmp_path):
    stop = threading.Event()
    stop.set()
    errors = queue.Queue()
    thread = start_validator_status_monitor(
        Config(node_home=str(tmp_path)), MetricsState(), errors, stop
    )
    thread.join(timeout=2)
    assert not thread.is_alive()
    assert errors.empty()