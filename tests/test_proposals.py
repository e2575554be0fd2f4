import json
import queue
import threading
import time
from unittest.mock import Mock, call

import pytest

from hlexporter.config import Config
from hlexporter.monitors.proposals import ProposalTracker, start_proposal_monitor

PROPOSER = "0x0000000000000000000000000000000000000001"
OTHER = "0x0000000000000000000000000000000000000002"


def _line(proposer):
    return json.dumps({"abci_block": {"proposer": proposer, "time": "2024-01-02T03:04:05"}})


def test_counts_each_proposer():
    metrics = Mock()
    tracker = ProposalTracker(metrics)
    tracker.parse_line(_line(PROPOSER))
    tracker.parse_line(_line(PROPOSER))
    tracker.parse_line(_line(OTHER))
    assert tracker.counts() == {PROPOSER: 2, OTHER: 1}
    assert metrics.increment_proposer_counter.call_args_list == [
        call(PROPOSER),
        call(PROPOSER),
        call(OTHER),
    ]


def test_counts_returns_a_copy():
    tracker = ProposalTracker(Mock())
    tracker.parse_line(_line(PROPOSER))
    snapshot = tracker.counts()
    snapshot[PROPOSER] = 99
    assert tracker.counts() == {PROPOSER: 1}


@pytest.mark.parametrize(
    "line, message",
    [
        (json.dumps({"other": {}}), "ABCI block not found"),
        (json.dumps({"abci_block": "x"}), "ABCI block not found"),
        ("[]", "ABCI block not found"),
        (json.dumps({"abci_block": {"proposer": 3}}), "proposer not found"),
        (json.dumps({"abci_block": {}}), "proposer not found"),
        ("{broken", "error parsing proposal line"),
    ],
)
def test_malformed_lines_raise(line, message):
    metrics = Mock()
    tracker = ProposalTracker(metrics)
    with pytest.raises(ValueError, match=message):
        tracker.parse_line(line)
    assert tracker.counts() == {}
    assert metrics.increment_proposer_counter.call_count == 0


def test_monitor_follows_replica_command_files(tmp_path):
    directory = tmp_path / "data" / "replica_cmds" / "2024"
    directory.mkdir(parents=True)
    log = directory / "1"
    log.write_text("")
    metrics = Mock()
    tracker = ProposalTracker(metrics)
    errors = queue.Queue()
    stop = threading.Event()
    thread = start_proposal_monitor(Config(node_home=str(tmp_path)), metrics, tracker, errors, stop)
    try:
        deadline = time.monotonic() + 5
        while not tracker.counts() and time.monotonic() < deadline:
            with open(log, "a", encoding="utf-8") as handle:
                handle.write(_line(PROPOSER) + "\n")
            time.sleep(0.05)
    finally:
        stop.set()
        thread.join(timeout=5)
    assert set(tracker.counts()) == {PROPOSER}
    assert tracker.counts()[PROPOSER] == metrics.increment_proposer_counter.call_count
    assert errors.empty()