import json
import queue
import threading
import time
from unittest.mock import Mock, call

import pytest

from hlexporter.config import Config
from hlexporter.monitors import evm
from hlexporter.monitors.evm import (
    parse_evm_block_height_line,
    process_evm_block_height_line,
    process_evm_transaction_line,
    start_evm_block_height_monitor,
    start_evm_transactions_monitor,
)


def test_parse_block_number_from_second_element():
    assert parse_evm_block_height_line('[{"hash": "0x0"}, 12345]') == 12345


def test_parse_block_number_given_as_float():
    assert parse_evm_block_height_line("[0, 12345.0, 7]") == 12345


@pytest.mark.parametrize(
    "line, message",
    [
        ("[1]", "expected at least 2 elements, got 1"),
        ("null", "expected at least 2 elements, got 0"),
        ('[1, "12"]', "expected number, got str"),
        ("[1, true]", "expected number, got bool"),
        ('{"a": 1}', "error unmarshaling EVM block height data"),
        ("oops", "error unmarshaling EVM block height data"),
    ],
)
def test_parse_rejects_malformed_lines(line, message):
    with pytest.raises(ValueError, match=message):
        parse_evm_block_height_line(line)


def test_process_block_height_sets_gauge():
    metrics = Mock()
    process_evm_block_height_line("[{}, 12345]", metrics)
    assert metrics.set_evm_block_height.call_args_list == [call(12345)]


def test_process_transaction_counts_arrays():
    metrics = Mock()
    process_evm_transaction_line('[{"tx": 1}, 2]', metrics)
    process_evm_transaction_line("null", metrics)
    assert metrics.increment_evm_transactions_counter.call_count == 2


@pytest.mark.parametrize("line", ["{not json", '{"tx": 1}', "5"])
def test_process_transaction_rejects_non_arrays(line):
    metrics = Mock()
    with pytest.raises(ValueError, match="error unmarshaling EVM transaction data"):
        process_evm_transaction_line(line, metrics)
    assert metrics.increment_evm_transactions_counter.call_count == 0


def test_monitor_stops_during_initial_delay(tmp_path):
    metrics = Mock()
    stop = threading.Event()
    stop.set()
    thread = start_evm_block_height_monitor(
        Config(node_home=str(tmp_path)), metrics, queue.Queue(), stop
    )
    thread.join(timeout=5)
    assert not thread.is_alive()
    assert metrics.is_validator.call_count == 0


def test_monitor_skips_validator_nodes(tmp_path, monkeypatch):
    monkeypatch.setattr(evm, "VALIDATOR_STATUS_DELAY", 0)
    metrics = Mock()
    metrics.is_validator.return_value = True
    errors = queue.Queue()
    stop = threading.Event()
    thread = start_evm_transactions_monitor(Config(node_home=str(tmp_path)), metrics, errors, stop)
    thread.join(timeout=5)
    stop.set()
    assert not thread.is_alive()
    assert metrics.is_validator.call_count == 1
    assert metrics.increment_evm_transactions_counter.call_count == 0
    assert errors.empty()


def test_monitor_follows_block_files_on_non_validators(tmp_path, monkeypatch):
    monkeypatch.setattr(evm, "VALIDATOR_STATUS_DELAY", 0)
    monkeypatch.setattr(evm, "EVM_POLL_INTERVAL", 0.02)
    directory = tmp_path / "data" / "dhs" / "EvmBlocks" / "hourly" / "20240102"
    directory.mkdir(parents=True)
    log = directory / "3"
    log.write_text("")
    metrics = Mock()
    metrics.is_validator.return_value = False
    errors = queue.Queue()
    stop = threading.Event()
    thread = start_evm_block_height_monitor(Config(node_home=str(tmp_path)), metrics, errors, stop)
    try:
        deadline = time.monotonic() + 5
        while metrics.set_evm_block_height.call_count == 0 and time.monotonic() < deadline:
            with open(log, "a", encoding="utf-8") as handle:
                handle.write(json.dumps([{"hash": "0x0"}, 777]) + "\n")
            time.sleep(0.05)
    finally:
        stop.set()
        thread.join(timeout=5)
    assert metrics.set_evm_block_height.call_args_list[0] == call(777)
    assert errors.empty()
    assert not thread.is_alive()