"""EVM block height and transaction counts from the node's hourly EVM logs."""

from __future__ import annotations

import json
import os
import queue
import threading
from collections.abc import Callable

from hlexporter import logger
from hlexporter.config import Config
from hlexporter.monitors.tailing import follow_directory

EVM_BLOCKS_DIR = "data/dhs/EvmBlocks/hourly"
EVM_TXS_DIR = "data/dhs/EvmTxs/hourly"
VALIDATOR_STATUS_DELAY = 60.0
EVM_POLL_INTERVAL = 1.0


def parse_evm_block_height_line(line: str) -> int:
    """Return the block number held in the second element of an EVM block line."""
    try:
        block_data = json.loads(line)
    except ValueError as exc:
        raise ValueError(f"error unmarshaling EVM block height data: {exc}") from exc
    if block_data is None:
        block_data = []
    if not isinstance(block_data, list):
        raise ValueError("error unmarshaling EVM block height data: not a JSON array")
    if len(block_data) < 2:
        raise ValueError(
            "invalid block data format: expected at least 2 elements, "
            f"got {len(block_data)}"
        )
    number = block_data[1]
    if not isinstance(number, (int, float)) or isinstance(number, bool):
        raise ValueError(
            f"invalid block number format: expected number, got {type(number).__name__}"
        )
    return int(number)


def process_evm_block_height_line(line: str, metrics) -> None:
    """Set the EVM block height gauge from one line."""
    metrics.set_evm_block_height(parse_evm_block_height_line(line))


def process_evm_transaction_line(line: str, metrics) -> None:
    """Count one EVM transaction line; raises ValueError if it is not a JSON array."""
    try:
        tx_data = json.loads(line)
    except ValueError as exc:
        raise ValueError(f"error unmarshaling EVM transaction data: {exc}") from exc
    if tx_data is not None and not isinstance(tx_data, list):
        raise ValueError("error unmarshaling EVM transaction data: not a JSON array")
    metrics.increment_evm_transactions_counter()


def _run_evm_monitor(
    directory: str,
    kind: str,
    handle_line: Callable[[str], None],
    metrics,
    errors: queue.Queue,
    stop: threading.Event,
) -> None:
    if stop.wait(VALIDATOR_STATUS_DELAY):
        return
    if metrics.is_validator():
        logger.info("Node is a validator, skipping %s monitoring", kind)
        return
    logger.info("Starting %s monitoring for validator node in directory: %s", kind, directory)
    if not os.path.exists(directory):
        logger.warning("%s directory does not exist: %s", kind, directory)
    follow_directory(directory, handle_line, errors, stop, kind, EVM_POLL_INTERVAL)


def start_evm_block_height_monitor(
    cfg: Config, metrics, errors: queue.Queue, stop: threading.Event
) -> threading.Thread:
    """Follow the EVM block logs in a background thread on non-validator nodes."""
    thread = threading.Thread(
        target=_run_evm_monitor,
        args=(
            os.path.join(cfg.node_home, EVM_BLOCKS_DIR),
            "EVM block height",
            lambda line: process_evm_block_height_line(line, metrics),
            metrics,
            errors,
            stop,
        ),
        name="evm-block-height-monitor",
        daemon=True,
    )
    thread.start()
    return thread


def start_evm_transactions_monitor(
    cfg: Config, metrics, errors: queue.Queue, stop: threading.Event
) -> threading.Thread:
    """Follow the EVM transaction logs in a background thread on non-validator nodes."""
    thread = threading.Thread(
        target=_run_evm_monitor,
        args=(
            os.path.join(cfg.node_home, EVM_TXS_DIR),
            "EVM transactions",
            lambda line: process_evm_transaction_line(line, metrics),
            metrics,
            errors,
            stop,
        ),
        name="evm-transactions-monitor",
        daemon=True,
    )
    thread.start()
    return thread