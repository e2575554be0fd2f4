"""Starting every monitor and reporting their errors until shutdown."""

from __future__ import annotations

import queue
import threading

from hlexporter import logger
from hlexporter.config import Config
from hlexporter.monitors.blocks import start_block_monitor
from hlexporter.monitors.evm import (
    start_evm_block_height_monitor,
    start_evm_transactions_monitor,
)
from hlexporter.monitors.proposals import start_proposal_monitor
from hlexporter.monitors.status import start_validator_status_monitor
from hlexporter.monitors.validator_ip import start_validator_ip_monitor
from hlexporter.monitors.validators_api import start_validator_monitor
from hlexporter.monitors.version import (
    SoftwareVersion,
    start_update_checker,
    start_version_monitor,
)

ERROR_PAUSE = 0.1


class MonitorError(Exception):
    """An error reported by one of the monitors."""

    def __init__(self, monitor: str, error: BaseException) -> None:
        super().__init__(f"{monitor} error: {error}")
        self.monitor = monitor
        self.error = error
        self.__cause__ = error


class _Reporter:
    """Queue-like sink that tags each error with the monitor that raised it."""

    def __init__(self, monitor: str, sink: queue.Queue) -> None:
        self._monitor = monitor
        self._sink = sink

    def put(self, error: BaseException) -> None:
        self._sink.put(MonitorError(self._monitor, error))


def run_exporter(cfg: Config, metrics, stop: threading.Event) -> None:
    """Start all monitors and log their errors until *stop* is set."""
    logger.info("Starting Hyperliquid exporter...")
    errors: queue.Queue = queue.Queue()

    def reporter(monitor: str) -> _Reporter:
        return _Reporter(monitor, errors)

    version = SoftwareVersion(metrics)

    logger.info("Initializing block monitor...")
    start_block_monitor(cfg, metrics, reporter("Block monitor"), stop)

    logger.info("Initializing proposal monitor...")
    start_proposal_monitor(cfg, metrics, None, reporter("Proposal monitor"), stop)

    logger.info("Initializing version monitor...")
    start_version_monitor(cfg, version, reporter("Version monitor"), stop)

    logger.info("Initializing update checker...")
    start_update_checker(version, reporter("Update checker"), stop)

    logger.info("Initializing evm monitor...")
    start_evm_block_height_monitor(cfg, metrics, reporter("EVM Monitor"), stop)

    logger.info("Initializing EVM Transactions monitor...")
    start_evm_transactions_monitor(cfg, metrics, reporter("EVM Transactions Monitor"), stop)

    logger.info("Initializing Validator Status monitor...")
    start_validator_status_monitor(cfg, metrics, reporter("Validator Status Monitor"), stop)

    logger.info("Initializing validator IP monitor...")
    start_validator_ip_monitor(cfg, metrics, None, reporter("Validator IP Monitor"), stop)

    logger.info("Initializing validator API monitor...")
    start_validator_monitor(metrics, reporter("Validator monitor"), stop)

    logger.info("Exporter is now running")

    while not stop.is_set():
        try:
            error = errors.get(timeout=ERROR_PAUSE)
        except queue.Empty:
            continue
        logger.error("%s", error)
        stop.wait(ERROR_PAUSE)

    logger.info("Shutting down monitors...")