"""Block proposer counts from the node's replica command logs."""

from __future__ import annotations

import collections
import json
import os
import queue
import threading

from hlexporter import logger
from hlexporter.config import Config
from hlexporter.monitors.tailing import follow_directory

REPLICA_CMDS_DIR = "data/replica_cmds"


class ProposalTracker:
    """Counts proposed blocks per proposer and updates the proposer counter."""

    def __init__(self, metrics) -> None:
        self.metrics = metrics
        self._counts: collections.Counter[str] = collections.Counter()
        self._lock = threading.Lock()

    def parse_line(self, line: str) -> None:
        """Count the proposer of one replica command line; raises ValueError if malformed."""
        try:
            data = json.loads(line)
        except ValueError as exc:
            raise ValueError(f"error parsing proposal line: {exc}") from exc
        abci_block = data.get("abci_block") if isinstance(data, dict) else None
        if not isinstance(abci_block, dict):
            raise ValueError("ABCI block not found in proposal line")
        proposer = abci_block.get("proposer")
        if not isinstance(proposer, str):
            raise ValueError("proposer not found in ABCI block")

        self.metrics.increment_proposer_counter(proposer)
        with self._lock:
            self._counts[proposer] += 1
            count = self._counts[proposer]
        logger.debug("Proposer %s counter incremented. Local count: %d", proposer, count)

    def counts(self) -> dict[str, int]:
        """Return a copy of the number of blocks seen per proposer."""
        with self._lock:
            return dict(self._counts)


def start_proposal_monitor(
    cfg: Config,
    metrics,
    tracker: ProposalTracker | None,
    errors: queue.Queue,
    stop: threading.Event,
) -> threading.Thread:
    """Follow the replica command logs in a background thread until *stop* is set."""
    if tracker is None:
        tracker = ProposalTracker(metrics)
    thread = threading.Thread(
        target=follow_directory,
        args=(
            os.path.join(cfg.node_home, REPLICA_CMDS_DIR),
            tracker.parse_line,
            errors,
            stop,
            "proposal log",
            0.1,
        ),
        name="proposal-monitor",
        daemon=True,
    )
    thread.start()
    return thread