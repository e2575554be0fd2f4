"""Validator node addresses from the ABCI state, and round-trip times to them."""

from __future__ import annotations

import json
import os
import queue
import socket
import subprocess
import threading
import time
from collections.abc import Iterable, Iterator, Mapping

from hlexporter import logger
from hlexporter.config import Config
from hlexporter.files import latest_file

STATE_DIR = "data/periodic_abci_states"
TRANSLATED_STATE_PATH = "/tmp/latest_state.json"
PROFILE_KEY = "validator_to_profile"
RTT_PORTS = range(4000, 4011)
RTT_TIMEOUT = 2.0
RTT_INTERVAL = 5.0
STATE_CHECK_INTERVAL = 5.0
STATE_RETRY_INTERVAL = 3600.0
TOP_VALIDATORS = 50


def _profile_lists(node: object) -> Iterator[object]:
    if isinstance(node, dict):
        for key, value in node.items():
            if key == PROFILE_KEY:
                yield value
            else:
                yield from _profile_lists(value)
    elif isinstance(node, list):
        for item in node:
            yield from _profile_lists(item)


def find_validator_profiles(document: object) -> list | None:
    """Return the entries of every ``validator_to_profile`` list in *document*.

    Returns None when the document holds no such field.
    """
    found = False
    entries: list = []
    for value in _profile_lists(document):
        found = True
        if isinstance(value, list):
            entries.extend(value)
    return entries if found else None


def _parse_profile(entry: object) -> tuple[str, str, str] | None:
    if not isinstance(entry, list) or len(entry) < 2:
        return None
    address, profile = entry[0], entry[1]
    if not isinstance(address, str) or not isinstance(profile, dict):
        return None
    node_ip = profile.get("node_ip")
    if not isinstance(node_ip, dict):
        return None
    ip = node_ip.get("Ip")
    name = profile.get("name")
    if not isinstance(ip, str) or not isinstance(name, str):
        return None
    return address, ip, name


def measure_rtt(
    ip: str, ports: Iterable[int] = RTT_PORTS, timeout: float = RTT_TIMEOUT
) -> float | None:
    """Return the TCP connect time in microseconds to the first open port, or None."""
    for port in ports:
        start = time.perf_counter_ns()
        try:
            conn = socket.create_connection((ip, port), timeout=timeout)
        except OSError:
            continue
        latency = (time.perf_counter_ns() - start) // 1000
        conn.close()
        return float(latency)
    return None


class ValidatorDirectory:
    """Known validator IPs, monikers and stakes, keyed by validator address."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._ips: dict[str, str] = {}
        self._monikers: dict[str, str] = {}
        self._stakes: dict[str, float] = {}

    @property
    def ips(self) -> dict[str, str]:
        with self._lock:
            return dict(self._ips)

    @property
    def monikers(self) -> dict[str, str]:
        with self._lock:
            return dict(self._monikers)

    @property
    def stakes(self) -> dict[str, float]:
        with self._lock:
            return dict(self._stakes)

    def load_profiles(self, entries: Iterable[object]) -> int:
        """Record the IP and name of every well-formed profile entry; return how many."""
        loaded = 0
        with self._lock:
            for entry in entries:
                parsed = _parse_profile(entry)
                if parsed is None:
                    continue
                address, ip, name = parsed
                self._ips[address] = ip
                self._monikers[address] = name
                logger.debug("Found validator: %s, IP: %s, Name: %s", address, ip, name)
                loaded += 1
        return loaded

    def update_stake(self, validator: str, stake: float) -> None:
        with self._lock:
            self._stakes[validator] = stake

    def top_validators(self, stakes: Mapping[str, float], n: int) -> list[str]:
        """Return up to *n* addresses with known IPs, highest stake first."""
        with self._lock:
            known = [(addr, stake) for addr, stake in stakes.items() if self._ips.get(addr)]
        known.sort(key=lambda item: item[1], reverse=True)
        return [addr for addr, _ in known[:n]]

    def process_latest_state(
        self,
        state_dir: str,
        current_file: str | None,
        node_binary: str,
        chain: str,
    ) -> str | None:
        """Translate the newest state file and load its profiles.

        Returns the state file that is now current: the newest one once it has
        been read, otherwise *current_file* unchanged.
        """
        output_path = TRANSLATED_STATE_PATH
        try:
            latest = latest_file(state_dir)
        except OSError as exc:
            logger.error("Error finding latest state file in dir %s: %s", state_dir, exc)
            raise RuntimeError(f"error finding latest state file: {exc}") from exc
        if latest is None:
            return current_file

        logger.info("Processing state file: %s", latest)
        if latest == current_file:
            return current_file

        command = [
            node_binary, "--chain", chain.lower().title(),
            "translate-abci-state", latest, output_path,
        ]
        try:
            subprocess.run(
                command, stdout=subprocess.DEVNULL, stderr=subprocess.PIPE, check=True
            )
        except subprocess.CalledProcessError as exc:
            stderr = (exc.stderr or b"").decode("utf-8", errors="replace")
            logger.error("Error translating ABCI state: %s, stderr: %s", exc, stderr)
            raise RuntimeError(f"error translating ABCI state: {exc}") from exc
        except OSError as exc:
            logger.error("Error translating ABCI state: %s", exc)
            raise RuntimeError(f"error translating ABCI state: {exc}") from exc

        try:
            with open(output_path, encoding="utf-8") as handle:
                document = json.load(handle)
        except ValueError as exc:
            logger.error("Error reading token: %s", exc)
            raise ValueError(f"error reading translated state: {exc}") from exc
        finally:
            try:
                os.remove(output_path)
            except FileNotFoundError:
                pass

        entries = find_validator_profiles(document)
        if entries is None:
            logger.warning("validator_to_profile field not found in state file")
            return current_file

        self.load_profiles(entries)
        with self._lock:
            logger.info(
                "Updated validator maps - IPs: %d, Monikers: %d",
                len(self._ips), len(self._monikers),
            )
        return latest

    def _probe(self, validator: str, metrics) -> None:
        with self._lock:
            ip = self._ips.get(validator, "")
            moniker = self._monikers.get(validator, "")
        if not ip:
            return
        latency = measure_rtt(ip)
        if latency is not None and latency > 0 and validator and moniker:
            metrics.set_validator_rtt(validator, moniker, ip, latency)

    def _monitor_rtt(self, metrics, stop: threading.Event) -> None:
        while not stop.wait(RTT_INTERVAL):
            for validator in self.top_validators(metrics.validator_stakes(), TOP_VALIDATORS):
                threading.Thread(
                    target=self._probe, args=(validator, metrics), daemon=True
                ).start()


def _run(
    cfg: Config,
    metrics,
    directory: ValidatorDirectory,
    errors: queue.Queue,
    stop: threading.Event,
) -> None:
    state_dir = os.path.join(cfg.node_home, STATE_DIR)
    if not os.path.exists(state_dir):
        logger.error("State directory does not exist: %s", state_dir)
        errors.put(FileNotFoundError(f"state directory does not exist: {state_dir}"))
        return

    threading.Thread(
        target=directory._monitor_rtt, args=(metrics, stop), name="validator-rtt", daemon=True
    ).start()

    current: str | None = None

    def attempt(failure: str) -> float:
        nonlocal current
        try:
            current = directory.process_latest_state(
                state_dir, current, cfg.node_binary, cfg.chain
            )
        except (OSError, ValueError, RuntimeError) as exc:
            logger.error("%s: %s", failure, exc)
            errors.put(exc)
        return time.monotonic()

    last_attempt = attempt("Initial state processing failed")
    while not stop.wait(STATE_CHECK_INTERVAL):
        if time.monotonic() - last_attempt < STATE_RETRY_INTERVAL:
            continue
        last_attempt = attempt("State processing failed")


def start_validator_ip_monitor(
    cfg: Config,
    metrics,
    directory: ValidatorDirectory | None,
    errors: queue.Queue,
    stop: threading.Event,
) -> threading.Thread:
    """Load validator addresses hourly and measure RTTs in background threads."""
    if directory is None:
        directory = ValidatorDirectory()
    thread = threading.Thread(
        target=_run,
        args=(cfg, metrics, directory, errors, stop),
        name="validator-ip-monitor",
        daemon=True,
    )
    thread.start()
    return thread