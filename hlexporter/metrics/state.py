"""Shared metric state: node identity, current gauge values and the setters that update them."""

from __future__ import annotations

import dataclasses
import threading
from dataclasses import dataclass, field

import requests

from hlexporter import logger
from hlexporter.metrics.instruments import (
    Instruments,
    Meter,
    ObservableGauge,
    Observer,
    all_observables,
    create_instruments,
)

PUBLIC_IP_URL = "https://api.ipify.org"


@dataclass
class MetricsConfig:
    """How metrics are published and who publishes them."""

    enable_prometheus: bool = False
    enable_otlp: bool = False
    otlp_endpoint: str = ""
    otlp_insecure: bool = False
    alias: str = ""
    chain: str = ""
    node_home: str = ""
    validator_address: str = ""
    is_validator: bool = False


@dataclass
class NodeIdentity:
    """What identifies this node in exported metrics."""

    validator_address: str = ""
    server_ip: str = ""
    alias: str = ""
    is_validator: bool = False
    chain: str = ""


@dataclass(frozen=True)
class _LabeledValue:
    value: float
    labels: dict[str, str] = field(default_factory=dict)


def fetch_public_ip() -> str:
    """Return this host's public IP address as reported by an external service."""
    response = requests.get(PUBLIC_IP_URL, timeout=10)
    return response.text


def _common_labels() -> dict[str, str]:
    return {}


class MetricsState:
    """Holds every value the exporter reports and reports it on collection."""

    def __init__(self, meter: Meter | None = None) -> None:
        self.meter = meter if meter is not None else Meter()
        self.instruments: Instruments = create_instruments(self.meter)
        self._lock = threading.RLock()
        self._identity = NodeIdentity()
        self._current: dict[ObservableGauge, float | int] = {}
        self._labeled: dict[ObservableGauge, dict[str, _LabeledValue]] = {}
        self._registration = self.meter.register_callback(
            self.observe, all_observables(self.instruments)
        )

    @property
    def identity(self) -> NodeIdentity:
        """A copy of the node identity."""
        with self._lock:
            return dataclasses.replace(self._identity)

    def initialize_identity(self, cfg: MetricsConfig, server_ip: str | None = None) -> None:
        """Set the node identity from *cfg*; look up the public IP when none is given."""
        if server_ip is None:
            server_ip = fetch_public_ip()
        with self._lock:
            self._identity = NodeIdentity(
                validator_address=cfg.validator_address,
                server_ip=server_ip,
                alias=cfg.alias,
                is_validator=cfg.is_validator,
                chain=cfg.chain,
            )

    def observe(self, observer: Observer) -> None:
        """Report every stored gauge value to *observer*."""
        with self._lock:
            common = _common_labels()
            for instrument, value in self._current.items():
                observer.observe(instrument, value, common)
            for instrument, values in self._labeled.items():
                for entry in values.values():
                    observer.observe(instrument, entry.value, {**entry.labels, **common})

    def is_validator(self) -> bool:
        with self._lock:
            return self._identity.is_validator

    def validator_stakes(self) -> dict[str, float]:
        """Return the last known stake of every validator by address."""
        with self._lock:
            values = self._labeled.get(self.instruments.validator_stake_gauge, {})
            return {address: entry.value for address, entry in values.items()}

    def _set(self, instrument: ObservableGauge, value: float | int) -> None:
        with self._lock:
            self._current[instrument] = value

    def _set_labeled(
        self, instrument: ObservableGauge, key: str, value: float, labels: dict[str, str]
    ) -> None:
        with self._lock:
            self._labeled.setdefault(instrument, {})[key] = _LabeledValue(value, labels)

    def increment_proposer_counter(self, proposer: str) -> None:
        with self._lock:
            self.instruments.proposer_counter.add(1, {"validator": proposer})

    def set_block_height(self, height: int) -> None:
        self._set(self.instruments.block_height_gauge, int(height))

    def record_apply_duration(self, duration: float) -> None:
        with self._lock:
            self.instruments.apply_duration_histogram.record(duration, _common_labels())
            self._current[self.instruments.apply_duration_gauge] = float(duration)

    def set_validator_stake(self, address: str, signer: str, moniker: str, stake: float) -> None:
        labels = {"validator": address, "signer": signer, "moniker": moniker}
        self._set_labeled(self.instruments.validator_stake_gauge, address, float(stake), labels)

    def set_validator_jailed_status(
        self, validator: str, signer: str, name: str, status: float
    ) -> None:
        labels = {"validator": validator, "signer": signer, "name": name, **_common_labels()}
        self._set_labeled(self.instruments.validator_jailed_status, validator, float(status), labels)

    def set_total_stake(self, stake: float) -> None:
        self._set(self.instruments.total_stake_gauge, float(stake))

    def set_jailed_stake(self, stake: float) -> None:
        self._set(self.instruments.jailed_stake_gauge, float(stake))

    def set_not_jailed_stake(self, stake: float) -> None:
        self._set(self.instruments.not_jailed_stake_gauge, float(stake))

    def set_validator_count(self, count: int) -> None:
        self._set(self.instruments.validator_count_gauge, int(count))

    def set_software_version(self, commit: str, date: str) -> None:
        labels = {"date": date, "commit": commit}
        self._set_labeled(self.instruments.software_version_info, "current", 1, labels)

    def set_software_up_to_date(self, up_to_date: bool) -> None:
        self._set(self.instruments.software_up_to_date, 1 if up_to_date else 0)

    def record_block_time(self, duration: float) -> None:
        self.instruments.block_time_histogram.record(duration, _common_labels())

    def set_latest_block_time(self, timestamp: int) -> None:
        self._set(self.instruments.latest_block_time_gauge, int(timestamp))

    def set_evm_block_height(self, height: int) -> None:
        with self._lock:
            logger.debug("Setting EVM block height to: %d", height)
            self._current[self.instruments.evm_block_height_gauge] = int(height)

    def increment_evm_transactions_counter(self) -> None:
        with self._lock:
            self.instruments.evm_transactions_counter.add(1)

    def set_is_validator(self, is_validator: bool) -> None:
        with self._lock:
            self._identity.is_validator = is_validator

    def set_validator_address(self, address: str) -> None:
        with self._lock:
            self._identity.validator_address = address

    def set_active_stake(self, stake: float) -> None:
        self._set(self.instruments.active_stake_gauge, float(stake))

    def set_inactive_stake(self, stake: float) -> None:
        self._set(self.instruments.inactive_stake_gauge, float(stake))

    def set_validator_active_status(
        self, validator: str, signer: str, name: str, status: float
    ) -> None:
        labels = {"validator": validator, "signer": signer, "name": name, **_common_labels()}
        self._set_labeled(self.instruments.validator_active_status, validator, float(status), labels)

    def set_validator_rtt(self, validator: str, moniker: str, ip: str, latency: float) -> None:
        labels = {"validator": validator, "moniker": moniker, "ip": ip, **_common_labels()}
        self._set_labeled(self.instruments.validator_rtt_gauge, validator, float(latency), labels)