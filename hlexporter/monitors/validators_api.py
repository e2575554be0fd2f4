"""Validator stakes and jail status from the public info API."""

from __future__ import annotations

import json
import queue
import threading
from collections.abc import Iterable, Mapping
from dataclasses import dataclass

import requests

from hlexporter import logger

INFO_URL = "https://api.hyperliquid.xyz/info"
VALIDATOR_INTERVAL = 5 * 60.0
REQUEST_TIMEOUT = 10


def _is_int(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _field(data: Mapping, key: str, kind: str, default):
    value = data.get(key)
    if value is None:
        return default
    if kind == "str" and isinstance(value, str):
        return value
    if kind == "bool" and isinstance(value, bool):
        return value
    if kind == "int" and _is_int(value):
        return value
    if kind == "float" and (_is_int(value) or isinstance(value, float)):
        return float(value)
    raise ValueError(f"field {key!r} is not a {kind}: {value!r}")


@dataclass(frozen=True)
class ValidatorSummary:
    """One validator as reported by the info API."""

    validator: str = ""
    signer: str = ""
    name: str = ""
    description: str = ""
    n_recent_blocks: int = 0
    stake: float = 0.0
    is_jailed: bool = False
    unjailable_after: int = 0
    is_active: bool = False

    @classmethod
    def from_json(cls, data: Mapping) -> ValidatorSummary:
        """Build a summary from its JSON object; missing fields take defaults."""
        if not isinstance(data, Mapping):
            raise ValueError(f"validator summary is not an object: {data!r}")
        return cls(
            validator=_field(data, "validator", "str", ""),
            signer=_field(data, "signer", "str", ""),
            name=_field(data, "name", "str", ""),
            description=_field(data, "description", "str", ""),
            n_recent_blocks=_field(data, "nRecentBlocks", "int", 0),
            stake=_field(data, "stake", "float", 0.0),
            is_jailed=_field(data, "isJailed", "bool", False),
            unjailable_after=_field(data, "unjailableAfter", "int", 0),
            is_active=_field(data, "isActive", "bool", False),
        )


def parse_validator_summaries(body: str | bytes) -> list[ValidatorSummary]:
    """Parse the API's JSON array of validator summaries."""
    try:
        data = json.loads(body)
    except ValueError as exc:
        raise ValueError(f"error unmarshaling response: {exc}") from exc
    if data is None:
        return []
    if not isinstance(data, list):
        raise ValueError("error unmarshaling response: not a JSON array")
    try:
        return [ValidatorSummary.from_json(item) for item in data]
    except ValueError as exc:
        raise ValueError(f"error unmarshaling response: {exc}") from exc


def apply_validator_summaries(summaries: Iterable[ValidatorSummary], metrics) -> None:
    """Publish per-validator and aggregate stake metrics."""
    summaries = list(summaries)
    total = jailed = not_jailed = active = inactive = 0.0
    for summary in summaries:
        metrics.set_validator_stake(
            summary.validator, summary.signer, summary.name, summary.stake
        )
        if summary.is_jailed:
            jailed += summary.stake
        else:
            not_jailed += summary.stake
        metrics.set_validator_jailed_status(
            summary.validator, summary.signer, summary.name, 1.0 if summary.is_jailed else 0.0
        )
        if summary.is_active:
            active += summary.stake
        else:
            inactive += summary.stake
        metrics.set_validator_active_status(
            summary.validator, summary.signer, summary.name, 1.0 if summary.is_active else 0.0
        )
        total += summary.stake

    metrics.set_total_stake(total)
    metrics.set_jailed_stake(jailed)
    metrics.set_not_jailed_stake(not_jailed)
    metrics.set_active_stake(active)
    metrics.set_inactive_stake(inactive)
    metrics.set_validator_count(len(summaries))

    logger.info("Updated validator metrics: Total validators: %d", len(summaries))
    logger.info(
        "Total stake: %f, Jailed stake: %f, Not jailed stake: %f, "
        "Active stake: %f, Inactive stake: %f",
        total, jailed, not_jailed, active, inactive,
    )


def update_validator_metrics(metrics) -> None:
    """Fetch the validator summaries and publish them."""
    logger.debug("Making request to validator API")
    try:
        response = requests.post(
            INFO_URL, json={"type": "validatorSummaries"}, timeout=REQUEST_TIMEOUT
        )
        body = response.content
    except requests.RequestException as exc:
        raise RuntimeError(f"error making request: {exc}") from exc
    apply_validator_summaries(parse_validator_summaries(body), metrics)


def _run(metrics, errors: queue.Queue, stop: threading.Event) -> None:
    while not stop.wait(VALIDATOR_INTERVAL):
        try:
            update_validator_metrics(metrics)
        except (RuntimeError, ValueError) as exc:
            logger.error("Validator monitor error: %s", exc)
            errors.put(exc)


def start_validator_monitor(
    metrics, errors: queue.Queue, stop: threading.Event
) -> threading.Thread:
    """Refresh validator metrics every five minutes in a background thread."""
    thread = threading.Thread(
        target=_run, args=(metrics, errors, stop), name="validator-monitor", daemon=True
    )
    thread.start()
    return thread