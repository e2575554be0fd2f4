import json
import queue
import threading
from unittest import mock

import pytest
import requests

from hlexporter.metrics.state import MetricsState
from hlexporter.monitors.validators_api import (
    INFO_URL,
    ValidatorSummary,
    apply_validator_summaries,
    parse_validator_summaries,
    start_validator_monitor,
    update_validator_metrics,
)

BODY = json.dumps([
    {
        "validator": "0xaaa",
        "signer": "0xsig1",
        "name": "alpha",
        "description": "first",
        "nRecentBlocks": 7,
        "stake": 120.5,
        "isJailed": False,
        "unjailableAfter": 0,
        "isActive": True,
    },
    {
        "validator": "0xbbb",
        "signer": "0xsig2",
        "name": "beta",
        "stake": 30.25,
        "isJailed": True,
        "isActive": False,
    },
])


def gauge(state, name):
    for family in state.meter.collect():
        if family.name == name:
            return {sample.labels: sample.value for sample in family.samples}
    return {}


def test_from_json_reads_fields():
    summary = ValidatorSummary.from_json(json.loads(BODY)[0])
    assert summary.validator == "0xaaa"
    assert summary.n_recent_blocks == 7
    assert summary.stake == 120.5
    assert summary.is_active is True
    assert summary.is_jailed is False


def test_from_json_defaults_missing_fields():
    summary = ValidatorSummary.from_json({"validator": "0xccc"})
    assert summary == ValidatorSummary(validator="0xccc")


def test_from_json_rejects_wrong_type():
    with pytest.raises(ValueError):
        ValidatorSummary.from_json({"stake": "lots"})


def test_parse_rejects_non_array_and_bad_json():
    with pytest.raises(ValueError):
        parse_validator_summaries('{"a": 1}')
    with pytest.raises(ValueError):
        parse_validator_summaries("not json")


def test_parse_null_is_empty():
    assert parse_validator_summaries("null") == []


def test_apply_publishes_stakes_and_totals():
    summaries = parse_validator_summaries(BODY)
    state = MetricsState()
    apply_validator_summaries(summaries, state)

    assert state.validator_stakes() == {"0xaaa": 120.5, "0xbbb": 30.25}
    total = gauge(state, "hl_total_stake")[()]
    jailed = gauge(state, "hl_jailed_stake")[()]
    not_jailed = gauge(state, "hl_not_jailed_stake")[()]
    active = gauge(state, "hl_active_stake")[()]
    inactive = gauge(state, "hl_inactive_stake")[()]
    assert total == pytest.approx(jailed + not_jailed)
    assert total == pytest.approx(active + inactive)
    assert jailed == 30.25
    assert active == 120.5
    assert gauge(state, "hl_validator_count") == {(): len(summaries)}


def test_apply_sets_status_labels():
    state = MetricsState()
    apply_validator_summaries(parse_validator_summaries(BODY), state)
    jailed = gauge(state, "hl_validator_jailed_status")
    active = gauge(state, "hl_validator_active_status")
    beta = (("name", "beta"), ("signer", "0xsig2"), ("validator", "0xbbb"))
    alpha = (("name", "alpha"), ("signer", "0xsig1"), ("validator", "0xaaa"))
    assert jailed[beta] == 1.0
    assert jailed[alpha] == 0.0
    assert active[alpha] == 1.0
    assert active[beta] == 0.0


def test_update_validator_metrics_posts_request():
    response = mock.Mock(content=BODY.encode())
    state = MetricsState()
    with mock.patch("hlexporter.monitors.validators_api.requests.post", return_value=response) as post:
        update_validator_metrics(state)
    assert post.call_args.args[0] == INFO_URL
    assert post.call_args.kwargs["json"] == {"type": "validatorSummaries"}
    assert set(state.validator_stakes()) == {"0xaaa", "0xbbb"}


def test_update_validator_metrics_request_failure():
    with mock.patch(
        "hlexporter.monitors.validators_api.requests.post",
        side_effect=requests.ConnectionError("down"),
    ):
        with pytest.raises(RuntimeError, match="error making request"):
            update_validator_metrics(MetricsState())


def test_monitor_ends_when_stopped():
    stop = threading.Event()
    stop.set()
    errors = queue.Queue()
    thread = start_validator_monitor(MetricsState(), errors, stop)
    thread.join(timeout=2)
    assert not thread.is_alive()
    assert errors.empty()