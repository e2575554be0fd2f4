import dataclasses

import pytest

from hlexporter.metrics.instruments import (
    APPLY_DURATION_BUCKETS,
    BLOCK_TIME_BUCKETS,
    Counter,
    Histogram,
    Meter,
    ObservableGauge,
    Observer,
    all_observables,
    create_instruments,
)


def _by_labels(family):
    return {sample.labels: sample.value for sample in family.samples}


def test_counter_accumulates_per_label_set():
    counter = Counter("hl_proposer_count_total")
    counter.add(1, {"validator": "a"})
    counter.add(1, {"validator": "a"})
    counter.add(1, {"validator": "b"})
    values = _by_labels(counter.collect())
    assert values[(("validator", "a"),)] == 2
    assert values[(("validator", "b"),)] == 1


def test_counter_rejects_negative():
    with pytest.raises(ValueError):
        Counter("c").add(-1)


def test_histogram_buckets_are_cumulative():
    hist = Histogram("h", boundaries=(10, 20))
    hist.record(15)
    samples = {(s.name, s.label_dict.get("le")): s.value for s in hist.collect().samples}
    assert samples[("h_bucket", "10")] == 0
    assert samples[("h_bucket", "20")] == 1
    assert samples[("h_bucket", "+Inf")] == 1
    assert samples[("h_sum", None)] == 15
    assert samples[("h_count", None)] == 1


def test_histogram_boundary_is_inclusive():
    hist = Histogram("h", boundaries=(10, 20))
    hist.record(10)
    buckets = {s.label_dict["le"]: s.value for s in hist.collect().samples if s.name == "h_bucket"}
    assert buckets["10"] == buckets["+Inf"]


def test_histogram_rejects_unsorted_boundaries():
    with pytest.raises(ValueError):
        Histogram("h", boundaries=(20, 10))


def test_meter_rejects_duplicate_names():
    meter = Meter()
    meter.counter("x")
    with pytest.raises(ValueError):
        meter.observable_gauge("x")


def test_callback_observations_are_collected_and_cast():
    meter = Meter()
    height = meter.observable_gauge("hl_block_height", integer=True)
    stake = meter.observable_gauge("hl_total_stake")

    def callback(observer):
        observer.observe(height, 12.9)
        observer.observe(stake, 7, {"active": True})

    meter.register_callback(callback, [height, stake])
    families = {f.name: f for f in meter.collect()}
    assert _by_labels(families["hl_block_height"]) == {(): 12}
    assert _by_labels(families["hl_total_stake"]) == {(("active", "true"),): 7.0}
    assert families["hl_total_stake"].kind == "gauge"


def test_observer_rejects_unregistered_instrument():
    observer = Observer([])
    with pytest.raises(ValueError):
        observer.observe(ObservableGauge("g"), 1)


def test_register_callback_rejects_foreign_instrument():
    meter = Meter()
    with pytest.raises(ValueError):
        meter.register_callback(lambda observer: None, [ObservableGauge("g")])


def test_unregister_stops_reporting():
    meter = Meter()
    gauge = meter.observable_gauge("g")
    registration = meter.register_callback(lambda o: o.observe(gauge, 1.0), [gauge])
    assert [f.name for f in meter.collect()] == ["g"]
    registration.unregister()
    assert meter.collect() == []


def test_empty_instruments_are_omitted():
    meter = Meter()
    meter.counter("unused")
    used = meter.counter("used")
    used.add(1)
    assert [f.name for f in meter.collect()] == ["used"]


def test_create_instruments_uses_source_buckets():
    instruments = create_instruments(Meter())
    assert instruments.block_time_histogram.boundaries == tuple(map(float, BLOCK_TIME_BUCKETS))
    assert instruments.apply_duration_histogram.boundaries == tuple(
        map(float, APPLY_DURATION_BUCKETS)
    )
    assert instruments.block_time_histogram.unit == "ms"


def test_create_instruments_names_and_types():
    instruments = create_instruments(Meter())
    assert instruments.block_height_gauge.name == "hl_block_height"
    assert instruments.block_height_gauge.integer is True
    assert instruments.total_stake_gauge.integer is False
    assert instruments.evm_transactions_counter.name == "hl_evm_transactions_total"


def test_all_observables_covers_every_gauge():
    instruments = create_instruments(Meter())
    gauges = [
        getattr(instruments, f.name)
        for f in dataclasses.fields(instruments)
        if isinstance(getattr(instruments, f.name), ObservableGauge)
    ]
    observables = all_observables(instruments)
    assert set(observables) == set(gauges)
    assert len(observables) == len(gauges)


def test_create_instruments_twice_on_same_meter_fails():
    meter = Meter()
    create_instruments(meter)
    with pytest.raises(ValueError):
        create_instruments(meter)