"""Metric instruments, the meter that owns them, and the exporter's instrument set."""

from __future__ import annotations

import bisect
import itertools
import math
import threading
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field

LabelSet = tuple[tuple[str, str], ...]

BLOCK_TIME_BUCKETS: tuple[float, ...] = (
    10, 20, 30, 40, 50, 60, 70, 80, 90, 100,
    120, 140, 160, 180, 200, 220, 240, 260, 280, 300,
    350, 400, 450, 500, 600, 700, 800,
    900, 1000, 1500, 2000,
)

APPLY_DURATION_BUCKETS: tuple[float, ...] = (
    0.1, 0.2, 0.5, 1, 2, 3, 5, 7, 10, 15, 20,
    30, 50, 75, 100, 150, 160, 170, 180, 190,
    200, 210, 220, 230, 240, 250,
)


def _label_value(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _label_set(labels: Mapping[str, object] | None) -> LabelSet:
    if not labels:
        return ()
    return tuple(sorted((str(key), _label_value(value)) for key, value in labels.items()))


def _format_bound(value: float) -> str:
    if math.isinf(value):
        return "+Inf" if value > 0 else "-Inf"
    if value.is_integer() and abs(value) < 1e15:
        return str(int(value))
    return repr(value)


@dataclass(frozen=True)
class Sample:
    """One value of a metric with its sorted label pairs."""

    name: str
    labels: LabelSet
    value: float

    @property
    def label_dict(self) -> dict[str, str]:
        return dict(self.labels)


@dataclass(frozen=True)
class MetricFamily:
    """All samples of one instrument at collection time."""

    name: str
    description: str
    unit: str
    kind: str
    samples: tuple[Sample, ...]


class _Instrument:
    kind = ""

    def __init__(self, name: str, description: str = "", unit: str = "") -> None:
        self.name = name
        self.description = description
        self.unit = unit

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name!r})"


class Counter(_Instrument):
    """A monotonically increasing sum per label set."""

    kind = "counter"

    def __init__(self, name: str, description: str = "", unit: str = "") -> None:
        super().__init__(name, description, unit)
        self._values: dict[LabelSet, float] = {}
        self._lock = threading.Lock()

    def add(self, amount: float = 1, labels: Mapping[str, object] | None = None) -> None:
        """Increase the counter for *labels* by *amount*."""
        if amount < 0:
            raise ValueError(f"counter {self.name!r} cannot be decreased")
        key = _label_set(labels)
        with self._lock:
            self._values[key] = self._values.get(key, 0) + amount

    def collect(self) -> MetricFamily:
        with self._lock:
            samples = tuple(Sample(self.name, key, value) for key, value in self._values.items())
        return MetricFamily(self.name, self.description, self.unit, self.kind, samples)


@dataclass
class _HistogramSeries:
    counts: list[int]
    total: float = 0.0
    count: int = 0


class Histogram(_Instrument):
    """A distribution over fixed bucket boundaries, upper bounds inclusive."""

    kind = "histogram"

    def __init__(
        self,
        name: str,
        description: str = "",
        unit: str = "",
        boundaries: Iterable[float] = (),
    ) -> None:
        super().__init__(name, description, unit)
        bounds = tuple(float(b) for b in boundaries)
        if any(math.isnan(b) for b in bounds) or any(
            lower >= upper for lower, upper in zip(bounds, bounds[1:])
        ):
            raise ValueError(f"histogram {name!r} boundaries must be strictly increasing")
        self.boundaries = bounds
        self._series: dict[LabelSet, _HistogramSeries] = {}
        self._lock = threading.Lock()

    def record(self, value: float, labels: Mapping[str, object] | None = None) -> None:
        """Add one observation of *value* for *labels*."""
        index = bisect.bisect_left(self.boundaries, value)
        key = _label_set(labels)
        with self._lock:
            series = self._series.get(key)
            if series is None:
                series = _HistogramSeries([0] * (len(self.boundaries) + 1))
                self._series[key] = series
            series.counts[index] += 1
            series.total += value
            series.count += 1

    def collect(self) -> MetricFamily:
        samples: list[Sample] = []
        upper_bounds = (*self.boundaries, math.inf)
        with self._lock:
            for key, series in self._series.items():
                for bound, cumulative in zip(upper_bounds, itertools.accumulate(series.counts)):
                    bucket_labels = tuple(sorted((*key, ("le", _format_bound(bound)))))
                    samples.append(Sample(f"{self.name}_bucket", bucket_labels, cumulative))
                samples.append(Sample(f"{self.name}_sum", key, series.total))
                samples.append(Sample(f"{self.name}_count", key, series.count))
        return MetricFamily(self.name, self.description, self.unit, self.kind, tuple(samples))


class ObservableGauge(_Instrument):
    """A gauge whose values are reported by callbacks at collection time."""

    kind = "gauge"

    def __init__(
        self, name: str, description: str = "", integer: bool = False, unit: str = ""
    ) -> None:
        super().__init__(name, description, unit)
        self.integer = integer


class Observer:
    """Receives gauge values from a callback during one collection."""

    def __init__(self, instruments: Iterable[ObservableGauge]) -> None:
        self._allowed = set(instruments)
        self._observations: dict[ObservableGauge, dict[LabelSet, float]] = {}

    def observe(
        self,
        instrument: ObservableGauge,
        value: float,
        labels: Mapping[str, object] | None = None,
    ) -> None:
        """Report *value* for *instrument* under *labels*."""
        if instrument not in self._allowed:
            raise ValueError(f"instrument {instrument.name!r} is not registered with this callback")
        converted = int(value) if instrument.integer else float(value)
        self._observations.setdefault(instrument, {})[_label_set(labels)] = converted


@dataclass(eq=False)
class _Registration:
    meter: Meter
    callback: Callable[[Observer], None]
    instruments: tuple[ObservableGauge, ...]

    def unregister(self) -> None:
        self.meter._unregister(self)


class Meter:
    """Creates instruments and collects their current values."""

    def __init__(self, name: str = "hyperliquid-exporter", version: str = "0.1.0") -> None:
        self.name = name
        self.version = version
        self._instruments: dict[str, _Instrument] = {}
        self._callbacks: list[_Registration] = []
        self._lock = threading.RLock()

    def _add(self, instrument: _Instrument):
        with self._lock:
            if instrument.name in self._instruments:
                raise ValueError(f"instrument {instrument.name!r} already exists")
            self._instruments[instrument.name] = instrument
        return instrument

    def counter(self, name: str, description: str = "", unit: str = "") -> Counter:
        return self._add(Counter(name, description, unit))

    def histogram(
        self,
        name: str,
        description: str = "",
        unit: str = "",
        boundaries: Iterable[float] = (),
    ) -> Histogram:
        return self._add(Histogram(name, description, unit, boundaries))

    def observable_gauge(
        self, name: str, description: str = "", integer: bool = False
    ) -> ObservableGauge:
        return self._add(ObservableGauge(name, description, integer))

    def register_callback(
        self,
        callback: Callable[[Observer], None],
        instruments: Iterable[ObservableGauge],
    ) -> _Registration:
        """Call *callback* on every collection to report *instruments*."""
        gauges = tuple(instruments)
        with self._lock:
            for gauge in gauges:
                if not isinstance(gauge, ObservableGauge) or self._instruments.get(gauge.name) is not gauge:
                    raise ValueError(f"{gauge!r} is not an observable gauge of this meter")
            registration = _Registration(self, callback, gauges)
            self._callbacks.append(registration)
        return registration

    def _unregister(self, registration: _Registration) -> None:
        with self._lock:
            if registration in self._callbacks:
                self._callbacks.remove(registration)

    def collect(self) -> list[MetricFamily]:
        """Run the callbacks and return every instrument that has data."""
        with self._lock:
            instruments = list(self._instruments.values())
            registrations = list(self._callbacks)

        observed: dict[ObservableGauge, dict[LabelSet, float]] = {}
        for registration in registrations:
            observer = Observer(registration.instruments)
            registration.callback(observer)
            for gauge, values in observer._observations.items():
                observed.setdefault(gauge, {}).update(values)

        families = []
        for instrument in instruments:
            if isinstance(instrument, ObservableGauge):
                values = observed.get(instrument, {})
                family = MetricFamily(
                    instrument.name,
                    instrument.description,
                    instrument.unit,
                    instrument.kind,
                    tuple(Sample(instrument.name, key, value) for key, value in values.items()),
                )
            else:
                family = instrument.collect()
            if family.samples:
                families.append(family)
        return families


@dataclass(frozen=True)
class Instruments:
    """Every instrument the exporter publishes."""

    block_time_histogram: Histogram
    apply_duration_histogram: Histogram
    proposer_counter: Counter
    block_height_gauge: ObservableGauge
    apply_duration_gauge: ObservableGauge
    validator_jailed_status: ObservableGauge
    validator_stake_gauge: ObservableGauge
    total_stake_gauge: ObservableGauge
    jailed_stake_gauge: ObservableGauge
    not_jailed_stake_gauge: ObservableGauge
    validator_count_gauge: ObservableGauge
    software_version_info: ObservableGauge
    software_up_to_date: ObservableGauge
    latest_block_time_gauge: ObservableGauge
    evm_block_height_gauge: ObservableGauge
    evm_transactions_counter: Counter
    active_stake_gauge: ObservableGauge
    inactive_stake_gauge: ObservableGauge
    validator_active_status: ObservableGauge
    validator_rtt_gauge: ObservableGauge
    extra: dict = field(default_factory=dict, repr=False, compare=False)


def create_instruments(meter: Meter) -> Instruments:
    """Create the exporter's instruments on *meter*."""
    gauge = meter.observable_gauge
    return Instruments(
        block_time_histogram=meter.histogram(
            "hl_block_time_milliseconds",
            "Distribution of time between blocks in milliseconds",
            "ms",
            BLOCK_TIME_BUCKETS,
        ),
        apply_duration_histogram=meter.histogram(
            "hl_apply_duration_milliseconds",
            "Distribution of block apply durations in milliseconds",
            "ms",
            APPLY_DURATION_BUCKETS,
        ),
        proposer_counter=meter.counter(
            "hl_proposer_count_total", "Total number of blocks proposed by each validator"
        ),
        block_height_gauge=gauge("hl_block_height", "Current block height of the chain", True),
        apply_duration_gauge=gauge("hl_apply_duration", "Duration of block application"),
        validator_jailed_status=gauge(
            "hl_validator_jailed_status", "Validator jail status (0=not jailed, 1=jailed)"
        ),
        validator_stake_gauge=gauge("hl_validator_stake", "Stake amount for each validator"),
        total_stake_gauge=gauge("hl_total_stake", "Total stake in the network"),
        jailed_stake_gauge=gauge("hl_jailed_stake", "Total jailed stake"),
        not_jailed_stake_gauge=gauge("hl_not_jailed_stake", "Total not jailed stake"),
        validator_count_gauge=gauge("hl_validator_count", "Total number of validators", True),
        software_version_info=gauge("hl_software_version", "Software version information", True),
        software_up_to_date=gauge("hl_software_up_to_date", "Software up to date status", True),
        latest_block_time_gauge=gauge("hl_latest_block_time", "Latest block time", True),
        evm_block_height_gauge=gauge(
            "hl_evm_block_height", "Current block height of the EVM chain", True
        ),
        evm_transactions_counter=meter.counter(
            "hl_evm_transactions_total", "Total number of EVM transactions processed"
        ),
        active_stake_gauge=gauge(
            "hl_active_stake", "Total stake of active validators in the Hyperliquid network"
        ),
        inactive_stake_gauge=gauge(
            "hl_inactive_stake", "Total stake of inactive validators in the Hyperliquid network"
        ),
        validator_active_status=gauge(
            "hl_validator_active_status",
            "Active status of each validator (1 if active, 0 if not active)",
        ),
        validator_rtt_gauge=gauge(
            "hl_validator_rtt", "Round-trip time (RTT) to validator nodes in milliseconds"
        ),
    )


def all_observables(instruments: Instruments) -> list[ObservableGauge]:
    """Return the observable gauges that the metric callback reports."""
    return [
        instruments.block_height_gauge,
        instruments.apply_duration_gauge,
        instruments.validator_jailed_status,
        instruments.validator_stake_gauge,
        instruments.total_stake_gauge,
        instruments.jailed_stake_gauge,
        instruments.not_jailed_stake_gauge,
        instruments.validator_count_gauge,
        instruments.software_version_info,
        instruments.software_up_to_date,
        instruments.latest_block_time_gauge,
        instruments.evm_block_height_gauge,
        instruments.active_stake_gauge,
        instruments.inactive_stake_gauge,
        instruments.validator_active_status,
        instruments.validator_rtt_gauge,
    ]