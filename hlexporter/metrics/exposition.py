"""Publishing metrics: the Prometheus scrape endpoint and the OTLP push exporter."""

from __future__ import annotations

import itertools
import json
import math
import threading
import time
from collections.abc import Mapping
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from urllib.parse import urlsplit

import requests

from hlexporter import logger
from hlexporter.metrics.instruments import MetricFamily, Meter, Sample
from hlexporter.metrics.state import MetricsConfig, MetricsState, NodeIdentity, fetch_public_ip

PROMETHEUS_PORT = 8086
OTLP_INTERVAL = 5.0
_CONTENT_TYPE = "text/plain; version=0.0.4; charset=utf-8"
_CUMULATIVE = 2


def sanitize_endpoint(endpoint: str) -> str:
    """Strip a leading ``https://`` or ``http://`` from *endpoint*."""
    if len(endpoint) > 8:
        for scheme in ("https://", "http://"):
            if endpoint.startswith(scheme):
                return endpoint[len(scheme):]
    return endpoint


def resource_attributes(cfg: MetricsConfig, identity: NodeIdentity) -> dict[str, object]:
    """Attributes that describe the exporting node."""
    return {
        "instance": cfg.alias,
        "job": f"hyperliquid-exporter/{cfg.chain}",
        "server_ip": identity.server_ip,
        "is_validator": identity.is_validator,
        "validator_address": identity.validator_address,
    }


def _format_value(value: float) -> str:
    if isinstance(value, int):
        return str(value)
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "+Inf" if value > 0 else "-Inf"
    if value.is_integer() and abs(value) < 1e15:
        return str(int(value))
    return repr(value)


def _escape_label(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")


def _escape_help(text: str) -> str:
    return text.replace("\\", "\\\\").replace("\n", "\\n")


def _label_text(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _format_labels(labels) -> str:
    if not labels:
        return ""
    inner = ",".join(f'{key}="{_escape_label(_label_text(value))}"' for key, value in labels)
    return "{" + inner + "}"


def render_prometheus(meter: Meter, resource: Mapping[str, object]) -> str:
    """Render the meter's current values in the Prometheus text format."""
    lines = [
        "# HELP target_info Target metadata",
        "# TYPE target_info gauge",
        f"target_info{_format_labels(sorted(resource.items()))} 1",
    ]
    for family in meter.collect():
        lines.append(f"# HELP {family.name} {_escape_help(family.description)}")
        lines.append(f"# TYPE {family.name} {family.kind}")
        for sample in family.samples:
            lines.append(f"{sample.name}{_format_labels(sample.labels)} {_format_value(sample.value)}")
    return "\n".join(lines) + "\n"


class _MetricsHandler(BaseHTTPRequestHandler):
    def do_GET(self) -> None:
        if urlsplit(self.path).path != "/metrics":
            self.send_error(404)
            return
        body = self.server.render_metrics().encode("utf-8")
        self.send_response(200)
        self.send_header("Content-Type", _CONTENT_TYPE)
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, format: str, *args: object) -> None:
        logger.debug("Prometheus request from %s: %s", self.address_string(), format % args)


class PrometheusServer:
    """Serves ``/metrics`` over HTTP from a background thread."""

    def __init__(
        self,
        meter: Meter,
        resource: Mapping[str, object],
        port: int = PROMETHEUS_PORT,
        host: str = "",
    ) -> None:
        self.meter = meter
        self.resource = dict(resource)
        self.host = host
        self._port = port
        self._httpd: ThreadingHTTPServer | None = None
        self._thread: threading.Thread | None = None

    @property
    def port(self) -> int:
        """The bound port once started, otherwise the configured one."""
        if self._httpd is not None:
            return self._httpd.server_address[1]
        return self._port

    def start(self) -> None:
        """Bind the socket and begin serving; raises OSError if binding fails."""
        logger.info("Starting Prometheus metrics server on port %d", self._port)
        httpd = ThreadingHTTPServer((self.host, self._port), _MetricsHandler)
        httpd.daemon_threads = True
        httpd.render_metrics = lambda: render_prometheus(self.meter, self.resource)
        self._httpd = httpd
        self._thread = threading.Thread(target=httpd.serve_forever, daemon=True)
        self._thread.start()

    def stop(self) -> None:
        """Stop serving and release the socket."""
        httpd, self._httpd = self._httpd, None
        if httpd is None:
            return
        httpd.shutdown()
        httpd.server_close()
        if self._thread is not None:
            self._thread.join()
            self._thread = None

    def __enter__(self) -> PrometheusServer:
        self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.stop()


def _any_value(value: object) -> dict[str, object]:
    if isinstance(value, bool):
        return {"boolValue": value}
    if isinstance(value, int):
        return {"intValue": str(value)}
    if isinstance(value, float):
        return {"doubleValue": value}
    return {"stringValue": str(value)}


def _attributes(pairs) -> list[dict[str, object]]:
    return [{"key": key, "value": _any_value(value)} for key, value in pairs]


class OTLPExporter:
    """Pushes the meter's values to an OTLP/HTTP collector as JSON."""

    def __init__(
        self,
        meter: Meter,
        resource: Mapping[str, object],
        endpoint: str,
        insecure: bool = False,
        interval: float = OTLP_INTERVAL,
        session: requests.Session | None = None,
    ) -> None:
        self.meter = meter
        self.resource = dict(resource)
        self.endpoint = endpoint
        self.insecure = insecure
        self.interval = interval
        self._session = session if session is not None else requests.Session()
        self._start_time = time.time_ns()

    @property
    def url(self) -> str:
        scheme = "http" if self.insecure else "https"
        return f"{scheme}://{self.endpoint}/v1/metrics"

    def _number_point(self, sample: Sample, now: int) -> dict[str, object]:
        point: dict[str, object] = {
            "attributes": _attributes(sample.labels),
            "startTimeUnixNano": str(self._start_time),
            "timeUnixNano": str(now),
        }
        if isinstance(sample.value, int):
            point["asInt"] = str(sample.value)
        else:
            point["asDouble"] = sample.value
        return point

    def _histogram_points(self, family: MetricFamily, now: int) -> list[dict[str, object]]:
        series: dict[tuple, dict] = {}
        for sample in family.samples:
            key = tuple(pair for pair in sample.labels if pair[0] != "le")
            entry = series.setdefault(key, {"buckets": [], "sum": 0.0, "count": 0})
            if sample.name == f"{family.name}_bucket":
                entry["buckets"].append((sample.label_dict["le"], sample.value))
            elif sample.name == f"{family.name}_sum":
                entry["sum"] = sample.value
            elif sample.name == f"{family.name}_count":
                entry["count"] = sample.value
        points = []
        for key, entry in series.items():
            cumulative = [count for _, count in entry["buckets"]]
            counts = [upper - lower for lower, upper in itertools.pairwise([0, *cumulative])]
            points.append({
                "attributes": _attributes(key),
                "startTimeUnixNano": str(self._start_time),
                "timeUnixNano": str(now),
                "count": str(entry["count"]),
                "sum": entry["sum"],
                "bucketCounts": [str(count) for count in counts],
                "explicitBounds": [float(le) for le, _ in entry["buckets"] if le != "+Inf"],
            })
        return points

    def payload(self) -> dict[str, object]:
        """Build one OTLP export request from the meter's current values."""
        now = time.time_ns()
        metrics = []
        for family in self.meter.collect():
            metric: dict[str, object] = {
                "name": family.name,
                "description": family.description,
                "unit": family.unit,
            }
            if family.kind == "histogram":
                metric["histogram"] = {
                    "dataPoints": self._histogram_points(family, now),
                    "aggregationTemporality": _CUMULATIVE,
                }
            elif family.kind == "counter":
                metric["sum"] = {
                    "dataPoints": [self._number_point(s, now) for s in family.samples],
                    "aggregationTemporality": _CUMULATIVE,
                    "isMonotonic": True,
                }
            else:
                metric["gauge"] = {
                    "dataPoints": [self._number_point(s, now) for s in family.samples]
                }
            metrics.append(metric)
        return {
            "resourceMetrics": [{
                "resource": {"attributes": _attributes(self.resource.items())},
                "scopeMetrics": [{
                    "scope": {"name": self.meter.name, "version": self.meter.version},
                    "metrics": metrics,
                }],
            }]
        }

    def export(self) -> None:
        """Send the current values; raises requests.RequestException on failure."""
        response = self._session.post(
            self.url,
            data=json.dumps(self.payload()),
            headers={"Content-Type": "application/json"},
            timeout=10,
        )
        response.raise_for_status()

    def run(self, stop: threading.Event) -> None:
        """Export every interval until *stop* is set."""
        while not stop.wait(self.interval):
            try:
                self.export()
            except requests.RequestException as exc:
                logger.error("OTLP export failed: %s", exc)


def _stop_when_set(stop: threading.Event, server: PrometheusServer) -> None:
    stop.wait()
    server.stop()


def init_metrics(cfg: MetricsConfig, stop: threading.Event | None = None) -> MetricsState:
    """Create the metric state and start the configured exporters until *stop* is set."""
    if stop is None:
        stop = threading.Event()
    state = MetricsState()
    try:
        server_ip = fetch_public_ip()
    except requests.RequestException as exc:
        raise RuntimeError(
            f"failed to initialize node identity: failed to get public IP: {exc}"
        ) from exc
    state.initialize_identity(cfg, server_ip)
    resource = resource_attributes(cfg, state.identity)

    if cfg.enable_otlp:
        exporter = OTLPExporter(
            state.meter,
            resource,
            sanitize_endpoint(cfg.otlp_endpoint),
            insecure=cfg.otlp_insecure,
        )
        threading.Thread(target=exporter.run, args=(stop,), daemon=True).start()

    if cfg.enable_prometheus:
        server = PrometheusServer(state.meter, resource, PROMETHEUS_PORT)
        try:
            server.start()
        except OSError as exc:
            logger.error("Prometheus server error: %s", exc)
        else:
            threading.Thread(target=_stop_when_set, args=(stop, server), daemon=True).start()

    return state