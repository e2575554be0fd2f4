"""Command-line entry point of the exporter."""

from __future__ import annotations

import argparse
import json
import signal
import sys
import threading

from hlexporter import logger
from hlexporter.config import Flags, load_config
from hlexporter.exporter import run_exporter
from hlexporter.metrics.exposition import init_metrics
from hlexporter.metrics.state import MetricsConfig
from hlexporter.monitors.status import get_validator_status

DEFAULT_OTLP_ENDPOINT = "otel.hyperliquid.validao.xyz"

USAGE = "\n".join([
    "Usage: hl_exporter <command> [options]",
    "Commands:",
    "  start    Start the Hyperliquid exporter",
    "\nOptions:",
    '  --log-level        Set the logging level (default: "debug")',
    "  --enable-prom      Enable Prometheus endpoint (default: true)",
    "  --disable-prom     Disable Prometheus endpoint",
    "  --enable-otlp      Enable OTLP export (default: false)",
    "  --otlp-endpoint    OTLP endpoint (default: otel.hyperliquid.validao.xyz)",
    "  --node-home        Node home directory (overrides env var)",
    "  --node-binary      Node binary path (overrides env var)",
    "  --alias            Node alias (required when OTLP is enabled)",
    "  --chain            Chain type (required when OTLP is enabled: 'mainnet' or 'testnet')",
    "  --otlp-insecure    Use insecure connection for OTLP (default: false)",
])

_TRUE = {"1", "t", "T", "TRUE", "true", "True"}
_FALSE = {"0", "f", "F", "FALSE", "false", "False"}


def _boolean(text: str) -> bool:
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise argparse.ArgumentTypeError(f"invalid boolean value {text!r}")


def _add_bool(parser: argparse.ArgumentParser, name: str, default: bool, help: str) -> None:
    parser.add_argument(
        name, type=_boolean, nargs="?", const=True, default=default, metavar="BOOL", help=help
    )


def build_parser() -> argparse.ArgumentParser:
    """Return the parser for the options of the ``start`` command."""
    parser = argparse.ArgumentParser(prog="hl_exporter start", allow_abbrev=False)
    parser.add_argument(
        "--log-level", default="info", help="Log level (debug, info, warning, error)"
    )
    _add_bool(parser, "--enable-prom", True, "Enable Prometheus endpoint (default: true)")
    _add_bool(parser, "--disable-prom", False, "Disable Prometheus endpoint")
    _add_bool(parser, "--enable-otlp", False, "Enable OTLP export")
    parser.add_argument(
        "--otlp-endpoint",
        default=DEFAULT_OTLP_ENDPOINT,
        help=f"OTLP endpoint (default: {DEFAULT_OTLP_ENDPOINT})",
    )
    parser.add_argument("--node-home", default="", help="Node home directory (overrides env var)")
    parser.add_argument("--node-binary", default="", help="Node binary path (overrides env var)")
    parser.add_argument("--alias", default="", help="Node alias (required when OTLP is enabled)")
    parser.add_argument(
        "--chain",
        default="",
        help="Chain type (required when OTLP is enabled: 'mainnet' or 'testnet')",
    )
    _add_bool(
        parser, "--otlp-insecure", False, "Use insecure connection for OTLP (default: false)"
    )
    return parser


def _install_signal_handlers(stop: threading.Event) -> dict:
    if threading.current_thread() is not threading.main_thread():
        return {}
    previous = {}
    for sig in (signal.SIGINT, signal.SIGTERM):
        previous[sig] = signal.signal(sig, lambda *_: stop.set())
    return previous


def main(argv: list[str] | None = None) -> int:
    """Run the exporter command line; return the exit status."""
    args = list(sys.argv[1:] if argv is None else argv)
    if not args:
        print(USAGE)
        return 1

    command, *rest = args
    if command != "start":
        print(f"{json.dumps(command)} is not a valid command.")
        return 1
    options = build_parser().parse_args(rest)

    try:
        logger.set_log_level(options.log_level)
    except ValueError as exc:
        print(f"Error setting log level: {exc}")
        return 1

    chain = options.chain.lower()
    if chain and chain not in ("mainnet", "testnet"):
        logger.error("--chain flag must be either 'mainnet' or 'testnet' (case insensitive)")
        return 1

    cfg = load_config(
        Flags(node_home=options.node_home, node_binary=options.node_binary, chain=chain)
    )

    if options.enable_otlp:
        if not options.alias:
            logger.error(
                "--alias flag is required when OTLP is enabled. This can be whatever "
                "you choose and is just an identifier for your node."
            )
            return 1
        if not chain:
            logger.error("--chain flag is required when OTLP is enabled")
            return 1

    stop = threading.Event()
    previous = _install_signal_handlers(stop)
    try:
        validator_address, is_validator = get_validator_status(cfg.node_home)
        metrics_config = MetricsConfig(
            enable_prometheus=not options.disable_prom and options.enable_prom,
            enable_otlp=options.enable_otlp,
            otlp_endpoint=options.otlp_endpoint,
            otlp_insecure=options.otlp_insecure,
            alias=options.alias,
            chain=chain,
            node_home=cfg.node_home,
            validator_address=validator_address,
            is_validator=is_validator,
        )
        try:
            metrics = init_metrics(metrics_config, stop)
        except (RuntimeError, OSError) as exc:
            logger.error("Failed to initialize metrics: %s", exc)
            stop.set()
            return 1

        run_exporter(cfg, metrics, stop)
        logger.info("Shutting down gracefully")
        return 0
    finally:
        stop.set()
        for sig, handler in previous.items():
            signal.signal(sig, handler)