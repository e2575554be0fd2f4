"""Metrics exporter for Hyperliquid nodes, with Prometheus and OTLP/HTTP output."""

__version__ = "0.1.0"