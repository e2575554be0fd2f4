"""Metric instruments, the shared metric state, and Prometheus and OTLP exposition."""