"""Monitors that follow node files, run the node binary and query remote services to update metrics."""