"""Prometheus exporter for ECS service and task state."""

__version__ = "0.1.0"
