"""Metrics subsystem for leaddesk."""

from leaddesk.metrics.collector import MetricsCollector

__all__ = ["MetricsCollector"]
