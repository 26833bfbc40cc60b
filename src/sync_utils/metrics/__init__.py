"""
Custom metrics publishing to Prometheus

This module provides utilities for publishing application metrics
to Prometheus for monitoring and alerting.

Usage:
    from sync_utils.metrics import MetricsPublisher, get_or_create_metric

    publisher = MetricsPublisher(port=9091)
    publisher.start()
"""

import logging
from typing import Callable, TypeVar

from prometheus_client import REGISTRY, CollectorRegistry

from .publisher import ApplicationInfo, MetricsPublisher

logger = logging.getLogger(__name__)

T = TypeVar("T")


def get_or_create_metric(
    metric_factory: Callable[[], T],
    metric_name: str,
    registry: CollectorRegistry = REGISTRY,
) -> T:
    """
    Create a metric, or return the existing one if already registered.

    Module reloads (and test collection importing a module twice) would
    otherwise fail with a duplicate timeseries ValueError.

    Args:
        metric_factory: Callable that creates the metric (e.g., lambda: Counter(...))
        metric_name: Name of the metric for lookup if already registered
        registry: Prometheus registry to use (default: global REGISTRY)

    Returns:
        The metric instance (either newly created or existing)
    """
    try:
        return metric_factory()
    except ValueError:
        existing = registry._names_to_collectors.get(metric_name)
        if existing is not None:
            return existing
        raise


__all__ = [
    "MetricsPublisher",
    "ApplicationInfo",
    "get_or_create_metric",
]
