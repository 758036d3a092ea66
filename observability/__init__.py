"""Observability package: logging setup and Prometheus metrics."""

from .logging import setup_logging
from .prometheus_metrics import (
    setup_prometheus_metrics,
    PrometheusMiddleware,
    knowledge_registry
)

__all__ = [
    'setup_logging',
    'setup_prometheus_metrics',
    'PrometheusMiddleware',
    'knowledge_registry'
]
