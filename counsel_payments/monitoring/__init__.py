"""Logging, metrics and health checks."""
from counsel_payments.monitoring.health import HealthCheck, HealthCheckError
from counsel_payments.monitoring.logging import setup_logging
from counsel_payments.monitoring.metrics import MetricsCollector, metrics

__all__ = [
    "HealthCheck",
    "HealthCheckError",
    "MetricsCollector",
    "metrics",
    "setup_logging",
]
