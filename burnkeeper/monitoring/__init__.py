"""
Monitoring package.

This package contains Prometheus metrics and webhook alerting.
"""

from burnkeeper.monitoring.alerting import Alert, AlertConfig, AlertManager, AlertSeverity, AlertType
from burnkeeper.monitoring.metrics_rich import BurnMetrics

__all__ = [
    "Alert",
    "AlertConfig",
    "AlertManager",
    "AlertSeverity",
    "AlertType",
    "BurnMetrics",
]
