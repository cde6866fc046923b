"""
Infrastructure package.

This package contains logging configuration.
"""

from burnkeeper.infra.logging_cfg import LOGGER_NAME, build_logger, log_event

__all__ = [
    "LOGGER_NAME",
    "build_logger",
    "log_event",
]
