"""
Configuration package.

This package contains settings loading and validation, and the milestone
schedule.
"""

from burnkeeper.config.config import Settings
from burnkeeper.config.schedule import DEFAULT_SCHEDULE, load_schedule

__all__ = [
    "Settings",
    "DEFAULT_SCHEDULE",
    "load_schedule",
]
