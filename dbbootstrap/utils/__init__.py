"""
Utilities package for dbbootstrap.

Exports shared helpers for logging and stage timing. Keep this package
lightweight and free of driver-specific logic.
"""

from dbbootstrap.utils.logging import configure_logging, get_logger
from dbbootstrap.utils.timing import StageTiming, time_stage

__all__ = [
    "configure_logging",
    "get_logger",
    "StageTiming",
    "time_stage",
]
