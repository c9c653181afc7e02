"""Shared utilities."""

from sprint_service.utils.logging import get_logger, setup_logging
from sprint_service.utils.metrics import get_metrics

__all__ = [
    "get_logger",
    "setup_logging",
    "get_metrics",
]
