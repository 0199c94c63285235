"""
Logging setup for the framework.
"""

from .log import LOGGER_NAME, build_logger, get_logger, log_traversal

__all__ = [
    "LOGGER_NAME",
    "build_logger",
    "get_logger",
    "log_traversal"
]
