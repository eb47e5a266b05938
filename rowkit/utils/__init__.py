"""
Utility helpers for rowkit.

Currently exposes the logging setup shared by the library and the CLI.
"""

from rowkit.utils.logging import configure_logging, get_logger

__all__ = [
    "configure_logging",
    "get_logger",
]
