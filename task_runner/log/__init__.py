"""
Logging module for the service.
This module provides functionality to set up console and Loki logging.
"""

from .setup import parse_log_level, setup_logging

__all__ = ["parse_log_level", "setup_logging"]
