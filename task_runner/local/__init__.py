"""
Local package for the task runner.

This package provides the service configuration through the config module
and the process supervision through the supervisor package.
"""

from .config import effective_settings

__all__ = ["effective_settings"]
