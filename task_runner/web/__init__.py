"""
Web package: the HTTP API in front of the TaskManager.
"""

from .setup import create_app

__all__ = ["create_app"]
