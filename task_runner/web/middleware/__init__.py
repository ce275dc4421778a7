"""
Middleware package for the web application.

This package contains middleware classes that wrap the API routes.
"""

from .auth import BasicAuthMiddleware

__all__ = ["BasicAuthMiddleware"]
