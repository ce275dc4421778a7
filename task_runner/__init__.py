"""
Task Runner: an HTTP service that launches local scripts as child processes,
tracks their lifecycle and lets clients stop them.
"""

__version__ = "1.0.0"
