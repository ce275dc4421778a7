"""
The Supervisor package.
Launches scripts as child processes and tracks their lifecycle.

This package contains the central TaskManager class and its helper modules,
which together handle launching, watching, stopping and evicting tasks.
"""
from .manager import TaskManager
from .models import Task, TaskMode, TaskStatus

__all__ = ['TaskManager', 'Task', 'TaskMode', 'TaskStatus']
