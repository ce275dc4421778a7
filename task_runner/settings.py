"""
This module contains the configuration settings for the Task Runner service.
It defines the HTTP server, authentication, script launching, task table and
logging settings. Values can be overridden through the environment or a .env file.
"""

import os
import sys
import pathlib
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

#* --- Core Paths ---
WORKING_DIR = pathlib.Path(os.getenv("TASK_WORKING_DIR", os.getcwd()))

#* --- Web Server Settings ---
HOST = os.getenv("HOST", "localhost")
PORT = int(os.getenv("PORT", "3000"))

#* --- Authentication ---
AUTH_USER = os.getenv("AUTH_USER", "admin")
AUTH_PASSWORD = os.getenv("AUTH_PASSWORD", "password")
AUTH_REALM = "Task Runner API"

#* --- Interpreter Configuration ---
# Executables used by the launcher registry for known script types.
NODE_EXECUTABLE = os.getenv("NODE_EXECUTABLE", "node")
PYTHON_EXECUTABLE = os.getenv("PYTHON_EXECUTABLE", sys.executable)
SHELL_EXECUTABLE = os.getenv("SHELL_EXECUTABLE", "sh")
WINDOWS_COMMAND_SHELL = os.getenv("COMSPEC", "cmd.exe")

#* --- Task Table Settings ---
COMPLETED_EVICTION_SECONDS = float(os.getenv("COMPLETED_EVICTION_SECONDS", "60"))
STOPPED_EVICTION_SECONDS = float(os.getenv("STOPPED_EVICTION_SECONDS", "5"))
GRACEFUL_SHUTDOWN_TIMEOUT = float(os.getenv("GRACEFUL_SHUTDOWN_TIMEOUT", "10"))  # seconds before force-killing

#* --- Logging ---
LOG_LEVEL = os.getenv("LOG_LEVEL", "info").lower()
LOG_BUFFER_FLUSH_INTERVAL = 10

# Grafana Loki (for observability)
LOKI_ENABLED = os.getenv("LOKI_ENABLED", "False").lower() in ('true', '1', 't')
LOKI_URL = os.getenv("LOKI_URL", "http://localhost:3100")
LOKI_ORG_ID = os.getenv("LOKI_ORG_ID", "fake")

#* --- Process Titles ---
SERVER_PROCESS_TITLE = "TaskRunner - API Server"
