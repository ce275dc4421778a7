import sys
import logging

from task_runner.local.config import effective_settings
from task_runner.log.handler import LokiHandler

LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "critical": logging.CRITICAL,
}


class MainFormatter(logging.Formatter):
    """A custom formatter to handle regular logs and raw script output."""

    def __init__(self) -> None:
        super().__init__('%(asctime)s - %(levelname)-8s - [%(name)s] - %(message)s')

    def format(self, record):
        # Script output is logged under 'proc.<task id>' by the process watcher.
        if record.name.startswith('proc.'):
            return f"[{record.name.split('.', 1)[1]}] {record.getMessage()}"
        return super().format(record)


def parse_log_level(name: str, default: int = logging.INFO) -> int:
    """
    Maps a level name such as 'info' or 'DEBUG' to its logging constant.

    :param name: The level name from the configuration.
    :param default: Returned for unknown names.
    """
    return LOG_LEVELS.get(str(name).strip().lower(), default)


def setup_logging(console_level: int = logging.INFO, config=None) -> None:
    """
    Configures the root logger for the service.
    This sets up handlers for the console and optionally Loki,
    clearing any previously configured handlers to prevent duplication.

    :param console_level: The logging level for the console output (e.g., logging.INFO).
    :param config: Settings object; defaults to the process-wide effective settings.
    """
    config = config or effective_settings

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)

    # Clear any existing handlers to prevent re-adding them on re-runs
    if root_logger.hasHandlers():
        root_logger.handlers.clear()

    # --- Console Handler ---
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(console_level)
    console_handler.setFormatter(MainFormatter())
    root_logger.addHandler(console_handler)

    # --- Loki Handler (conditional) ---
    if config.LOKI_ENABLED:
        try:
            loki_handler = LokiHandler(
                url=config.LOKI_URL,
                org_id=config.LOKI_ORG_ID,
                flush_interval=config.LOG_BUFFER_FLUSH_INTERVAL,
            )
            loki_handler.setLevel(logging.INFO) # Avoid spamming Loki with DEBUG logs
            root_logger.addHandler(loki_handler)
            root_logger.info(f"Grafana Loki logging handler initialized for {config.LOKI_URL}.")
        except Exception as e:
            root_logger.error(f"Failed to initialize Grafana Loki logging handler: {e}")
