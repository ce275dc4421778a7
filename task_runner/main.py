import sys
import signal
import asyncio
import logging

# Basic console logger for messages BEFORE full setup is complete.
# This logger will be replaced by the full setup later.
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)-8s - [console] - %(message)s',
    stream=sys.stdout
)
log = logging.getLogger("console")

import setproctitle
from hypercorn.config import Config
from hypercorn.asyncio import serve

from task_runner.local.config import effective_settings as config
from task_runner.local.supervisor import TaskManager
from task_runner.log import parse_log_level, setup_logging
from task_runner.web import create_app


def build_hypercorn_config(host: str, port: int) -> Config:
    """Returns the Hypercorn configuration for the API server."""
    hypercorn_config = Config()
    hypercorn_config.bind = [f"{host}:{port}"]
    # Hypercorn's own logs go through the root logger configured by setup_logging.
    hypercorn_config.accesslog = logging.getLogger("hypercorn.access")
    hypercorn_config.errorlog = logging.getLogger("hypercorn.error")
    return hypercorn_config


async def _serve(app, hypercorn_config: Config) -> None:
    shutdown_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, shutdown_event.set)
        except (NotImplementedError, RuntimeError):
            # Windows event loops do not support signal handlers.
            pass
    await serve(app, hypercorn_config, shutdown_trigger=shutdown_event.wait)


def main() -> None:
    """The main entry point for the API server."""
    setproctitle.setproctitle(config.SERVER_PROCESS_TITLE)
    setup_logging(parse_log_level(config.LOG_LEVEL))

    manager = TaskManager(config=config)
    app = create_app(manager, config)

    log.info(f"Task Runner API running on http://{config.HOST}:{config.PORT}")
    log.info(f"Health check: http://{config.HOST}:{config.PORT}/health")
    log.info("API Documentation:")
    log.info("  POST   /api/scripts/run      - Run a new script")
    log.info("  POST   /api/scripts/stop/:id - Stop a running script")
    log.info("  GET    /api/scripts          - List all tracked scripts")
    log.info("  GET    /api/scripts/:id      - Show a tracked script and its output")
    log.info("  GET    /api/status           - Get server status")

    try:
        asyncio.run(_serve(app, build_hypercorn_config(config.HOST, config.PORT)))
    except KeyboardInterrupt:
        log.warning("Interrupted by user.")
    finally:
        # The lifespan shutdown already stopped tracked scripts; this is a no-op then.
        manager.shutdown()
        log.info("Server stopped.")


if __name__ == "__main__":
    main()
