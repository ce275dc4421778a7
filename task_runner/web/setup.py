import asyncio
import logging
import contextlib
from typing import AsyncIterator, Optional
from starlette.routing import Route
from starlette.middleware import Middleware
from starlette.applications import Starlette

from task_runner.local.config import effective_settings
from task_runner.local.supervisor import TaskManager
from task_runner.web import server
from task_runner.web.middleware import BasicAuthMiddleware

log = logging.getLogger("api_server")

routes = [
    Route("/api/scripts/run", endpoint=server.run_script, methods=["POST"]),
    Route("/api/scripts/stop/{id}", endpoint=server.stop_script, methods=["POST"]),
    Route("/api/scripts", endpoint=server.list_scripts, methods=["GET"]),
    Route("/api/scripts/{id}", endpoint=server.get_script, methods=["GET"]),
    Route("/api/status", endpoint=server.get_status, methods=["GET"]),
    Route("/health", endpoint=server.health, methods=["GET"]),
]


def create_app(manager: Optional[TaskManager] = None, config=None) -> Starlette:
    """
    Builds the Starlette application around a TaskManager.

    The manager is stored on `app.state.manager`; on application shutdown all
    tracked scripts it still runs are stopped.

    :param manager: The TaskManager serving the API; a new one is created if omitted.
    :param config: Settings object; defaults to the process-wide effective settings.
    """
    config = config or effective_settings
    manager = manager or TaskManager(config=config)

    @contextlib.asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        log.info("Task Runner API ready.")
        yield
        log.info("Server shutting down...")
        await asyncio.get_running_loop().run_in_executor(None, manager.shutdown)

    middleware = [
        Middleware(
            BasicAuthMiddleware,
            username=config.AUTH_USER,
            password=config.AUTH_PASSWORD,
            realm=config.AUTH_REALM,
        ),
    ]

    app = Starlette(debug=False, routes=routes, middleware=middleware, lifespan=lifespan)
    app.state.manager = manager
    return app
