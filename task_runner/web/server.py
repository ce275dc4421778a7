import json
import asyncio
import logging
from typing import Any, Callable, Dict, List, Tuple
from starlette.requests import Request
from starlette.responses import JSONResponse

from task_runner.local.supervisor import TaskManager
from task_runner.local.supervisor.models import isoformat, utc_now

log = logging.getLogger("api_server")


class BadRequest(Exception):
    """Raised when a request body cannot be turned into a run request."""


def get_manager(request: Request) -> TaskManager:
    return request.app.state.manager


async def call_manager(func: Callable[..., Dict[str, Any]], *args) -> Dict[str, Any]:
    """Runs a TaskManager operation off the event loop (spawning and signalling may block briefly)."""
    return await asyncio.get_running_loop().run_in_executor(None, func, *args)


def parse_run_request(body: Any) -> Tuple[str, List[str], bool]:
    """
    Validates the body of a run request.

    :param body: The decoded JSON body.
    :return: A (script, args, one_time) tuple.
    :raises BadRequest: If the body does not describe a valid run request.
    """
    if not isinstance(body, dict):
        raise BadRequest("Request body must be a JSON object")

    script = body.get("script")
    if not script:
        raise BadRequest("Script path is required")
    if not isinstance(script, str):
        raise BadRequest("Script path must be a string")

    args = body.get("args") or []
    if not isinstance(args, list) or not all(isinstance(arg, str) for arg in args):
        raise BadRequest("Args must be a list of strings")

    one_time = body.get("oneTime", False)
    if not isinstance(one_time, bool):
        raise BadRequest("oneTime must be a boolean")

    return script, args, one_time


async def run_script(request: Request) -> JSONResponse:
    """POST /api/scripts/run"""
    try:
        try:
            body = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            raise BadRequest("Request body must be valid JSON")
        script, args, one_time = parse_run_request(body)
    except BadRequest as e:
        return JSONResponse({"error": str(e)}, status_code=400)

    try:
        result = await call_manager(get_manager(request).run_script, script, args, one_time)
        return JSONResponse(result)
    except Exception as e:
        log.error(f"Unexpected error while running '{script}': {e}", exc_info=True)
        return JSONResponse({"error": str(e)}, status_code=500)


async def stop_script(request: Request) -> JSONResponse:
    """POST /api/scripts/stop/{id}"""
    task_id = request.path_params["id"]
    try:
        result = await call_manager(get_manager(request).stop_script, task_id)
        return JSONResponse(result)
    except Exception as e:
        log.error(f"Unexpected error while stopping '{task_id}': {e}", exc_info=True)
        return JSONResponse({"error": str(e)}, status_code=500)


async def list_scripts(request: Request) -> JSONResponse:
    """GET /api/scripts"""
    try:
        return JSONResponse(get_manager(request).list_scripts())
    except Exception as e:
        log.error(f"Unexpected error while listing scripts: {e}", exc_info=True)
        return JSONResponse({"error": str(e)}, status_code=500)


async def get_script(request: Request) -> JSONResponse:
    """GET /api/scripts/{id}"""
    task_id = request.path_params["id"]
    try:
        return JSONResponse(get_manager(request).get_script(task_id))
    except Exception as e:
        log.error(f"Unexpected error while reading script '{task_id}': {e}", exc_info=True)
        return JSONResponse({"error": str(e)}, status_code=500)


async def get_status(request: Request) -> JSONResponse:
    """GET /api/status"""
    try:
        return JSONResponse(get_manager(request).get_status())
    except Exception as e:
        log.error(f"Unexpected error while collecting status: {e}", exc_info=True)
        return JSONResponse({"error": str(e)}, status_code=500)


async def health(request: Request) -> JSONResponse:
    """GET /health (unauthenticated)"""
    return JSONResponse({"status": "ok", "timestamp": isoformat(utc_now())})
