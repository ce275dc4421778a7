import base64
import logging
import binascii
import secrets
from typing import Iterable, Optional, Tuple
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

log = logging.getLogger(__name__)


def parse_basic_credentials(header: Optional[str]) -> Optional[Tuple[str, str]]:
    """
    Extracts the username and password from an `Authorization: Basic ...` header.

    :param header: The raw header value.
    :return: A (username, password) tuple, or None if the header is missing or malformed.
    """
    if not header:
        return None
    scheme, _, encoded = header.partition(" ")
    if scheme.lower() != "basic" or not encoded:
        return None
    try:
        decoded = base64.b64decode(encoded.strip(), validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return None
    username, sep, password = decoded.partition(":")
    if not sep:
        return None
    return username, password


class BasicAuthMiddleware(BaseHTTPMiddleware):
    """Requires HTTP Basic credentials matching the configured user on every non-public path."""

    def __init__(self, app, username: str, password: str, realm: str = "Task Runner API", public_paths: Iterable[str] = ("/health",)):
        super().__init__(app)
        self.username = username
        self.password = password
        self.realm = realm
        self.public_paths = frozenset(public_paths)

    def _is_authorized(self, credentials: Optional[Tuple[str, str]]) -> bool:
        if credentials is None:
            return False
        username, password = credentials
        user_ok = secrets.compare_digest(username.encode("utf-8"), self.username.encode("utf-8"))
        pass_ok = secrets.compare_digest(password.encode("utf-8"), self.password.encode("utf-8"))
        return user_ok and pass_ok

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.url.path in self.public_paths:
            return await call_next(request)

        credentials = parse_basic_credentials(request.headers.get("authorization"))
        if not self._is_authorized(credentials):
            client = request.client.host if request.client else "unknown"
            log.warning(f"Rejected unauthenticated request {request.method} {request.url.path} from {client}")
            return JSONResponse(
                {
                    "error": "Authentication required",
                    "message": "Please provide valid username and password",
                },
                status_code=401,
                headers={"WWW-Authenticate": f'Basic realm="{self.realm}"'},
            )

        return await call_next(request)
