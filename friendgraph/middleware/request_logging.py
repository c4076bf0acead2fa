from typing import Optional
import logging
import time

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from friendgraph.core import security
from friendgraph.core.config import settings

logger = logging.getLogger("app")

FRIENDS_PREFIX = f"{settings.API_V1_STR}/friends"

def acting_user(request: Request) -> Optional[str]:
    """User id carried by the bearer token, if it verifies"""
    scheme, _, token = request.headers.get("Authorization", "").partition(" ")
    if scheme.lower() != "bearer" or not token:
        return None
    return security.verify_access_token(token)

class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Logs every request with the acting user and its timing.

    Relationship writes (anything but GET under the friends prefix) are logged
    at INFO so the request history of a pair can be followed in the logs;
    other requests are logged at DEBUG.
    """

    async def dispatch(self, request: Request, call_next):
        start_time = time.perf_counter()
        method = request.method
        path = request.url.path
        user_id = acting_user(request) or "anonymous"

        relationship_write = path.startswith(FRIENDS_PREFIX) and method != "GET"
        level = logging.INFO if relationship_write else logging.DEBUG
        logger.log(level, f"Request: {method} {path} by {user_id}")

        response = await call_next(request)

        process_time = time.perf_counter() - start_time
        response.headers["X-Process-Time"] = f"{process_time:.4f}"
        if process_time > settings.SLOW_REQUEST_SECONDS:
            logger.warning(f"Slow request: {method} {path} by {user_id} took {process_time:.4f}s")
        logger.log(level, f"Response: {response.status_code} for {method} {path} in {process_time:.4f}s")

        return response
