from fastapi import Request
import logging
from starlette.middleware.base import BaseHTTPMiddleware

from friendgraph.core.config import settings

logger = logging.getLogger("app")

class AuthLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        path = request.url.path

        # Every friends and notifications endpoint needs a bearer token
        if not request.headers.get("Authorization") and path.startswith(settings.API_V1_STR):
            logger.warning(f"Protected endpoint {path} accessed without auth header")

        response = await call_next(request)

        # Log auth-related status codes
        if response.status_code in [401, 403]:
            logger.warning(f"Auth error: {response.status_code} on {path}")

        return response
