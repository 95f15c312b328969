"""
Authentication middleware: early check on every non-public route.
Token validation itself is done by the FastAPI dependencies in auth/dependencies.py.
"""
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from typing import List, Optional

from core.logger import logger

# Matched exactly
PUBLIC_PATHS: List[str] = [
    "/",
    "/health",
    "/docs",
    "/openapi.json",
    "/redoc",
    "/api/auth/send-otp",
    "/api/auth/register",
    "/api/auth/login",
    "/api/auth/logout",
    "/api/auth/me",
    "/api/auth/test-email",
]

# Matched by prefix
PUBLIC_PREFIXES: List[str] = [
    "/uploads/",
    "/docs/",
]


class AuthRequiredMiddleware(BaseHTTPMiddleware):
    """
    Logs requests to protected routes that carry no credentials.

    Requests are never blocked here so the dependencies can answer with the
    proper error body.
    """

    def __init__(self, app, public_paths: Optional[List[str]] = None,
                 public_prefixes: Optional[List[str]] = None):
        super().__init__(app)
        self.public_paths = set(public_paths or PUBLIC_PATHS)
        self.public_prefixes = public_prefixes or PUBLIC_PREFIXES

    def is_public(self, path: str) -> bool:
        return path in self.public_paths or any(path.startswith(p) for p in self.public_prefixes)

    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        if self.is_public(path) or request.method == "OPTIONS":
            return await call_next(request)

        # Event streams carry the token as ?token= because EventSource cannot set headers
        has_credentials = request.headers.get("authorization") or request.query_params.get("token")
        if not has_credentials:
            client = request.client.host if request.client else "unknown"
            logger.warning(f"Request without authentication: {request.method} {path} from {client}")

        return await call_next(request)
