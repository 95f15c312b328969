"""
Security middleware: per-client rate limiting, response headers, CORS and trusted hosts.
"""
import time
from collections import defaultdict, deque
from typing import Deque, Dict, List, Optional, Tuple

from fastapi import Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from core.logger import logger


class SlidingWindow:
    """Request timestamps of one client, trimmed to the longest window."""

    def __init__(self, limits: List[Tuple[int, float]]):
        # (max requests, window seconds)
        self.limits = limits
        self.horizon = max(window for _, window in limits)
        self.hits: Deque[float] = deque()

    def allow(self, now: float) -> bool:
        while self.hits and now - self.hits[0] >= self.horizon:
            self.hits.popleft()
        for max_requests, window in self.limits:
            recent = sum(1 for t in self.hits if now - t < window)
            if recent >= max_requests:
                return False
        self.hits.append(now)
        return True

    def idle(self, now: float) -> bool:
        return not self.hits or now - self.hits[-1] >= self.horizon


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Per-IP rate limiting. Over-limit requests get a 429 JSON body in the
    same shape as every other API error.
    """

    def __init__(self, app, requests_per_minute: int = 120, requests_per_hour: int = 3000,
                 exempt_paths: Optional[List[str]] = None):
        """
        Args:
            app: FastAPI application
            requests_per_minute: Max requests per minute per IP
            requests_per_hour: Max requests per hour per IP
            exempt_paths: Path prefixes never counted (static uploads, health checks)
        """
        super().__init__(app)
        self.limits = [(requests_per_minute, 60.0), (requests_per_hour, 3600.0)]
        self.exempt_paths = exempt_paths or []
        self.windows: Dict[str, SlidingWindow] = defaultdict(lambda: SlidingWindow(self.limits))
        self.cleanup_interval = 300  # Drop idle clients every 5 minutes
        self.last_cleanup = time.time()

    async def dispatch(self, request: Request, call_next):
        if any(request.url.path.startswith(p) for p in self.exempt_paths):
            return await call_next(request)

        client_ip = request.client.host if request.client else "unknown"
        now = time.time()
        if now - self.last_cleanup > self.cleanup_interval:
            self._cleanup(now)
            self.last_cleanup = now

        if not self.windows[client_ip].allow(now):
            logger.warning(f"Rate limit exceeded for IP: {client_ip} ({request.method} {request.url.path})")
            return JSONResponse(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                content={"success": False, "message": "Rate limit exceeded. Please try again later."},
                headers={"Retry-After": "60"},
            )
        return await call_next(request)

    def _cleanup(self, now: float):
        for ip in [ip for ip, window in self.windows.items() if window.idle(now)]:
            del self.windows[ip]


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to responses."""

    HEADERS = {
        "X-Content-Type-Options": "nosniff",
        "X-Frame-Options": "DENY",
        "Referrer-Policy": "strict-origin-when-cross-origin",
        "Permissions-Policy": "camera=(self), geolocation=(self)",
    }

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        # No CSP: the API is called cross-origin by the SPA
        for name, value in self.HEADERS.items():
            response.headers.setdefault(name, value)
        return response


def setup_cors(app, allowed_origins: List[str], allowed_methods: Optional[List[str]] = None):
    """
    Setup CORS middleware.

    Args:
        app: FastAPI application
        allowed_origins: Frontend origins
        allowed_methods: Allowed HTTP methods (defaults to the ones the API uses)
    """
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=allowed_methods or ["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["*"],
    )


def setup_trusted_hosts(app, allowed_hosts: List[str]):
    """Reject requests whose Host header is not in allowed_hosts (production only)."""
    app.add_middleware(TrustedHostMiddleware, allowed_hosts=allowed_hosts)
