"""Middleware to add common security headers to responses."""

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Attach security headers; dispute payloads must never be cached by proxies."""

    def __init__(self, app: ASGIApp, private_prefix: str = "/api") -> None:
        super().__init__(app)
        self.private_prefix = private_prefix

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        response.headers.setdefault("X-Frame-Options", "DENY")
        response.headers.setdefault("Referrer-Policy", "no-referrer")
        if request.url.path.startswith(self.private_prefix):
            response.headers.setdefault("Cache-Control", "no-store")
        return response
