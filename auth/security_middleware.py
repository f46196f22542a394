"""
Security middleware for FastAPI:
- Security headers (HSTS, X-Frame-Options, etc.)
- Access logging for admin endpoints
"""

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from loguru import logger


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """
    Add security headers to all responses.

    The API only serves JSON, so the content policy denies everything.
    """

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)

        response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none'"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"

        return response


class AdminAccessLoggingMiddleware(BaseHTTPMiddleware):
    """Log every call to an admin endpoint with its outcome"""

    async def dispatch(self, request: Request, call_next):
        if "/admin" not in request.url.path:
            return await call_next(request)

        client_ip = request.client.host if request.client else "unknown"
        response = await call_next(request)

        logger.warning(
            f"Admin endpoint access: {request.method} {request.url.path} "
            f"from {client_ip} -> {response.status_code}"
        )
        return response
