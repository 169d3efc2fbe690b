"""
Security middleware for the verification API.
Implements per-client rate limiting, security headers and security-focused request logging.
"""
import time
from typing import Callable
from fastapi import Request, Response, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp
import logging

from services.security import security_config, SecurityUtils
from services.rate_limiter import get_rate_limiter

logger = logging.getLogger(__name__)

class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """
    Adds security headers to all responses.
    Implements OWASP security header recommendations.
    """

    def __init__(self, app: ASGIApp):
        super().__init__(app)
        self.security_headers = {
            "X-Content-Type-Options": "nosniff",
            "X-Frame-Options": "DENY",
            "Strict-Transport-Security": "max-age=31536000; includeSubDomains",
            "Content-Security-Policy": "default-src 'none'; frame-ancestors 'none';",
            "Referrer-Policy": "strict-origin-when-cross-origin",
            "Cache-Control": "no-store"
        }

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        response = await call_next(request)

        if security_config.enable_security_headers:
            for header, value in self.security_headers.items():
                response.headers[header] = value

            # Remove server header to avoid version disclosure
            if "Server" in response.headers:
                del response.headers["Server"]

        return response

class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Per client IP and path rate limiting for everything except the verification endpoints.

    Issuance and verification are bounded per email by VerificationRateLimiter, which answers
    with the endpoint's own 429 body; malformed verification requests must not use up slots.
    """

    exempt_paths = frozenset({"/issue-verification-code", "/verify-code"})

    def __init__(self, app: ASGIApp):
        super().__init__(app)
        self.rate_limiter = get_rate_limiter()

        self.endpoint_limits = {
            "/ban-user": {"requests": 30, "window": 60},
            "/notify-new-offer": {"requests": 10, "window": 60},
            "/record-login": {"requests": 30, "window": 60},
            "default": {"requests": security_config.rate_limit_requests_per_minute, "window": 60}
        }

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.method == "OPTIONS" or request.url.path in self.exempt_paths:
            return await call_next(request)

        client_ip = SecurityUtils.get_client_ip(request)
        path = request.url.path

        limit_config = self.endpoint_limits.get(path, self.endpoint_limits["default"])
        rate_limit_key = f"rate_limit:{client_ip}:{path}"

        rate_result = await self.rate_limiter.check_rate_limit(
            rate_limit_key,
            window_seconds=limit_config["window"],
            max_requests=limit_config["requests"]
        )

        if not rate_result.allowed:
            return JSONResponse(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                content={
                    "error": "Too many requests. Please try again later.",
                    "retryAfter": rate_result.retry_after
                },
                headers={
                    "X-RateLimit-Limit": str(limit_config["requests"]),
                    "X-RateLimit-Remaining": str(rate_result.remaining),
                    "X-RateLimit-Reset": str(int(rate_result.reset_time.timestamp())),
                    "Retry-After": str(rate_result.retry_after or limit_config["window"])
                }
            )

        response = await call_next(request)

        response.headers["X-RateLimit-Limit"] = str(limit_config["requests"])
        response.headers["X-RateLimit-Remaining"] = str(rate_result.remaining)
        response.headers["X-RateLimit-Reset"] = str(int(rate_result.reset_time.timestamp()))

        return response

class SecurityLoggingMiddleware(BaseHTTPMiddleware):
    """
    Security-focused request/response logging middleware.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.time()
        try:
            response = await call_next(request)
        except Exception as e:
            # Rendered here so the outer CORS middleware still decorates the response
            SecurityUtils.log_security_event(
                "internal_server_error",
                {
                    "path": request.url.path,
                    "method": request.method,
                    "error_type": type(e).__name__
                },
                client_ip=SecurityUtils.get_client_ip(request)
            )
            logger.exception(f"Internal server error: {e}")
            response = JSONResponse(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                content={"error": "Internal server error"}
            )
        process_time = time.time() - start_time

        if response.status_code >= 400:
            SecurityUtils.log_security_event(
                "http_error_response",
                {
                    "method": request.method,
                    "path": request.url.path,
                    "status_code": response.status_code,
                    "process_time": round(process_time, 3),
                    "user_agent": request.headers.get("user-agent", "")
                },
                client_ip=SecurityUtils.get_client_ip(request)
            )

        response.headers["X-Process-Time"] = str(round(process_time, 3))
        return response
