"""Middleware for ToolWatch Core API

Includes request logging, rate limiting and security headers
"""

import time
import uuid
from typing import Callable

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from .metrics import track_request
from .structured_logger import get_logger, request_context

logger = get_logger("toolwatch.http")


def get_client_identifier(request: Request) -> str:
    """Get a unique identifier for the client"""
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        # First IP in the chain is the original client
        return forwarded_for.split(',')[0].strip()

    if request.client:
        return request.client.host

    return "unknown"


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log all requests with timing and request IDs for traceability"""

    async def dispatch(self, request: Request, call_next: Callable):
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())[:8]
        request.state.request_id = request_id

        start_time = time.time()

        with request_context(request_id=request_id, client_ip=get_client_identifier(request)):
            try:
                response = await call_next(request)
            except Exception as e:
                duration_ms = (time.time() - start_time) * 1000
                logger.exception(
                    f"{request.method} {request.url.path} failed: {e}",
                    duration_ms=round(duration_ms, 2),
                )
                track_request(request.method, request.url.path, 500, duration_ms)
                return JSONResponse(
                    status_code=500,
                    content={
                        "error": "Internal server error",
                        "request_id": request_id
                    }
                )

            duration = time.time() - start_time
            logger.log_request(
                request.method, request.url.path, response.status_code, duration * 1000
            )
            track_request(request.method, request.url.path, response.status_code, duration * 1000)

        response.headers["X-Response-Time"] = f"{duration:.3f}s"
        response.headers["X-Request-ID"] = request_id

        return response


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    In-memory per-client rate limiting with periodic cleanup.

    Evaluations are CPU-bound, so the limit protects the worker threads
    more than the network.
    """

    def __init__(
        self,
        app,
        requests_per_minute: int = 60,
        window_seconds: int = 60,
        max_ips_tracked: int = 10000,
        cleanup_interval: int = 1000
    ):
        super().__init__(app)
        self.requests_per_minute = requests_per_minute
        self.window_seconds = window_seconds
        self.max_ips_tracked = max_ips_tracked
        self.cleanup_interval = cleanup_interval
        self.requests = {}  # ip -> [timestamp, ...]
        self.request_count = 0

    def _cleanup_stale_entries(self, current_time: float):
        """Remove stale entries so the tracker does not grow without bound"""
        window_start = current_time - self.window_seconds

        for ip in list(self.requests):
            valid = [ts for ts in self.requests[ip] if ts > window_start]
            if valid:
                self.requests[ip] = valid
            else:
                del self.requests[ip]

        if len(self.requests) > self.max_ips_tracked:
            sorted_ips = sorted(
                self.requests.items(),
                key=lambda item: max(item[1]),
                reverse=True
            )
            self.requests = dict(sorted_ips[:self.max_ips_tracked])
            logger.warning(
                f"Rate limiter hit max IPs tracked ({self.max_ips_tracked}), "
                f"removed {len(sorted_ips) - self.max_ips_tracked} oldest entries"
            )

    async def dispatch(self, request: Request, call_next: Callable):
        # Read by /health
        request.app.state.rate_limiter = self
        client_id = get_client_identifier(request)
        current_time = time.time()

        self.request_count += 1
        if self.request_count >= self.cleanup_interval:
            self._cleanup_stale_entries(current_time)
            self.request_count = 0

        window_start = current_time - self.window_seconds
        recent = [ts for ts in self.requests.get(client_id, []) if ts > window_start]

        if len(recent) >= self.requests_per_minute:
            logger.warning(
                f"Rate limit exceeded for {client_id}: "
                f"{len(recent)}/{self.requests_per_minute} requests",
                client_ip=client_id,
                path=request.url.path,
            )
            return JSONResponse(
                status_code=429,
                content={
                    "error": "Rate limit exceeded",
                    "code": "RATE_LIMIT_EXCEEDED",
                    "limit": self.requests_per_minute,
                    "window": f"{self.window_seconds} seconds",
                    "retry_after": self.window_seconds
                },
                headers={
                    "Retry-After": str(self.window_seconds),
                    "X-RateLimit-Limit": str(self.requests_per_minute),
                    "X-RateLimit-Remaining": "0",
                    "X-RateLimit-Reset": str(int(current_time + self.window_seconds))
                }
            )

        recent.append(current_time)
        self.requests[client_id] = recent

        response = await call_next(request)

        response.headers["X-RateLimit-Limit"] = str(self.requests_per_minute)
        response.headers["X-RateLimit-Remaining"] = str(max(0, self.requests_per_minute - len(recent)))
        response.headers["X-RateLimit-Reset"] = str(int(current_time + self.window_seconds))

        return response

    def get_stats(self) -> dict:
        """Current rate limiter statistics for monitoring"""
        window_start = time.time() - self.window_seconds
        active = {ip: [ts for ts in tss if ts > window_start] for ip, tss in self.requests.items()}
        return {
            "tracked_ips": len(self.requests),
            "active_ips": sum(1 for tss in active.values() if tss),
            "total_requests_in_window": sum(len(tss) for tss in active.values()),
            "window_seconds": self.window_seconds,
            "requests_per_minute": self.requests_per_minute,
        }


SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Content-Security-Policy": "default-src 'self'",
}


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses"""

    async def dispatch(self, request: Request, call_next: Callable):
        response = await call_next(request)
        response.headers.update(SECURITY_HEADERS)
        return response
