"""
HTTP Middleware

Security headers, request logging and per-IP rate limiting for the
storefront-facing API.
"""
import json
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, Optional, Tuple

from fastapi import Request, status
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

logger = logging.getLogger(__name__)


def client_ip(request: Request, trusted_proxies: Iterable[str] = ()) -> str:
    """
    Address of the calling client.

    X-Forwarded-For is only honored when the direct peer is a trusted proxy;
    hops are read right to left and the first untrusted one wins.
    """
    peer = request.client.host if request.client else "Unknown"
    trusted = set(trusted_proxies)
    if peer not in trusted:
        return peer

    hops = [hop.strip() for hop in request.headers.get("X-Forwarded-For", "").split(",") if hop.strip()]
    for hop in reversed(hops):
        if hop not in trusted:
            return hop
    return peer


# ============================================================================
# Security Headers
# ============================================================================

class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """
    Adds the usual hardening headers to every response.

    No Content-Security-Policy: the API only serves JSON to the storefront.
    """

    HEADERS = {
        "X-Content-Type-Options": "nosniff",
        "X-Frame-Options": "SAMEORIGIN",
        "X-DNS-Prefetch-Control": "off",
        "X-Download-Options": "noopen",
        "X-Permitted-Cross-Domain-Policies": "none",
        "Referrer-Policy": "no-referrer",
        "Strict-Transport-Security": "max-age=15552000; includeSubDomains",
        "Cross-Origin-Opener-Policy": "same-origin",
        "Cross-Origin-Resource-Policy": "same-origin",
    }

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        response = await call_next(request)
        for key, value in self.HEADERS.items():
            response.headers.setdefault(key, value)
        return response


# ============================================================================
# Request Logging
# ============================================================================

class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Logs method, path, client IP and a truncated user agent."""

    def __init__(self, app, trusted_proxies: Iterable[str] = ()):
        super().__init__(app)
        self.trusted_proxies = tuple(trusted_proxies)

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        user_agent = request.headers.get("User-Agent", "Unknown")
        logger.info(
            f"{request.method} {request.url.path} - IP: {client_ip(request, self.trusted_proxies)} - UA: {user_agent[:50]}"
        )
        return await call_next(request)


# ============================================================================
# Rate Limiting
# ============================================================================

@dataclass
class RateLimitRule:
    """At most max_requests per client within window_seconds."""
    max_requests: int
    window_seconds: int
    error: str = "Too many requests from this IP, please try again later."


@dataclass
class RateLimitState:
    count: int = 0
    window_reset: float = 0


class FixedWindowRateLimiter:
    """
    In-memory fixed-window counter keyed by client IP.

    Counters whose window has ended are evicted at most once per window.
    """

    def __init__(self, rule: RateLimitRule, clock: Callable[[], float] = time.monotonic):
        self.rule = rule
        self._clock = clock
        self._states: Dict[str, RateLimitState] = {}
        self._lock = threading.Lock()
        self._next_eviction = 0.0

    def check(self, key: str) -> Tuple[bool, Dict[str, str]]:
        """
        Count a request for key.

        Returns:
            Tuple of (allowed, headers) where headers carry RateLimit-* info
        """
        now = self._clock()
        with self._lock:
            if now >= self._next_eviction:
                self._evict_expired(now)

            state = self._states.get(key)
            if state is None or now >= state.window_reset:
                state = RateLimitState(count=0, window_reset=now + self.rule.window_seconds)
                self._states[key] = state

            state.count += 1
            remaining = max(0, self.rule.max_requests - state.count)
            reset_in = max(0, int(state.window_reset - now))
            allowed = state.count <= self.rule.max_requests

        headers = {
            "RateLimit-Limit": str(self.rule.max_requests),
            "RateLimit-Remaining": str(remaining),
            "RateLimit-Reset": str(reset_in),
        }
        if not allowed:
            headers["Retry-After"] = str(reset_in)
        return allowed, headers

    def _evict_expired(self, now: float) -> None:
        expired = [key for key, state in self._states.items() if now >= state.window_reset]
        for key in expired:
            del self._states[key]
        self._next_eviction = now + self.rule.window_seconds

    def __len__(self) -> int:
        with self._lock:
            return len(self._states)


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Applies a general limit to every route and a stricter one to the
    transaction routes.
    """

    def __init__(
        self,
        app,
        general: RateLimitRule,
        strict: Optional[RateLimitRule] = None,
        strict_paths: Iterable[str] = (),
        exclude_paths: Iterable[str] = ("/api/health",),
        trusted_proxies: Iterable[str] = (),
    ):
        super().__init__(app)
        self.general = FixedWindowRateLimiter(general)
        self.strict = FixedWindowRateLimiter(strict) if strict else None
        self.strict_paths = set(strict_paths)
        self.exclude_paths = set(exclude_paths)
        self.trusted_proxies = tuple(trusted_proxies)

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        path = request.url.path
        if path in self.exclude_paths or request.method == "OPTIONS":
            return await call_next(request)

        key = client_ip(request, self.trusted_proxies)
        limiter = self.general
        allowed, headers = self.general.check(key)

        if allowed and self.strict and path in self.strict_paths:
            limiter = self.strict
            allowed, headers = self.strict.check(key)

        if not allowed:
            logger.warning(f"Rate limit exceeded for {key} on {path}")
            retry_minutes = max(1, limiter.rule.window_seconds // 60)
            return Response(
                content=json.dumps({
                    "error": limiter.rule.error,
                    "retryAfter": f"{retry_minutes} minutes",
                }),
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                headers=headers,
                media_type="application/json",
            )

        response = await call_next(request)
        for header, value in headers.items():
            response.headers[header] = value
        return response
