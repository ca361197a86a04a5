import logging
import time
from typing import Callable, Optional, Tuple

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from synth.core.errors import RateLimitError, app_error_handler
from synth.core.logging import LOGGER_NAME, get_request_id
from synth.core.ratelimit import InMemoryRateLimiter, RateLimitConfig, RoutePolicy, build_rate_limit_config

logger = logging.getLogger(f"{LOGGER_NAME}.ratelimit")

MUTATING_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})

# Stripe retries deliveries on its own schedule; health checks must always answer
EXEMPT_PREFIXES = ("/api/billing/webhook", "/healthz")

RUN_POLICY_FACTOR = 0.25


def is_run_request(method: str, path: str) -> bool:
    return method == "POST" and path.startswith("/api/workflows/") and path.endswith("/run")


def client_identity(request: Request) -> str:
    user_id = request.headers.get("X-User-Id")
    if user_id:
        return f"user:{user_id}"
    auth = request.headers.get("Authorization")
    if auth:
        # Token tail only; the header itself is never stored
        return f"token:{auth[-16:]}"
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return f"ip:{forwarded.split(',')[0].strip()}"
    return f"ip:{request.client.host if request.client else 'unknown'}"


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Answers 429 with Retry-After once a client drains its bucket. Off unless enabled."""

    def __init__(self, app, *, config: Optional[RateLimitConfig] = None, time_fn: Optional[Callable[[], float]] = None):
        super().__init__(app)
        self.config = config or build_rate_limit_config()
        self.limiter = InMemoryRateLimiter(time_fn=time_fn or time.monotonic)

    def classify(self, request: Request) -> Optional[Tuple[str, RoutePolicy]]:
        path = request.url.path
        if path.startswith(EXEMPT_PREFIXES):
            return None

        method = request.method.upper()
        if is_run_request(method, path):
            return "run", self.config.scaled(RUN_POLICY_FACTOR)
        return ("mutation" if method in MUTATING_METHODS else "read"), self.config.scaled(1.0)

    async def dispatch(self, request: Request, call_next):
        if not self.config.enabled:
            return await call_next(request)

        classified = self.classify(request)
        if classified is None:
            return await call_next(request)

        category, policy = classified
        wait = self.limiter.hit(f"{client_identity(request)}:{category}", policy)
        if wait is None:
            return await call_next(request)

        rid = getattr(request.state, "request_id", None) or get_request_id()
        logger.warning(
            "ratelimit.blocked",
            extra={"request_id": rid, "path": request.url.path, "category": category, "retry_after": wait},
        )
        response = await app_error_handler(
            request,
            RateLimitError(f"Too many {category} requests; retry in {wait}s", request_id=rid),
        )
        response.headers.update(
            {
                "Retry-After": str(wait),
                "X-RateLimit-Limit": str(policy.per_minute),
                "X-RateLimit-Remaining": "0",
            }
        )
        return response
