# FILE: quizplayer/middleware/rate_limit.py
"""
Rate limiting middleware (simple in-memory, sliding one-minute window)

Keyed by client address plus session token, so several learners behind one
address do not share a budget. Proctoring signals arrive in bursts, hence the
generous default.
"""
import logging
import time
from collections import defaultdict
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

logger = logging.getLogger(__name__)

EXEMPT_PATHS = ("/health",)


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Simple in-memory rate limiter"""

    def __init__(self, app, rpm: int = 240):
        super().__init__(app)
        self.rpm = rpm
        self.requests = defaultdict(list)

    def _key(self, request: Request) -> str:
        client_ip = request.client.host if request.client else "unknown"
        token = request.headers.get("x-session-token", "")
        return f"{client_ip}:{token}"

    async def dispatch(self, request: Request, call_next):
        if request.url.path.startswith(EXEMPT_PATHS):
            return await call_next(request)

        key = self._key(request)
        now = time.time()

        # Clean old entries
        self.requests[key] = [
            ts for ts in self.requests[key]
            if now - ts < 60
        ]

        if len(self.requests[key]) >= self.rpm:
            logger.warning(f"Rate limit exceeded for {key}")
            return JSONResponse(
                status_code=429,
                content={"error": "Rate limit exceeded", "detail": f"More than {self.rpm} requests per minute"}
            )

        self.requests[key].append(now)
        return await call_next(request)
