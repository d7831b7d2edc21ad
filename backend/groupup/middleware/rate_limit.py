"""
GroupUp Backend - Write Rate Limiting Middleware
================================================

What:  Per-IP sliding-window limit on state-changing requests.
Why:   Reads (nearby discovery polls every few seconds while the map is open)
       are cheap and must stay responsive; writes create rows and files.
How:   Timestamps of each IP's recent write requests are kept in memory;
       older ones fall out of the window on every check.

Limited methods: POST, PUT, PATCH, DELETE
    except POST /api/groups/nearby and POST /api/buildings/nearest, which
    are reads sent as POST.

Single-process only: each uvicorn worker keeps its own counters.
"""

import logging
import time
from collections import defaultdict
from typing import Dict, List

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from groupup.config import settings
from groupup.exceptions import RateLimitExceededError
from groupup.middleware.request_id import request_id_var

logger = logging.getLogger(__name__)

WRITE_METHODS = {"POST", "PUT", "PATCH", "DELETE"}
READ_ONLY_POSTS = {"/api/groups/nearby", "/api/buildings/nearest"}


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Configuration (from settings):
        rate_limit_requests: writes allowed per window (default 120)
        rate_limit_window:   window length in seconds (default 3600)

    A rejected request gets 429 with a Retry-After header and the standard
    error body.
    """

    def __init__(self, app, **kwargs):
        super().__init__(app, **kwargs)
        self._requests: Dict[str, List[float]] = defaultdict(list)
        self._checks = 0

    @staticmethod
    def is_limited(request: Request) -> bool:
        if request.method not in WRITE_METHODS:
            return False
        return request.url.path not in READ_ONLY_POSTS

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        if not self.is_limited(request):
            return await call_next(request)

        client_ip = request.client.host if request.client else "unknown"
        now = time.time()
        window_start = now - settings.rate_limit_window

        recent = [ts for ts in self._requests[client_ip] if ts > window_start]
        self._requests[client_ip] = recent

        if len(recent) >= settings.rate_limit_requests:
            retry_after = int(recent[0] + settings.rate_limit_window - now) + 1
            error = RateLimitExceededError(retry_after=retry_after)
            logger.warning(
                "Write rate limit exceeded for %s: %d writes in %ds",
                client_ip,
                len(recent),
                settings.rate_limit_window,
            )
            return JSONResponse(
                status_code=429,
                content={
                    "error": "rate_limit_exceeded",
                    "message": error.message,
                    "details": error.context,
                    "request_id": request_id_var.get(""),
                },
                headers={"Retry-After": str(retry_after)},
            )

        recent.append(now)

        self._checks += 1
        if self._checks % 1000 == 0:
            self._cleanup_inactive_ips(window_start)

        return await call_next(request)

    def _cleanup_inactive_ips(self, window_start: float) -> None:
        inactive = [
            ip for ip, stamps in self._requests.items() if not stamps or stamps[-1] < window_start
        ]
        for ip in inactive:
            del self._requests[ip]
        if inactive:
            logger.debug("Dropped rate-limit state for %d idle IPs", len(inactive))
