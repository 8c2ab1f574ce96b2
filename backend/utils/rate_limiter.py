from fastapi import Request, HTTPException, status
import time
from collections import defaultdict, deque
from typing import Deque, Dict


class RateLimiter:
    """
    Sliding-window limit per client IP, used as a FastAPI dependency.

    Payment links are public, so anything reachable through one is limited
    per caller rather than per account.
    """

    def __init__(self, requests_limit: int, time_window: int):
        self.requests_limit = requests_limit
        self.time_window = time_window  # in seconds
        self.hits: Dict[str, Deque[float]] = defaultdict(deque)
        self.cleanup_interval = 600
        self.last_cleanup = time.monotonic()

    @staticmethod
    def client_key(request: Request) -> str:
        # First X-Forwarded-For entry is the original client behind a proxy
        forwarded_for = request.headers.get("X-Forwarded-For")
        if forwarded_for:
            return forwarded_for.split(",")[0].strip()
        return request.client.host if request.client else "127.0.0.1"

    async def __call__(self, request: Request):
        now = time.monotonic()
        if now - self.last_cleanup > self.cleanup_interval:
            self._forget_idle(now)

        hits = self.hits[self.client_key(request)]
        while hits and now - hits[0] >= self.time_window:
            hits.popleft()

        if len(hits) >= self.requests_limit:
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail="Too many requests. Please try again later."
            )

        hits.append(now)
        return True

    def _forget_idle(self, now: float):
        idle = [key for key, hits in self.hits.items() if not hits or now - hits[-1] > self.time_window]
        for key in idle:
            del self.hits[key]
        self.last_cleanup = now


# In-memory limits; a multi-process deployment would need a shared backend
group_creation_rate_limiter = RateLimiter(requests_limit=10, time_window=60)

# Opening a link may fabricate records, so it is limited too
payment_link_rate_limiter = RateLimiter(requests_limit=30, time_window=60)

payment_submission_rate_limiter = RateLimiter(requests_limit=5, time_window=60)
