from typing import Dict, Any
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import asyncio
import math

from fastapi import Request


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    reset_at: datetime
    retry_after: int = 0

    def headers(self) -> Dict[str, str]:
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(int(self.reset_at.timestamp())),
        }
        if not self.allowed:
            headers["Retry-After"] = str(self.retry_after)
        return headers


class RateLimiter:
    """Fixed-window request counter per client, kept in memory"""

    def __init__(self, max_requests: int = 30, window_seconds: int = 60, prune_threshold: int = 1000):
        self.max_requests = max_requests
        self.window = timedelta(seconds=window_seconds)
        self.prune_threshold = prune_threshold
        self.windows: Dict[str, Dict[str, Any]] = {}
        self._lock = asyncio.Lock()

    async def hit(self, client_id: str) -> RateLimitDecision:
        """Count one request for the client and decide whether it may proceed"""

        async with self._lock:
            now = datetime.now(timezone.utc)
            if len(self.windows) >= self.prune_threshold:
                self._drop_expired(now)
            entry = self.windows.get(client_id)

            # Start a new window once the previous one has expired
            if entry is None or now >= entry["reset_at"]:
                entry = {"count": 0, "reset_at": now + self.window}
                self.windows[client_id] = entry

            if entry["count"] >= self.max_requests:
                retry_after = max(1, math.ceil((entry["reset_at"] - now).total_seconds()))
                return RateLimitDecision(
                    allowed=False,
                    limit=self.max_requests,
                    remaining=0,
                    reset_at=entry["reset_at"],
                    retry_after=retry_after,
                )

            entry["count"] += 1
            return RateLimitDecision(
                allowed=True,
                limit=self.max_requests,
                remaining=self.max_requests - entry["count"],
                reset_at=entry["reset_at"],
            )

    async def clear_expired(self) -> int:
        """Clear expired windows and return count"""

        async with self._lock:
            return self._drop_expired(datetime.now(timezone.utc))

    def _drop_expired(self, now: datetime) -> int:
        expired = [key for key, entry in self.windows.items() if now >= entry["reset_at"]]
        for key in expired:
            del self.windows[key]
        return len(expired)


def client_identifier(request: Request) -> str:
    """First forwarded address, else the socket peer"""

    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    if request.client is not None:
        return request.client.host
    return "unknown"
