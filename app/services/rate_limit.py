"""Request throttles for the OTP endpoints.

Fixed-window counters per client IP plus a per-email gap between resends.
Counters live in Redis when the OTP store does, otherwise in process memory.
"""

import math
import time
from abc import ABC, abstractmethod
from typing import Callable, Dict, Optional, Tuple

from fastapi import Request
from redis.asyncio import Redis

from app.core.config import settings
from app.core.errors import RateLimited


class CounterBackend(ABC):
    @abstractmethod
    async def hit(self, key: str, window_sec: int) -> Tuple[int, int]:
        """Increment ``key`` and return ``(count, seconds_left_in_window)``."""


class RedisCounter(CounterBackend):
    def __init__(self, redis_client: Redis):
        self.redis = redis_client

    async def hit(self, key: str, window_sec: int) -> Tuple[int, int]:
        count = await self.redis.incr(key)
        if count == 1:
            await self.redis.expire(key, window_sec)
        ttl = await self.redis.ttl(key)
        return count, ttl if ttl and ttl > 0 else window_sec


class MemoryCounter(CounterBackend):
    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self.clock = clock
        self._windows: Dict[str, Tuple[float, int]] = {}

    async def hit(self, key: str, window_sec: int) -> Tuple[int, int]:
        now = self.clock()
        started, count = self._windows.get(key, (now, 0))
        if now - started >= window_sec:
            started, count = now, 0
        count += 1
        self._windows[key] = (started, count)
        return count, max(1, math.ceil(started + window_sec - now))


def client_ip(req: Request) -> str:
    # prefer X-Forwarded-For (first hop), fallback to uvicorn client
    h = req.headers.get("x-forwarded-for")
    if h:
        return h.split(",")[0].strip()
    return req.client.host if req.client else "unknown"


class RequestThrottle:
    def __init__(
        self,
        backend: CounterBackend,
        *,
        request_limit: int = settings.RL_OTP_REQUEST_PER_MINUTE,
        verify_limit: int = settings.RL_OTP_VERIFY_PER_MINUTE,
        resend_cooldown: int = settings.OTP_RESEND_COOLDOWN_SECONDS,
    ):
        self.backend = backend
        self.request_limit = request_limit
        self.verify_limit = verify_limit
        self.resend_cooldown = resend_cooldown

    async def _check(self, key: str, window_sec: int, limit: int, message: Optional[str] = None) -> None:
        if limit <= 0:
            return
        count, retry_after = await self.backend.hit(key, window_sec)
        if count > limit:
            raise RateLimited(retry_after, message)

    async def limit_otp_request(self, req: Request) -> None:
        await self._check(f"rl:otp:req:ip:{client_ip(req)}", 60, self.request_limit)

    async def limit_otp_verify(self, req: Request) -> None:
        await self._check(f"rl:otp:verify:ip:{client_ip(req)}", 60, self.verify_limit)

    async def limit_resend(self, email: str) -> None:
        if self.resend_cooldown <= 0:
            return
        await self._check(
            f"rl:otp:resend:{email.strip().lower()}",
            self.resend_cooldown,
            1,
            "Please wait before requesting another code.",
        )
