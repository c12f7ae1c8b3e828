# slotbook/services/booking/rate_limiter.py
"""
Sliding-window limit on booking creation per client origin.

Two stores: an in-process one (single worker, tests) and a Redis sorted set
shared by every API worker.
"""
import logging
import time
import uuid
from collections import defaultdict, deque
from dataclasses import dataclass
from typing import Callable, Deque, Dict, Optional

from slotbook.config.redis import RedisKeys, get_redis
from slotbook.config.settings import Settings, get_settings

logger = logging.getLogger(__name__)


@dataclass
class RateLimitDecision:
    allowed: bool
    remaining: int
    retry_after: int = 0


class InMemoryRateLimiter:

    def __init__(self, max_requests: int, window_seconds: int, timer: Callable[[], float] = time.time):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.timer = timer
        self.request_times: Dict[str, Deque[float]] = defaultdict(deque)
        self._last_sweep = self.timer()

    def _sweep(self, current_time: float) -> None:
        """Forget origins whose every attempt has slid out of the window"""
        for origin in [o for o, times in self.request_times.items()
                       if not times or current_time - times[-1] >= self.window_seconds]:
            del self.request_times[origin]
        self._last_sweep = current_time

    async def hit(self, origin: str) -> RateLimitDecision:
        current_time = self.timer()
        # At most one full pass per window
        if current_time - self._last_sweep >= self.window_seconds:
            self._sweep(current_time)
        times = self.request_times[origin]

        # Drop attempts that slid out of the window
        while times and current_time - times[0] >= self.window_seconds:
            times.popleft()

        if len(times) >= self.max_requests:
            retry_after = int(self.window_seconds - (current_time - times[0])) + 1
            return RateLimitDecision(allowed=False, remaining=0, retry_after=max(retry_after, 1))

        times.append(current_time)
        return RateLimitDecision(allowed=True, remaining=self.max_requests - len(times))

    def reset(self) -> None:
        self.request_times.clear()


class RedisRateLimiter:

    def __init__(self, max_requests: int, window_seconds: int, redis_factory=get_redis,
                 timer: Callable[[], float] = time.time):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.redis_factory = redis_factory
        self.timer = timer

    async def hit(self, origin: str) -> RateLimitDecision:
        key = RedisKeys.RATE_LIMIT_BOOKINGS.format(origin=origin)
        current_time = self.timer()
        window_floor = current_time - self.window_seconds

        redis_client = await self.redis_factory()
        try:
            pipe = redis_client.pipeline()
            pipe.zremrangebyscore(key, 0, window_floor)
            pipe.zcard(key)
            pipe.zrange(key, 0, 0, withscores=True)
            _, count, oldest = await pipe.execute()

            if count >= self.max_requests:
                oldest_score = oldest[0][1] if oldest else current_time
                retry_after = int(self.window_seconds - (current_time - oldest_score)) + 1
                return RateLimitDecision(allowed=False, remaining=0, retry_after=max(retry_after, 1))

            pipe = redis_client.pipeline()
            pipe.zadd(key, {f"{current_time}:{uuid.uuid4().hex}": current_time})
            pipe.expire(key, self.window_seconds)
            await pipe.execute()
            return RateLimitDecision(allowed=True, remaining=self.max_requests - count - 1)
        finally:
            await redis_client.close()


_limiter = None


def get_booking_rate_limiter(settings: Optional[Settings] = None):
    """Process-wide limiter for POST /bookings"""
    global _limiter
    if _limiter is None:
        settings = settings or get_settings()
        if settings.RATE_LIMIT_BACKEND == "redis":
            _limiter = RedisRateLimiter(settings.BOOKING_RATE_LIMIT_MAX, settings.BOOKING_RATE_LIMIT_WINDOW_SECONDS)
        else:
            _limiter = InMemoryRateLimiter(settings.BOOKING_RATE_LIMIT_MAX, settings.BOOKING_RATE_LIMIT_WINDOW_SECONDS)
        logger.info(f"Booking rate limiter: {type(_limiter).__name__}")
    return _limiter
