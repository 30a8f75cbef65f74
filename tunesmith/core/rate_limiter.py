"""
Generation Rate Limiter
Fixed-window request quotas per (user, service), in-memory or Redis-backed
"""

import asyncio
import json
import math
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, Optional, Tuple

import redis.asyncio as redis
import structlog

logger = structlog.get_logger("tunesmith.ratelimit")


@dataclass(frozen=True)
class RateLimitConfig:
    """Quota for one service"""
    max_requests: int
    window_seconds: int


@dataclass
class RateLimitResult:
    """Outcome of a rate limit check"""
    allowed: bool
    remaining: int
    reset_time: datetime
    retry_after: Optional[int] = None
    limit: int = 0


DEFAULT_RATE_LIMITS: Dict[str, RateLimitConfig] = {
    "suno": RateLimitConfig(max_requests=5, window_seconds=10 * 60),
    "mureka": RateLimitConfig(max_requests=10, window_seconds=10 * 60),
    "openai": RateLimitConfig(max_requests=30, window_seconds=60),
    "default": RateLimitConfig(max_requests=10, window_seconds=60),
}


def build_rate_limits(table: Dict[str, Dict[str, int]]) -> Dict[str, RateLimitConfig]:
    """Build limit configs from the settings table"""
    limits = dict(DEFAULT_RATE_LIMITS)
    for service, values in table.items():
        limits[service] = RateLimitConfig(
            max_requests=int(values["max_requests"]),
            window_seconds=int(values["window_seconds"]),
        )
    return limits


def _to_datetime(timestamp: float) -> datetime:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc)


class RateLimiter(ABC):
    """Shared behaviour for the limiter backends"""

    def __init__(
        self,
        limits: Optional[Dict[str, RateLimitConfig]] = None,
        clock: Callable[[], float] = time.time
    ):
        self.limits = limits or dict(DEFAULT_RATE_LIMITS)
        self._clock = clock

    def config_for(self, service: str) -> RateLimitConfig:
        return self.limits.get(service) or self.limits["default"]

    @staticmethod
    def _key(user_id: str, service: str) -> str:
        return f"{user_id}:{service}"

    def _evaluate(
        self,
        entry: Optional[Tuple[int, float]],
        config: RateLimitConfig,
        now: float,
        consume: bool = True
    ) -> Tuple[RateLimitResult, Optional[Tuple[int, float]]]:
        """Apply the fixed-window rules to a stored (count, reset_at) entry"""
        if entry is None or now >= entry[1]:
            reset_at = now + config.window_seconds
            count = 1 if consume else 0
            result = RateLimitResult(
                allowed=True,
                remaining=config.max_requests - count,
                reset_time=_to_datetime(reset_at),
                limit=config.max_requests,
            )
            return result, ((count, reset_at) if consume else entry)

        count, reset_at = entry
        if count >= config.max_requests:
            result = RateLimitResult(
                allowed=False,
                remaining=0,
                reset_time=_to_datetime(reset_at),
                retry_after=max(1, math.ceil(reset_at - now)),
                limit=config.max_requests,
            )
            return result, entry

        if consume:
            count += 1
        result = RateLimitResult(
            allowed=True,
            remaining=config.max_requests - count,
            reset_time=_to_datetime(reset_at),
            limit=config.max_requests,
        )
        return result, (count, reset_at)

    @abstractmethod
    async def check_limit(self, user_id: str, service: str) -> RateLimitResult:
        pass

    @abstractmethod
    async def get_status(self, user_id: str, service: str) -> RateLimitResult:
        pass

    @abstractmethod
    async def reset(self, user_id: str, service: Optional[str] = None) -> None:
        pass


class InMemoryRateLimiter(RateLimiter):
    """Process-local limiter, one window per (user, service)"""

    def __init__(
        self,
        limits: Optional[Dict[str, RateLimitConfig]] = None,
        clock: Callable[[], float] = time.time
    ):
        super().__init__(limits, clock)
        self._windows: Dict[str, Tuple[int, float]] = {}
        self._lock = asyncio.Lock()

    async def check_limit(self, user_id: str, service: str) -> RateLimitResult:
        """Consume one request from the user's window"""
        config = self.config_for(service)
        key = self._key(user_id, service)

        async with self._lock:
            result, entry = self._evaluate(self._windows.get(key), config, self._clock())
            self._windows[key] = entry

        if not result.allowed:
            logger.info(
                "Rate limit exceeded",
                user_id=user_id,
                service=service,
                retry_after=result.retry_after
            )
        return result

    async def get_status(self, user_id: str, service: str) -> RateLimitResult:
        """Report the window without consuming a request"""
        config = self.config_for(service)
        result, _ = self._evaluate(
            self._windows.get(self._key(user_id, service)),
            config,
            self._clock(),
            consume=False
        )
        return result

    async def reset(self, user_id: str, service: Optional[str] = None) -> None:
        async with self._lock:
            if service is not None:
                self._windows.pop(self._key(user_id, service), None)
                return
            prefix = f"{user_id}:"
            for key in [k for k in self._windows if k.startswith(prefix)]:
                del self._windows[key]

    async def cleanup(self) -> int:
        """Drop expired windows, returning how many were removed"""
        now = self._clock()
        async with self._lock:
            expired = [key for key, (_, reset_at) in self._windows.items() if now >= reset_at]
            for key in expired:
                del self._windows[key]
        return len(expired)


class RedisRateLimiter(RateLimiter):
    """
    Limiter shared across processes through Redis.

    Any Redis failure lets the request through.
    """

    KEY_PREFIX = "ratelimit"

    def __init__(
        self,
        client: redis.Redis,
        limits: Optional[Dict[str, RateLimitConfig]] = None,
        clock: Callable[[], float] = time.time
    ):
        super().__init__(limits, clock)
        self.client = client

    def _redis_key(self, user_id: str, service: str) -> str:
        return f"{self.KEY_PREFIX}:{self._key(user_id, service)}"

    def _fail_open(self, config: RateLimitConfig, now: float) -> RateLimitResult:
        return RateLimitResult(
            allowed=True,
            remaining=config.max_requests,
            reset_time=_to_datetime(now + config.window_seconds),
            limit=config.max_requests,
        )

    async def _load(self, key: str) -> Optional[Tuple[int, float]]:
        value = await self.client.get(key)
        if value is None:
            return None
        data = json.loads(value)
        return int(data["count"]), float(data["reset_at"])

    async def check_limit(self, user_id: str, service: str) -> RateLimitResult:
        """Consume one request from the shared window"""
        config = self.config_for(service)
        key = self._redis_key(user_id, service)
        now = self._clock()

        try:
            result, entry = self._evaluate(await self._load(key), config, now)
            if result.allowed:
                ttl = max(1, math.ceil(entry[1] - now)) + 60
                await self.client.setex(
                    key, ttl, json.dumps({"count": entry[0], "reset_at": entry[1]})
                )
        except (redis.RedisError, ConnectionError, ValueError, KeyError) as e:
            logger.warning("Rate limit backend unavailable, allowing request", key=key, error=str(e))
            return self._fail_open(config, now)

        if not result.allowed:
            logger.info(
                "Rate limit exceeded",
                user_id=user_id,
                service=service,
                retry_after=result.retry_after
            )
        return result

    async def get_status(self, user_id: str, service: str) -> RateLimitResult:
        config = self.config_for(service)
        key = self._redis_key(user_id, service)
        now = self._clock()
        try:
            result, _ = self._evaluate(await self._load(key), config, now, consume=False)
        except (redis.RedisError, ConnectionError, ValueError, KeyError) as e:
            logger.warning("Rate limit backend unavailable", key=key, error=str(e))
            return self._fail_open(config, now)
        return result

    async def reset(self, user_id: str, service: Optional[str] = None) -> None:
        services = [service] if service is not None else list(self.limits)
        keys = [self._redis_key(user_id, name) for name in services]
        try:
            await self.client.delete(*keys)
        except (redis.RedisError, ConnectionError) as e:
            logger.warning("Rate limit reset failed", user_id=user_id, error=str(e))
