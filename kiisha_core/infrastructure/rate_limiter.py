"""
Rate limiter infrastructure.

Two limiters live here:
- FixedWindowRateLimiter: namespaced fixed-window counters protecting
  sensitive portal endpoints (password reset, login, uploads).
- limiter: the slowapi Limiter applying the general per-IP API limit.

The fixed-window map is process-local. Multi-instance deployments should
provide another RateLimitBackend backed by a shared atomic-increment store.
"""

from __future__ import annotations

import asyncio
import math
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from fastapi import Request, Response
from loguru import logger
from slowapi import Limiter, _rate_limit_exceeded_handler  # noqa: F401
from slowapi.util import get_remote_address

from kiisha_core.config import settings
from kiisha_core.runtime.errors import RateLimitedError


@dataclass(frozen=True)
class RateLimitConfig:
    """Limits for one namespace of keys."""

    max_requests: int
    window_ms: int
    key_prefix: str | None = None

    def namespaced(self, key: str) -> str:
        return f"{self.key_prefix}:{key}" if self.key_prefix else key


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_at: int  # epoch milliseconds
    retry_after_seconds: int | None = None


class RateLimits:
    """Pre-configured limits for common use cases."""

    # 5 per 15 minutes per email; blunts email enumeration
    PASSWORD_RESET = RateLimitConfig(max_requests=5, window_ms=15 * 60 * 1000, key_prefix="pwd-reset")
    # 10 per 15 minutes per IP
    LOGIN = RateLimitConfig(max_requests=10, window_ms=15 * 60 * 1000, key_prefix="login")
    # 10 per hour per user
    WORK_ORDER_CREATE = RateLimitConfig(max_requests=10, window_ms=60 * 60 * 1000, key_prefix="wo-create")
    # 20 per hour per user
    FILE_UPLOAD = RateLimitConfig(max_requests=20, window_ms=60 * 60 * 1000, key_prefix="upload")
    # 100 per minute per user
    API_GENERAL = RateLimitConfig(max_requests=100, window_ms=60 * 1000, key_prefix="api")


@runtime_checkable
class RateLimitBackend(Protocol):
    """Interface shared by in-process and shared-store limiters."""

    def check(self, key: str, config: RateLimitConfig) -> RateLimitResult:
        ...

    def reset(self, key: str) -> None:
        ...


def _now_ms() -> int:
    return int(time.time() * 1000)


class FixedWindowRateLimiter:
    """
    Fixed-window counters keyed by "prefix:key".

    A window starts on the first request for a key and lasts window_ms.
    Rejected requests do not increment the counter. A background sweep
    drops expired windows so the map stays bounded.

    Usage:
        limiter = FixedWindowRateLimiter()
        await limiter.start()
        result = limiter.check(email, RateLimits.PASSWORD_RESET)
        ...
        await limiter.stop()
    """

    def __init__(
        self,
        clock: Callable[[], int] = _now_ms,
        sweep_interval_seconds: float | None = None,
    ):
        """
        Args:
            clock: Returns the current time in epoch milliseconds.
            sweep_interval_seconds: Seconds between sweeps.
                Defaults to settings.RATE_LIMIT_SWEEP_INTERVAL_SECONDS.
        """
        self._clock = clock
        self.sweep_interval_seconds = (
            sweep_interval_seconds
            if sweep_interval_seconds is not None
            else settings.RATE_LIMIT_SWEEP_INTERVAL_SECONDS
        )
        # key -> [count, reset_at]
        self._entries: dict[str, list[int]] = {}
        # FastAPI runs sync dependencies in a thread pool
        self._lock = threading.Lock()
        self._sweep_task: asyncio.Task | None = None

    def __len__(self) -> int:
        return len(self._entries)

    def check(self, key: str, config: RateLimitConfig) -> RateLimitResult:
        """
        Count one request against key and report whether it is allowed.

        Args:
            key: Caller identity (email, user id, IP).
            config: Limits and namespace to apply.

        Returns:
            RateLimitResult: allowed with the remaining count, or rejected
            with retry_after_seconds.
        """
        full_key = config.namespaced(key)
        now = self._clock()

        with self._lock:
            entry = self._entries.get(full_key)
            if entry is None or now >= entry[1]:
                entry = [0, now + config.window_ms]
                self._entries[full_key] = entry

            count, reset_at = entry
            if count >= config.max_requests:
                return RateLimitResult(
                    allowed=False,
                    remaining=0,
                    reset_at=reset_at,
                    retry_after_seconds=math.ceil((reset_at - now) / 1000),
                )

            entry[0] = count + 1
            return RateLimitResult(
                allowed=True,
                remaining=config.max_requests - entry[0],
                reset_at=reset_at,
            )

    def enforce(self, key: str, config: RateLimitConfig) -> RateLimitResult:
        """Like check(), but raise RateLimitedError when rejected."""
        result = self.check(key, config)
        if not result.allowed:
            full_key = config.namespaced(key)
            logger.warning(f"Rate limit exceeded for {full_key} (retry in {result.retry_after_seconds}s)")
            raise RateLimitedError(
                limit=config.max_requests,
                reset_at_ms=result.reset_at,
                retry_after_seconds=result.retry_after_seconds or 1,
                key=full_key,
            )
        return result

    def reset(self, key: str) -> None:
        """
        Clear every window whose namespaced key equals key, starts with it,
        or contains it as a ":"-delimited segment. Intended for tests.
        """
        with self._lock:
            doomed = [
                stored for stored in self._entries
                if stored == key
                or stored.startswith(f"{key}:")
                or stored.endswith(f":{key}")
                or f":{key}:" in stored
            ]
            for stored in doomed:
                del self._entries[stored]

    def sweep(self) -> int:
        """Drop expired windows. Returns how many were removed."""
        now = self._clock()
        with self._lock:
            expired = [key for key, (_, reset_at) in self._entries.items() if reset_at <= now]
            for key in expired:
                del self._entries[key]
        if expired:
            logger.debug(f"Rate limiter sweep removed {len(expired)} expired windows")
        return len(expired)

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval_seconds)
            try:
                self.sweep()
            except Exception as e:
                logger.error(f"Rate limiter sweep failed: {e}")

    async def start(self) -> None:
        """Start the periodic sweep on the running event loop."""
        if self._sweep_task is None or self._sweep_task.done():
            self._sweep_task = asyncio.create_task(self._sweep_loop())
            logger.info(f"Rate limiter sweep started (every {self.sweep_interval_seconds}s)")

    async def stop(self) -> None:
        """Cancel the periodic sweep."""
        task, self._sweep_task = self._sweep_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Rate limiter sweep stopped")

    @property
    def running(self) -> bool:
        return self._sweep_task is not None and not self._sweep_task.done()


def create_rate_limiter(
    backend: RateLimitBackend, config: RateLimitConfig
) -> Callable[[str], RateLimitResult]:
    """Bind a config to a backend: returns key -> RateLimitResult."""

    def _check(key: str) -> RateLimitResult:
        return backend.check(key, config)

    return _check


def rate_limit_headers(config: RateLimitConfig, result: RateLimitResult) -> dict[str, str]:
    """X-RateLimit-* headers (plus Retry-After when rejected)."""
    headers = {
        "X-RateLimit-Limit": str(config.max_requests),
        "X-RateLimit-Remaining": str(result.remaining),
        "X-RateLimit-Reset": str(math.ceil(result.reset_at / 1000)),
    }
    if not result.allowed and result.retry_after_seconds is not None:
        headers["Retry-After"] = str(result.retry_after_seconds)
    return headers


# =============================================================================
# FastAPI integration
# =============================================================================


def get_rate_limiter(request: Request) -> FixedWindowRateLimiter:
    """Get the fixed-window limiter installed on the application state."""
    return request.app.state.rate_limiter


def default_rate_limit_key(request: Request) -> str:
    """Authenticated portal user id when known, else the client address."""
    portal = getattr(request.state, "portal", None)
    if portal is not None and portal.scope.portal_user_id:
        return f"user-{portal.scope.portal_user_id}"
    return get_remote_address(request) or "unknown"


def enforce_rate_limit(
    config: RateLimitConfig,
    key_func: Callable[[Request], str] = default_rate_limit_key,
):
    """Dependency factory applying a fixed-window limit to a route.

    Usage:
        @router.post("/login", dependencies=[Depends(enforce_rate_limit(RateLimits.LOGIN))])

    Raises:
        RateLimitedError: When the window is exhausted (rendered as 429).
    """

    def _enforce(request: Request, response: Response) -> RateLimitResult:
        result = get_rate_limiter(request).enforce(key_func(request), config)
        response.headers.update(rate_limit_headers(config, result))
        return result

    return _enforce


# General per-IP API limit (slowapi); memory:// unless a shared store is configured
limiter = Limiter(
    key_func=get_remote_address,
    storage_uri=settings.RATE_LIMIT_STORAGE_URI,
    default_limits=[settings.RATE_LIMIT_API] if settings.RATE_LIMIT_API else [],
)
