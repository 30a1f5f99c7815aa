"""Rate limiting for authentication actions.

This module provides a sliding window rate limiter keyed by action and
client IP. The limiter is an ordinary object owned by the application;
its counters are the only state AuthVault keeps in process memory.
"""

import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Dict, List

from authvault.auth.context import RequestContext

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitConfig:
    """Configuration for a rate limit rule.

    Attributes:
        requests: Maximum number of requests allowed
        window_seconds: Time window in seconds
        block_duration: How long to block after limit exceeded (seconds)
        skip_successful_requests: Successful requests are removed from the
            window via :meth:`RateLimiter.record_success`
    """

    requests: int
    window_seconds: int
    block_duration: int = 0
    skip_successful_requests: bool = False


@dataclass
class RateLimitEntry:
    """Tracks request timestamps for a single key."""

    timestamps: List[datetime] = field(default_factory=list)
    blocked_until: datetime | None = None


@dataclass(frozen=True)
class RateLimitResult:
    """Outcome of a rate limit check.

    Attributes:
        allowed: Whether the request may proceed
        remaining: Requests left in the current window
        limit: The configured maximum
        reset_time: When the window (or block) ends
    """

    allowed: bool
    remaining: int
    limit: int
    reset_time: datetime

    @property
    def retry_after(self) -> int:
        seconds = int((self.reset_time - datetime.now(timezone.utc)).total_seconds())
        return max(1, seconds)

    def headers(self) -> dict[str, str]:
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(int(self.reset_time.timestamp())),
        }


class RateLimiter:
    """In-memory sliding window rate limiter.

    Keys combine the action name and the client IP, so limits on one
    action never consume another action's budget.
    """

    # Default rate limit configurations
    DEFAULT_LIMITS = {
        "auth_login": RateLimitConfig(
            requests=10, window_seconds=900, block_duration=1800, skip_successful_requests=True
        ),
        "auth_register": RateLimitConfig(
            requests=3, window_seconds=3600, block_duration=3600, skip_successful_requests=True
        ),
        "auth_refresh": RateLimitConfig(requests=20, window_seconds=900),
        "auth_logout": RateLimitConfig(requests=10, window_seconds=900),
        "auth_profile": RateLimitConfig(requests=30, window_seconds=900),
        "profile_update": RateLimitConfig(requests=10, window_seconds=900),
        "change_password": RateLimitConfig(
            requests=5, window_seconds=3600, block_duration=3600, skip_successful_requests=True
        ),
        "username_check": RateLimitConfig(requests=20, window_seconds=60, block_duration=300),
        "admin": RateLimitConfig(requests=20, window_seconds=900, block_duration=3600),
        "default": RateLimitConfig(requests=100, window_seconds=60),
    }

    def __init__(
        self,
        limits: Dict[str, RateLimitConfig] | None = None,
        cleanup_interval: int = 300,
        enabled: bool = True,
    ):
        """Initialize the rate limiter.

        Args:
            limits: Custom rate limit configurations, merged over the defaults
            cleanup_interval: How often to clean up expired entries (seconds)
            enabled: When False every check is allowed
        """
        self._storage: Dict[str, RateLimitEntry] = defaultdict(RateLimitEntry)
        self._lock = asyncio.Lock()
        self.limits = {**self.DEFAULT_LIMITS, **(limits or {})}
        self.cleanup_interval = cleanup_interval
        self.enabled = enabled
        self._last_cleanup = datetime.now(timezone.utc)

    def config_for(self, action: str) -> RateLimitConfig:
        return self.limits.get(action, self.limits["default"])

    @staticmethod
    def key_for(context: RequestContext, action: str) -> str:
        return f"{action}:{context.ip_address}"

    async def check_rate_limit(
        self,
        context: RequestContext,
        action: str = "default",
        config: RateLimitConfig | None = None,
    ) -> RateLimitResult:
        """Count a request against its action's limit.

        Args:
            context: The calling request
            action: The action name for limit configuration
            config: Explicit configuration overriding the action's

        Returns:
            The check result; when ``allowed`` is False the request was not counted
        """
        config = config or self.config_for(action)
        now = datetime.now(timezone.utc)

        if not self.enabled:
            return RateLimitResult(
                allowed=True,
                remaining=config.requests,
                limit=config.requests,
                reset_time=now + timedelta(seconds=config.window_seconds),
            )

        key = self.key_for(context, action)

        async with self._lock:
            # Periodic cleanup
            self._maybe_cleanup(now)

            entry = self._storage[key]

            if entry.blocked_until and entry.blocked_until > now:
                return RateLimitResult(
                    allowed=False, remaining=0, limit=config.requests, reset_time=entry.blocked_until
                )

            # Clean old timestamps
            window_start = now - timedelta(seconds=config.window_seconds)
            entry.timestamps = [ts for ts in entry.timestamps if ts > window_start]

            if len(entry.timestamps) >= config.requests:
                if config.block_duration > 0:
                    entry.blocked_until = now + timedelta(seconds=config.block_duration)
                    reset_time = entry.blocked_until
                else:
                    # When the oldest request leaves the window
                    reset_time = min(entry.timestamps) + timedelta(seconds=config.window_seconds)
                logger.warning(f"Rate limit exceeded for {key}")
                return RateLimitResult(
                    allowed=False, remaining=0, limit=config.requests, reset_time=reset_time
                )

            entry.timestamps.append(now)

            return RateLimitResult(
                allowed=True,
                remaining=config.requests - len(entry.timestamps),
                limit=config.requests,
                reset_time=min(entry.timestamps) + timedelta(seconds=config.window_seconds),
            )

    async def record_success(self, context: RequestContext, action: str) -> None:
        """Give back the slot a successful request used, if the action allows it."""
        if not self.enabled or not self.config_for(action).skip_successful_requests:
            return
        key = self.key_for(context, action)
        async with self._lock:
            entry = self._storage.get(key)
            if entry and entry.timestamps:
                entry.timestamps.pop()

    def _maybe_cleanup(self, now: datetime) -> None:
        """Periodically clean up expired entries."""
        if (now - self._last_cleanup).total_seconds() < self.cleanup_interval:
            return

        self._last_cleanup = now
        longest = max(config.window_seconds for config in self.limits.values())
        horizon = now - timedelta(seconds=longest)

        keys_to_remove = [
            key
            for key, entry in self._storage.items()
            if all(ts <= horizon for ts in entry.timestamps)
            and (not entry.blocked_until or entry.blocked_until < now)
        ]
        for key in keys_to_remove:
            del self._storage[key]

    def reset(self, key: str) -> None:
        """Reset rate limit for a specific key.

        Args:
            key: The rate limit key to reset
        """
        self._storage.pop(key, None)

    def reset_all(self) -> None:
        """Reset all rate limits (useful for testing)."""
        self._storage.clear()
