"""Fixed-window request rate limiting."""

import asyncio
import math
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

import anyio
from starlette.requests import Request

from ..constants import (
    DEFAULT_RATE_LIMIT_CLEANUP_INTERVAL_SECONDS,
    ERROR_RATE_LIMIT_EXCEEDED,
    RATE_LIMIT_KEY_PREFIX,
)
from ..domain.exceptions import RateLimitExceededError
from ..logging import debug, info, warning, LogRecord, LogEvent


@dataclass(frozen=True)
class RateLimitRule:
    """Request budget for one class of endpoint.

    Attributes:
        max_requests: Requests allowed per window
        window_seconds: Window length
        skip_successful_requests: Refund a request when it succeeds
        skip_failed_requests: Refund a request when it fails
    """

    max_requests: int
    window_seconds: float
    skip_successful_requests: bool = False
    skip_failed_requests: bool = False


RATE_LIMIT_RULES: Dict[str, RateLimitRule] = {
    "login": RateLimitRule(max_requests=5, window_seconds=15 * 60),
    "api": RateLimitRule(max_requests=100, window_seconds=60),
    "upload": RateLimitRule(max_requests=10, window_seconds=60),
    "search_residents": RateLimitRule(max_requests=50, window_seconds=60),
    "resident_create": RateLimitRule(max_requests=20, window_seconds=60),
}


@dataclass
class RateLimitEntry:
    count: int
    reset_time: float
    blocked: bool = False


@dataclass
class RateLimitResult:
    """Outcome of a rate limit check.

    ``reset_time`` is the epoch second at which the current window ends.
    ``retry_after`` is only set when the request was refused.
    """

    allowed: bool
    remaining: int
    reset_time: float
    retry_after: Optional[int] = None


def client_identifier(request: Request, user_id: Optional[str] = None) -> str:
    """Identify the caller for rate limiting.

    Authenticated users are keyed by id. Anonymous callers are keyed by the
    first ``X-Forwarded-For`` address, then ``X-Real-IP``, ``Remote-Addr`` and
    finally the socket peer.
    """
    if user_id:
        return f"user:{user_id}"

    forwarded = request.headers.get("x-forwarded-for")
    forwarded_ip = forwarded.split(",")[0].strip() if forwarded else ""
    ip = (
        forwarded_ip
        or request.headers.get("x-real-ip")
        or request.headers.get("remote-addr")
        or (request.client.host if request.client else None)
        or "unknown"
    )
    return f"ip:{ip}"


class RateLimiter:
    """In-memory fixed-window rate limiter keyed by rule and client."""

    def __init__(
        self,
        rules: Optional[Dict[str, RateLimitRule]] = None,
        cleanup_interval_seconds: float = DEFAULT_RATE_LIMIT_CLEANUP_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.rules = dict(RATE_LIMIT_RULES if rules is None else rules)
        self.cleanup_interval_seconds = cleanup_interval_seconds
        self._clock = clock
        self._store: Dict[str, RateLimitEntry] = {}
        self._lock = anyio.Lock()
        self._cleanup_task: Optional[asyncio.Task] = None

    @staticmethod
    def _key(identifier: str, rule_key: str) -> str:
        return f"{RATE_LIMIT_KEY_PREFIX}:{rule_key}:{identifier}"

    def get_rule(self, rule_key: str) -> RateLimitRule:
        try:
            return self.rules[rule_key]
        except KeyError:
            raise KeyError(f"Unknown rate limit rule: {rule_key}") from None

    async def check(self, identifier: str, rule_key: str) -> RateLimitResult:
        """Count one request from *identifier* against *rule_key*."""
        rule = self.get_rule(rule_key)
        key = self._key(identifier, rule_key)
        now = self._clock()

        async with self._lock:
            entry = self._store.get(key)
            if entry is None or entry.reset_time <= now:
                entry = RateLimitEntry(count=0, reset_time=now + rule.window_seconds)
                self._store[key] = entry

            allowed = entry.count < rule.max_requests and not entry.blocked
            if allowed:
                entry.count += 1
            if entry.count >= rule.max_requests:
                entry.blocked = True

            remaining = max(0, rule.max_requests - entry.count)
            retry_after = (
                None if allowed else max(1, math.ceil(entry.reset_time - now))
            )
            reset_time = entry.reset_time

        if not allowed:
            warning(
                LogRecord(
                    event=LogEvent.RATE_LIMIT_EXCEEDED.value,
                    message="Rate limit exceeded",
                    data={
                        "rule": rule_key,
                        "identifier": identifier,
                        "retry_after": retry_after,
                    },
                )
            )
        return RateLimitResult(
            allowed=allowed,
            remaining=remaining,
            reset_time=reset_time,
            retry_after=retry_after,
        )

    async def enforce(self, identifier: str, rule_key: str) -> RateLimitResult:
        """Like :meth:`check`, but raise when the request is refused.

        Raises:
            RateLimitExceededError: With the seconds until the window resets
        """
        result = await self.check(identifier, rule_key)
        if not result.allowed:
            raise RateLimitExceededError(
                ERROR_RATE_LIMIT_EXCEEDED.format(retry_after=result.retry_after),
                rule_key=rule_key,
                retry_after=result.retry_after,
            )
        return result

    async def _refund(self, identifier: str, rule_key: str) -> bool:
        async with self._lock:
            entry = self._store.get(self._key(identifier, rule_key))
            if entry is None or entry.count <= 0:
                return False
            entry.count -= 1
            entry.blocked = False
            return True

    async def record_success(self, identifier: str, rule_key: str) -> bool:
        """Refund one request if *rule_key* does not count successes."""
        if not self.get_rule(rule_key).skip_successful_requests:
            return False
        return await self._refund(identifier, rule_key)

    async def record_failure(self, identifier: str, rule_key: str) -> bool:
        """Refund one request if *rule_key* does not count failures."""
        if not self.get_rule(rule_key).skip_failed_requests:
            return False
        return await self._refund(identifier, rule_key)

    async def reset(self, identifier: str, rule_key: str) -> bool:
        async with self._lock:
            return self._store.pop(self._key(identifier, rule_key), None) is not None

    async def get_status(
        self, identifier: str, rule_key: str
    ) -> Optional[RateLimitEntry]:
        async with self._lock:
            entry = self._store.get(self._key(identifier, rule_key))
            if entry is None:
                return None
            return RateLimitEntry(
                count=entry.count, reset_time=entry.reset_time, blocked=entry.blocked
            )

    async def cleanup_expired(self) -> int:
        """Drop every window whose reset time has passed."""
        now = self._clock()
        async with self._lock:
            expired = [
                key for key, entry in self._store.items() if entry.reset_time <= now
            ]
            for key in expired:
                del self._store[key]
        if expired:
            debug(
                LogRecord(
                    event=LogEvent.RATE_LIMIT_CLEANUP.value,
                    message=f"Removed {len(expired)} expired rate limit windows",
                    data={"removed": len(expired), "remaining": len(self._store)},
                )
            )
        return len(expired)

    async def run_cleanup_loop(self) -> None:
        """Run :meth:`cleanup_expired` periodically until cancelled."""
        while True:
            try:
                await anyio.sleep(self.cleanup_interval_seconds)
                await self.cleanup_expired()
            except anyio.get_cancelled_exc_class():
                raise
            except Exception as e:
                warning(
                    LogRecord(
                        event=LogEvent.RATE_LIMIT_CLEANUP.value,
                        message=f"Error in rate limit cleanup: {str(e)}",
                    ),
                    exc=e,
                )

    def start_cleanup_task(self) -> None:
        if self._cleanup_task is None or self._cleanup_task.done():
            self._cleanup_task = asyncio.create_task(self.run_cleanup_loop())
            info(
                LogRecord(
                    event=LogEvent.STARTUP.value,
                    message="Rate limit cleanup task started",
                    data={"interval_seconds": self.cleanup_interval_seconds},
                )
            )

    async def stop_cleanup_task(self) -> None:
        task = self._cleanup_task
        self._cleanup_task = None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
