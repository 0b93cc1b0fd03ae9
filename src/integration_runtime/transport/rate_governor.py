"""
integration_runtime.transport.rate_governor - Per-Instance Token Bucket
=========================================================================

Every integration instance owns exactly one RateGovernor. The Transport
Client calls ``acquire()`` before each network attempt; the governor either
admits the request immediately, suspends the caller until budget refills, or
(in non-blocking mode) raises RateLimitExceeded.

Token Bucket:
    capacity C   — maximum burst
    refill R     — tokens per second, accrued continuously
    acquire(n)   — take n tokens, waiting if fewer than n are available

    tokens ──────────────────────────────────────────▶ time
    C ┤████▄
      │    ▀█▄            refill at R/s
      │      ▀█▄      ▄▄██▀▀
    0 ┤        ▀████▀▀
           burst   wait

Server Truth Dominates:
    - Quota headers (X-RateLimit-Remaining / -Limit / -Reset) can only make
      the local estimate MORE restrictive, never less.
    - A 429 zeros the budget immediately. If the server sent Retry-After,
      refill is frozen until that moment, overriding the local refill rate.

Concurrency:
    Single writer. All mutation happens inside this class, on the event
    loop, without awaiting between read and write. Waiters queue on an
    asyncio.Lock, so they are admitted in arrival order and a second caller
    never starts a duplicate budget wait. Governors of different instances
    share nothing.
"""

from __future__ import annotations

import asyncio
import time
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Awaitable, Callable, Mapping, Optional

import structlog
from pydantic import BaseModel, ConfigDict

from integration_runtime.core.config import RateLimitConfig
from integration_runtime.core.exceptions import RateLimitExceeded
from integration_runtime.transport.cancellation import CancellationToken, sleep_or_cancel

logger = structlog.get_logger()

Clock = Callable[[], float]
Sleep = Callable[[float], Awaitable[None]]

# Values above this are treated as absolute epoch seconds rather than deltas.
_EPOCH_THRESHOLD = 1_000_000_000


class RateState(BaseModel):
    """Read-only snapshot of a governor's bucket."""

    model_config = ConfigDict(frozen=True)

    tokens: float
    capacity: float
    refill_rate: float
    window_start: float
    blocked_until: Optional[float] = None


def parse_retry_after(value: Optional[str], *, now: Optional[datetime] = None) -> Optional[float]:
    """Parse a Retry-After header (delta seconds or HTTP-date) into seconds.

    Returns None for a missing or unparseable value; never negative.
    """
    if value is None:
        return None
    value = value.strip()
    if not value:
        return None
    try:
        return max(float(value), 0.0)
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    current = now or datetime.now(timezone.utc)
    return max((when - current).total_seconds(), 0.0)


def _header(headers: Mapping[str, str], *names: str) -> Optional[str]:
    lowered = {k.lower(): v for k, v in headers.items()}
    for name in names:
        if name.lower() in lowered:
            return lowered[name.lower()]
    return None


def _number(value: Optional[str]) -> Optional[float]:
    if value is None:
        return None
    try:
        return float(value.split(",")[0].strip())
    except ValueError:
        return None


class RateGovernor:
    """Token-bucket admission control for one integration instance.

    Attributes:
        name: Label used in log events (usually the integration id).
        blocking: Whether ``acquire`` waits (True) or raises (False).

    Example:
        >>> governor = RateGovernor(capacity=2, refill_rate=1.0)
        >>> await governor.acquire()   # immediate
        >>> await governor.acquire()   # immediate
        >>> await governor.acquire()   # waits ~1s for a refill
    """

    def __init__(
        self,
        capacity: float,
        refill_rate: float,
        *,
        blocking: bool = True,
        name: str = "default",
        clock: Clock = time.monotonic,
        sleep: Optional[Sleep] = None,
        wall_clock: Clock = time.time,
    ) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        if refill_rate <= 0:
            raise ValueError("refill_rate must be positive")

        self.name = name
        self.blocking = blocking

        self._capacity = float(capacity)
        self._refill_rate = float(refill_rate)
        self._clock = clock
        self._sleep = sleep
        # Epoch seconds; absolute X-RateLimit-Reset values are measured against it.
        self._wall_clock = wall_clock

        now = clock()
        self._tokens = float(capacity)
        self._window_start = now
        self._last_refill = now
        self._blocked_until: Optional[float] = None

        self._lock = asyncio.Lock()
        self._logger = logger.bind(component="rate_governor", governor=name)

    @classmethod
    def from_config(
        cls,
        config: RateLimitConfig,
        *,
        declared_limit: Optional[int] = None,
        name: str = "default",
        clock: Clock = time.monotonic,
        sleep: Optional[Sleep] = None,
        wall_clock: Clock = time.time,
    ) -> RateGovernor:
        """Build a governor from runtime defaults and a connector's limit.

        ``declared_limit`` (requests per second) replaces the default bucket
        with capacity=declared_limit, refill_rate=declared_limit.
        """
        capacity: float = config.capacity
        refill_rate: float = config.refill_rate
        if declared_limit is not None:
            capacity = float(declared_limit)
            refill_rate = float(declared_limit)
        return cls(
            capacity,
            refill_rate,
            blocking=config.blocking,
            name=name,
            clock=clock,
            sleep=sleep,
            wall_clock=wall_clock,
        )

    # =========================================================================
    # Read-only view
    # =========================================================================

    @property
    def capacity(self) -> float:
        return self._capacity

    @property
    def refill_rate(self) -> float:
        return self._refill_rate

    @property
    def available(self) -> float:
        """Tokens available right now (after accruing refill)."""
        self._refill()
        return self._tokens

    def snapshot(self) -> RateState:
        self._refill()
        return RateState(
            tokens=self._tokens,
            capacity=self._capacity,
            refill_rate=self._refill_rate,
            window_start=self._window_start,
            blocked_until=self._blocked_until,
        )

    # =========================================================================
    # Admission
    # =========================================================================

    async def acquire(
        self, cost: float = 1, *, cancellation: Optional[CancellationToken] = None
    ) -> None:
        """Take ``cost`` tokens, suspending until they are available.

        Raises:
            ValueError: ``cost`` exceeds the bucket capacity (can never fit).
            RateLimitExceeded: non-blocking governor with insufficient budget.
            Cancelled: the token fired while waiting.
        """
        if cost <= 0:
            return
        if cost > self._capacity:
            raise ValueError(
                f"cost {cost} exceeds governor capacity {self._capacity}"
            )

        async with self._lock:
            while True:
                if cancellation is not None:
                    cancellation.raise_if_cancelled()

                self._refill()
                if self._tokens >= cost:
                    self._tokens -= cost
                    return

                wait = self._time_until(cost)
                if not self.blocking:
                    raise RateLimitExceeded(
                        message=f"Rate limit budget exhausted for '{self.name}'",
                        retry_after=wait,
                        details={"governor": self.name},
                    )

                self._logger.debug(
                    "rate_limit_wait",
                    cost=cost,
                    tokens=round(self._tokens, 3),
                    wait_seconds=round(wait, 3),
                )
                await self._wait(wait, cancellation)

    # =========================================================================
    # Server feedback
    # =========================================================================

    def on_rate_limited(self, retry_after: Optional[float] = None) -> None:
        """Apply a 429: zero the budget and honor the server's Retry-After."""
        now = self._clock()
        self._refill()
        self._tokens = 0.0
        self._last_refill = now
        if retry_after is not None and retry_after > 0:
            self._blocked_until = now + retry_after
        self._logger.warning(
            "rate_limited_by_server",
            retry_after=retry_after,
        )

    def update_from_headers(self, headers: Mapping[str, str]) -> None:
        """Tighten the local estimate from quota headers, if present.

        Recognized: X-RateLimit-Limit, X-RateLimit-Remaining,
        X-RateLimit-Reset (delta seconds or epoch seconds), and the
        RateLimit-Limit / RateLimit-Remaining / RateLimit-Reset draft names.
        """
        limit = _number(_header(headers, "x-ratelimit-limit", "ratelimit-limit"))
        remaining = _number(
            _header(headers, "x-ratelimit-remaining", "ratelimit-remaining")
        )
        reset = _number(_header(headers, "x-ratelimit-reset", "ratelimit-reset"))

        if limit is None and remaining is None:
            return

        self._refill()
        if limit is not None and 0 < limit < self._capacity:
            self._capacity = limit
            self._tokens = min(self._tokens, self._capacity)
        if remaining is not None and remaining < self._tokens:
            self._tokens = max(remaining, 0.0)

        if remaining is not None and remaining <= 0 and reset is not None:
            delta = reset - self._wall_clock() if reset > _EPOCH_THRESHOLD else reset
            if delta > 0:
                now = self._clock()
                self._blocked_until = max(self._blocked_until or now, now + delta)
                self._last_refill = now

    # =========================================================================
    # Internals
    # =========================================================================

    def _refill(self) -> None:
        now = self._clock()
        if self._blocked_until is not None:
            if now < self._blocked_until:
                return
            # Refill resumes from the moment the server block lifted.
            self._last_refill = max(self._last_refill, self._blocked_until)
            self._blocked_until = None
            self._window_start = self._last_refill

        elapsed = now - self._last_refill
        if elapsed > 0:
            self._tokens = min(self._capacity, self._tokens + elapsed * self._refill_rate)
            self._last_refill = now
            if self._tokens >= self._capacity:
                self._window_start = now

    def _time_until(self, cost: float) -> float:
        now = self._clock()
        blocked = 0.0
        if self._blocked_until is not None and now < self._blocked_until:
            blocked = self._blocked_until - now
        deficit = max(cost - self._tokens, 0.0)
        return blocked + deficit / self._refill_rate

    async def _wait(self, delay: float, cancellation: Optional[CancellationToken]) -> None:
        if self._sleep is not None:
            if cancellation is not None:
                cancellation.raise_if_cancelled()
            await self._sleep(delay)
            return
        await sleep_or_cancel(delay, cancellation)
