"""
integration_runtime.transport.retry - Bounded Exponential-Backoff Retry
=========================================================================

The Retry Policy wraps any governed call and retries it on transient
failure. It is the outermost layer of the Transport Client's composition:

    RetryPolicy.execute(attempt)
        └── attempt(): sign → rate-gate → send → classify

Classification:
    transient  → retried:      IntegrationNetworkError (timeouts, resets),
                               IntegrationApiError 5xx / 429,
                               raw httpx transport errors
    terminal   → propagated:   other 4xx, ConfigValidationError, AuthError,
                               RateLimitExceeded, Cancelled, anything else

Backoff:

    delay(attempt) = min(base * 2**attempt + uniform(0, base), max_delay)

A server-advised ``retry_after`` on the error wins when it is longer than
the computed delay (server truth dominates the local estimate), still capped
at ``max_delay``.

Idempotency:
    Non-idempotent operations (POST without an idempotency flag) are executed
    exactly once; a transient failure surfaces as-is rather than risking a
    duplicate side effect on the third-party system.

Example delay progression (base=0.5, max_delay=30):
    attempt 0: 0.5 - 1.0s
    attempt 1: 1.0 - 1.5s
    attempt 2: 2.0 - 2.5s
"""

from __future__ import annotations

import asyncio
import inspect
import random
from typing import Awaitable, Callable, Optional, TypeVar

import httpx
import structlog

from integration_runtime.core.config import RetryConfig
from integration_runtime.core.exceptions import (
    Cancelled,
    IntegrationRuntimeError,
    RetryExhausted,
)
from integration_runtime.transport.cancellation import CancellationToken, sleep_or_cancel

logger = structlog.get_logger()

T = TypeVar("T")

RetryHook = Callable[[int, BaseException, float], Optional[Awaitable[None]]]


def is_transient(error: BaseException) -> bool:
    """Return True if ``error`` belongs to a failure class worth retrying."""
    if isinstance(error, Cancelled):
        return False
    if isinstance(error, IntegrationRuntimeError):
        return bool(error.transient)
    if isinstance(error, (httpx.TimeoutException, httpx.TransportError)):
        return True
    return isinstance(error, asyncio.TimeoutError)


class RetryPolicy(RetryConfig):
    """Retry configuration plus the loop that applies it.

    Inherits ``max_retries``, ``base_delay`` and ``max_delay`` from
    RetryConfig, so a policy can be built straight from runtime config:

        >>> policy = RetryPolicy(**config.retry.model_dump())

    Example:
        >>> policy = RetryPolicy(max_retries=3, base_delay=0.5)
        >>> result = await policy.execute(lambda: client.send(request))
    """

    def calculate_delay(self, attempt: int, retry_after: Optional[float] = None) -> float:
        """Backoff delay before retry number ``attempt`` (0-based).

        Args:
            attempt: How many retries have already happened.
            retry_after: Server-advised delay in seconds, if any.

        Returns:
            Seconds to wait, never more than ``max_delay``.
        """
        base_delay = self.base_delay * (2 ** attempt)
        jitter = random.uniform(0, self.base_delay)
        delay = base_delay + jitter
        if retry_after is not None and retry_after > delay:
            delay = retry_after
        return min(delay, self.max_delay)

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        idempotent: bool = True,
        cancellation: Optional[CancellationToken] = None,
        on_retry: Optional[RetryHook] = None,
        operation_name: str = "operation",
    ) -> T:
        """Run ``operation``, retrying transient failures.

        Args:
            operation: Zero-argument coroutine factory. Called once per
                attempt so each attempt gets a fresh coroutine.
            idempotent: If False, the operation runs exactly once.
            cancellation: Token checked before every attempt and during
                backoff sleeps.
            on_retry: Optional hook ``(attempt, error, delay)`` invoked
                before each backoff sleep.
            operation_name: Label for log events.

        Returns:
            Whatever the first successful attempt returned.

        Raises:
            RetryExhausted: ``max_retries + 1`` attempts all failed
                transiently. Chained from the last transient error.
            Cancelled: The token fired; no further attempts are made.
            Exception: Any terminal error, unchanged, on the attempt it
                occurred.
        """
        max_attempts = self.max_retries + 1 if idempotent else 1
        attempt = 0

        while True:
            if cancellation is not None:
                cancellation.raise_if_cancelled()

            try:
                return await operation()
            except Exception as exc:
                if not is_transient(exc) or not idempotent:
                    raise

                attempt += 1
                if attempt >= max_attempts:
                    logger.warning(
                        "retry_exhausted",
                        operation=operation_name,
                        attempts=attempt,
                        error_type=type(exc).__name__,
                        error=str(exc),
                    )
                    raise RetryExhausted(
                        message=(
                            f"{operation_name} failed after {attempt} attempts: {exc}"
                        ),
                        attempts=attempt,
                        cause=exc,
                    ) from exc

                delay = self.calculate_delay(
                    attempt - 1, retry_after=getattr(exc, "retry_after", None)
                )
                logger.info(
                    "retry_scheduled",
                    operation=operation_name,
                    attempt=attempt,
                    max_attempts=max_attempts,
                    delay_seconds=round(delay, 3),
                    error_type=type(exc).__name__,
                )
                if on_retry is not None:
                    result = on_retry(attempt, exc, delay)
                    if inspect.isawaitable(result):
                        await result

                await sleep_or_cancel(delay, cancellation)
