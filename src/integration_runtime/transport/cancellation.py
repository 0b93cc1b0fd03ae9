"""
integration_runtime.transport.cancellation - Cooperative Cancellation
=======================================================================

A CancellationToken is handed to every suspending operation (network call,
rate-governor wait, retry loop). When the token is cancelled:

    - waits in progress wake up immediately and raise ``Cancelled``
    - the retry loop stops and does not issue another attempt
    - the in-flight network attempt is abandoned

This is separate from ``asyncio.Task.cancel()``: a raw CancelledError from
task cancellation is always propagated unchanged. The token exists so a
caller can stop ONE logical operation (and get a typed ``Cancelled``) without
tearing down the task that owns it.

Usage:
    >>> token = CancellationToken()
    >>> task = asyncio.create_task(client.get("/slow", cancellation=token))
    >>> token.cancel("user navigated away")
    >>> await task  # raises Cancelled
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Optional, TypeVar

from integration_runtime.core.exceptions import Cancelled

T = TypeVar("T")


class CancellationToken:
    """A one-shot, awaitable cancellation signal."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: Optional[str] = None

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def cancel(self, reason: str = "cancelled by caller") -> None:
        """Signal cancellation. Idempotent; the first reason wins."""
        if not self._event.is_set():
            self._reason = reason
            self._event.set()

    def raise_if_cancelled(self) -> None:
        """Raise Cancelled if the token has fired."""
        if self._event.is_set():
            raise Cancelled(
                message=f"Operation cancelled: {self._reason}",
                details={"reason": self._reason},
            )

    async def wait(self) -> None:
        """Suspend until the token is cancelled."""
        await self._event.wait()


async def sleep_or_cancel(delay: float, token: Optional[CancellationToken]) -> None:
    """Sleep for ``delay`` seconds unless ``token`` fires first.

    Raises:
        Cancelled: the token fired before or during the sleep.
    """
    if token is None:
        await asyncio.sleep(delay)
        return

    token.raise_if_cancelled()
    try:
        await asyncio.wait_for(token.wait(), timeout=max(delay, 0.0))
    except asyncio.TimeoutError:
        return
    token.raise_if_cancelled()


async def run_cancellable(
    awaitable: Awaitable[T], token: Optional[CancellationToken]
) -> T:
    """Await ``awaitable`` but abandon it as soon as ``token`` fires.

    The abandoned work is cancelled and awaited so nothing leaks.

    Raises:
        Cancelled: the token fired before the awaitable completed.
    """
    if token is None:
        return await awaitable

    token.raise_if_cancelled()
    work = asyncio.ensure_future(awaitable)
    watcher = asyncio.ensure_future(token.wait())
    try:
        done, _ = await asyncio.wait(
            {work, watcher}, return_when=asyncio.FIRST_COMPLETED
        )
    except BaseException:
        work.cancel()
        watcher.cancel()
        raise

    if work in done:
        watcher.cancel()
        return work.result()

    work.cancel()
    # Drain the abandoned work; its outcome is superseded by the cancellation.
    await asyncio.gather(work, return_exceptions=True)
    token.raise_if_cancelled()
    raise Cancelled()  # pragma: no cover
