"""Cooperative cancellation for in-flight runs."""

import asyncio
from typing import Optional

from .errors import CancelledRunError


class CancellationToken:
    """
    Flag shared between a transport and the run it feeds.

    The transport calls ``cancel()`` when its client goes away; every external
    call site calls ``raise_if_cancelled()`` before doing I/O.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise CancelledRunError(self.reason or "cancelled")

    async def wait(self) -> None:
        await self._event.wait()
