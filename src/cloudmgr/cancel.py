"""
Cancellation signal for in-flight retry and pagination sequences.
"""

import asyncio
from typing import Optional


class CancelToken:
    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str:
        return self._reason or "Request cancelled"

    def cancel(self, reason: Optional[str] = None) -> None:
        if not self._event.is_set():
            self._reason = reason
            self._event.set()

    async def sleep(self, delay: float) -> bool:
        """Wait up to ``delay`` seconds. Returns True if cancelled meanwhile."""
        if self.cancelled:
            return True
        if delay <= 0:
            return False
        try:
            await asyncio.wait_for(self._event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return False
        return True
