"""
Execution Gate for HubProbe

A single-permit admission primitive wrapped around every end-to-end test body.

The registry and per-test device provisioning are not safe for concurrent
mutation by tests sharing one suite fixture, so test bodies are serialized
here even when the runner schedules them concurrently. This trades
throughput for isolation on purpose. Do not replace it with finer-grained
locking without revisiting the shared-fixture assumption.
"""

import asyncio
from typing import Optional

from .logging import get_logger


class ExecutionGate:
    """Counting admission primitive with a fixed capacity (1 by default)."""

    def __init__(self, capacity: int = 1):
        if capacity < 1:
            raise ValueError(f"Gate capacity must be at least 1, got {capacity}")
        self.capacity = capacity
        self._semaphore = asyncio.Semaphore(capacity)
        self._held = 0
        self.logger = get_logger('gate')

    @property
    def held(self) -> int:
        """Number of permits currently handed out"""
        return self._held

    def locked(self) -> bool:
        return self._semaphore.locked()

    async def acquire(self, owner: Optional[str] = None) -> None:
        """Suspend until a permit is available, then take it."""
        if self._semaphore.locked():
            self.logger.debug(f"Waiting for execution gate: owner={owner}")
        await self._semaphore.acquire()
        self._held += 1
        self.logger.debug(f"Execution gate acquired: owner={owner}, held={self._held}")

    def release(self, owner: Optional[str] = None) -> None:
        """Return a permit."""
        if self._held == 0:
            raise RuntimeError("Execution gate released more times than acquired")
        self._held -= 1
        self._semaphore.release()
        self.logger.debug(f"Execution gate released: owner={owner}, held={self._held}")

    async def __aenter__(self):
        await self.acquire()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        self.release()
        return False
