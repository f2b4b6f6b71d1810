"""
Deduplicating work queue for reconcile keys.

Keys are VirtualDatabase identities. The queue guarantees:
- a key is held at most once while waiting (repeated adds coalesce)
- a key is handed to at most one worker at a time (single-flight)
- a key added while being processed is re-queued when the worker calls done()

Failed keys are re-added with per-key exponential backoff and no retry limit.

Usage:
    >>> queue = WorkQueue()
    >>> queue.add(ObjectKey("ns", "app1"))
    >>> key = await queue.get()
    >>> try:
    ...     outcome = await reconciler.reconcile(key)
    ... finally:
    ...     queue.done(key)
"""

import asyncio
from typing import Dict, Hashable, Optional, Set

import structlog

from vdb_controller.services import metrics

logger = structlog.get_logger(__name__)

_SHUTDOWN = object()


class WorkQueue:
    """
    In-process work queue with coalescing, single-flight and delayed adds.

    All methods must be called from the event loop that runs the workers.
    """

    def __init__(self, base_delay: float = 0.005, max_delay: float = 1000.0):
        """
        Initialize work queue.

        Args:
            base_delay: First retry delay in seconds for a failing key
            max_delay: Upper bound for the per-key retry delay in seconds
        """
        self.base_delay = base_delay
        self.max_delay = max_delay

        self._ready: "asyncio.Queue[object]" = asyncio.Queue()
        self._dirty: Set[Hashable] = set()
        self._processing: Set[Hashable] = set()
        self._failures: Dict[Hashable, int] = {}
        self._waiting: Dict[Hashable, asyncio.TimerHandle] = {}
        self._shutting_down = False

    def __len__(self) -> int:
        """Number of keys ready to be handed out."""
        return len(self._dirty - self._processing)

    @property
    def shutting_down(self) -> bool:
        return self._shutting_down

    def add(self, key: Hashable) -> None:
        """Mark a key as needing reconciliation."""
        if self._shutting_down:
            return
        if key in self._dirty:
            # Already waiting or flagged for re-processing
            return

        metrics.workqueue_adds_total.inc()
        self._dirty.add(key)
        if key in self._processing:
            logger.debug("workqueue_key_coalesced", key=str(key))
            return

        self._ready.put_nowait(key)
        metrics.workqueue_depth.set(len(self))

    def add_after(self, key: Hashable, delay: float) -> None:
        """
        Add a key once the delay has elapsed.

        If the key is already scheduled, the earlier of the two deadlines wins.
        """
        if self._shutting_down:
            return
        if delay <= 0:
            self.add(key)
            return

        loop = asyncio.get_running_loop()
        deadline = loop.time() + delay
        existing = self._waiting.get(key)
        if existing is not None:
            if existing.when() <= deadline:
                return
            existing.cancel()

        self._waiting[key] = loop.call_at(deadline, self._fire, key)

    def add_rate_limited(self, key: Hashable) -> float:
        """
        Re-add a failed key with exponential backoff.

        Returns:
            The delay applied, in seconds
        """
        failures = self._failures.get(key, 0)
        self._failures[key] = failures + 1
        delay = min(self.base_delay * (2 ** failures), self.max_delay)
        metrics.workqueue_retries_total.inc()
        logger.debug("workqueue_key_backoff", key=str(key), failures=failures + 1, delay_seconds=delay)
        self.add_after(key, delay)
        return delay

    def forget(self, key: Hashable) -> None:
        """Reset the failure count of a key."""
        self._failures.pop(key, None)

    def num_requeues(self, key: Hashable) -> int:
        return self._failures.get(key, 0)

    async def get(self) -> Optional[Hashable]:
        """
        Wait for the next key and mark it as processing.

        Returns:
            The key, or None once the queue is shut down
        """
        while True:
            item = await self._ready.get()
            if item is _SHUTDOWN:
                # Wake the next waiting worker too
                self._ready.put_nowait(_SHUTDOWN)
                return None
            if item not in self._dirty or item in self._processing:
                # Stale entry
                continue

            self._dirty.discard(item)
            self._processing.add(item)
            metrics.workqueue_depth.set(len(self))
            return item

    def done(self, key: Hashable) -> None:
        """Mark a key as no longer processing; re-queue it if it was added meanwhile."""
        self._processing.discard(key)
        if key in self._dirty and not self._shutting_down:
            self._ready.put_nowait(key)
            metrics.workqueue_depth.set(len(self))

    def shut_down(self) -> None:
        """Stop handing out keys and drop pending delayed adds."""
        if self._shutting_down:
            return
        self._shutting_down = True
        for handle in self._waiting.values():
            handle.cancel()
        self._waiting.clear()
        self._ready.put_nowait(_SHUTDOWN)
        logger.info("workqueue_shut_down", pending=len(self))

    def _fire(self, key: Hashable) -> None:
        self._waiting.pop(key, None)
        self.add(key)
