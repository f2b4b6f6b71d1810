"""
VirtualDatabase controller.

Wires watchers, the work queue and a bounded pool of reconcile workers:

    watch(VirtualDatabase)  --key-->        +-----------+      +---------+
                                            | WorkQueue | ---> | workers | --> reconciler
    watch(DatabaseEndpoint) --owner key-->  +-----------+      +---------+
                                                 ^                  |
                                                 +---- Outcome -----+

The queue's single-flight guarantee means no two workers ever reconcile the
same VirtualDatabase concurrently; distinct keys run in parallel.
"""
import asyncio
from typing import List, Optional

import structlog

from vdb_controller.core.work_queue import WorkQueue
from vdb_controller.models.outcome import Outcome
from vdb_controller.models.resources import DatabaseEndpoint, ObjectKey, Resource, VirtualDatabase
from vdb_controller.services import metrics
from vdb_controller.services.kube_store import KubeStore
from vdb_controller.workers.event_watcher import EventWatcher
from vdb_controller.workers.virtualdatabase_reconciler import VirtualDatabaseReconciler

logger = structlog.get_logger(__name__)


class Controller:
    """
    Runs the watch -> queue -> reconcile loop for VirtualDatabases.

    Features:
    - Level-triggered: watch events only enqueue keys, every pass re-reads state
    - Owned DatabaseEndpoint changes re-trigger their VirtualDatabase
    - Per-key backoff on errors, fixed rechecks on success
    - Restartable: stop() then start() builds a fresh queue
    """

    def __init__(
        self,
        store: KubeStore,
        reconciler: VirtualDatabaseReconciler,
        max_concurrent_reconciles: int = 4,
        backoff_base_delay: float = 0.005,
        backoff_max_delay: float = 1000.0,
    ):
        self.store = store
        self.reconciler = reconciler
        self.max_concurrent_reconciles = max_concurrent_reconciles
        self.backoff_base_delay = backoff_base_delay
        self.backoff_max_delay = backoff_max_delay

        self.queue: Optional[WorkQueue] = None
        self.running = False
        self._watchers: List[EventWatcher] = []
        self._tasks: List[asyncio.Task] = []

    # Event -> key mapping

    def virtualdatabase_keys(self, event_type: str, obj: Resource) -> List[ObjectKey]:
        return [obj.key]

    def endpoint_owner_keys(self, event_type: str, obj: Resource) -> List[ObjectKey]:
        """Map a DatabaseEndpoint event to its owning VirtualDatabase."""
        owner = self.store.owner_of(obj.key)
        if owner is None and isinstance(obj, DatabaseEndpoint):
            # DELETED events are dropped from the index before they are delivered
            owner = obj.owner_key
        if owner is None:
            logger.debug("endpoint_without_owner_ignored", endpoint=str(obj.key), event_type=event_type)
            return []
        return [owner]

    # Lifecycle

    async def start(self) -> None:
        """Start watchers and workers; returns once they are scheduled."""
        if self.running:
            return
        self.running = True
        self.queue = WorkQueue(base_delay=self.backoff_base_delay, max_delay=self.backoff_max_delay)
        self._watchers = [
            EventWatcher(self.store, VirtualDatabase, self.queue, self.virtualdatabase_keys),
            EventWatcher(self.store, DatabaseEndpoint, self.queue, self.endpoint_owner_keys),
        ]
        self._tasks = [asyncio.create_task(w.start(), name=f"watch-{w.kind}") for w in self._watchers]
        self._tasks += [
            asyncio.create_task(self._worker(worker_id), name=f"reconcile-worker-{worker_id}")
            for worker_id in range(self.max_concurrent_reconciles)
        ]
        logger.info("controller_started", workers=self.max_concurrent_reconciles)

    async def stop(self) -> None:
        """Stop watchers, drain nothing further, and cancel in-flight reconciles."""
        if not self.running:
            return
        logger.info("stopping_controller")
        self.running = False
        for watcher in self._watchers:
            await watcher.stop()
        if self.queue is not None:
            self.queue.shut_down()

        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        self._watchers = []
        logger.info("controller_stopped")

    # Workers

    async def _worker(self, worker_id: int) -> None:
        queue = self.queue
        log = logger.bind(worker_id=worker_id)
        log.debug("reconcile_worker_started")
        while True:
            key = await queue.get()
            if key is None:
                break

            metrics.workers_busy.inc()
            try:
                outcome = await self.reconciler.reconcile(key)
                self.apply_outcome(queue, key, outcome)
            finally:
                queue.done(key)
                metrics.workers_busy.dec()
        log.debug("reconcile_worker_stopped")

    @staticmethod
    def apply_outcome(queue: WorkQueue, key: ObjectKey, outcome: Outcome) -> None:
        """Translate a reconcile Outcome into a work-queue action."""
        if outcome.error is not None:
            if outcome.requeue:
                queue.forget(key)
                queue.add(key)
                logger.warning("reconcile_failed_requeue_immediately", key=str(key), error=str(outcome.error))
            else:
                delay = queue.add_rate_limited(key)
                logger.warning(
                    "reconcile_failed_backoff",
                    key=str(key),
                    error=str(outcome.error),
                    error_type=type(outcome.error).__name__,
                    retry_in_seconds=delay,
                )
            return

        queue.forget(key)
        if outcome.requeue_after is not None:
            queue.add_after(key, outcome.requeue_after)
        elif outcome.requeue:
            queue.add(key)
