"""
Kubernetes event watcher feeding the work queue.

Watches one kind through the store and turns every event into the work-queue
key(s) it affects. The stream is re-opened with backoff whenever it breaks.
"""
import asyncio
from typing import Callable, Iterable, Type

import structlog

from vdb_controller.core.work_queue import WorkQueue
from vdb_controller.models.resources import ObjectKey, Resource
from vdb_controller.services.kube_store import KubeStore
from vdb_controller.utils.retry import backoff_delay

logger = structlog.get_logger(__name__)

KeyMapper = Callable[[str, Resource], Iterable[ObjectKey]]


class EventWatcher:
    """
    Watches a custom resource kind and enqueues the affected keys.

    The mapper decides which keys an event touches: the object itself for
    VirtualDatabases, the owning VirtualDatabase for DatabaseEndpoints.
    """

    def __init__(self, store: KubeStore, model: Type[Resource], queue: WorkQueue, mapper: KeyMapper):
        self.store = store
        self.model = model
        self.queue = queue
        self.mapper = mapper
        self.running = False
        self.kind = model.__name__

    async def start(self) -> None:
        """Watch until stopped or cancelled."""
        self.running = True
        failures = 0
        logger.info("event_watcher_started", kind=self.kind)

        while self.running:
            try:
                async for event_type, obj in self.store.watch(self.model):
                    failures = 0
                    for key in self.mapper(event_type, obj):
                        logger.debug(
                            "event_enqueued",
                            kind=self.kind,
                            event_type=event_type,
                            object=str(obj.key),
                            key=str(key),
                        )
                        self.queue.add(key)
                    if not self.running:
                        break
            except asyncio.CancelledError:
                logger.info("event_watcher_cancelled", kind=self.kind)
                raise
            except Exception as e:
                delay = backoff_delay(failures, initial_delay=1.0, max_delay=30.0)
                failures += 1
                logger.error(
                    "event_watcher_stream_failed",
                    kind=self.kind,
                    error=str(e),
                    retry_in_seconds=delay,
                )
                await asyncio.sleep(delay)

        logger.info("event_watcher_stopped", kind=self.kind)

    async def stop(self) -> None:
        """Stop watching events."""
        logger.info("event_watcher_stopping", kind=self.kind)
        self.running = False
