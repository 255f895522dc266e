"""
Idle connection reclamation
Periodically releases upstream connections nobody is watching
"""
import asyncio
import logging
from typing import List, Optional

from relay.config import settings
from relay.core.connection_pool import ConnectionPool
from relay.core.subscriber_registry import SubscriberRegistry
from relay.utils.metrics import record_eviction

logger = logging.getLogger(__name__)


class Janitor:
    """
    Evicts ACTIVE connections that have zero subscribers and have been idle
    longer than idle_threshold. Only reads counts and calls pool.disconnect().
    """

    def __init__(
        self,
        pool: ConnectionPool,
        registry: SubscriberRegistry,
        interval: Optional[float] = None,
        idle_threshold: Optional[float] = None,
    ):
        self.pool = pool
        self.registry = registry
        self.interval = interval if interval is not None else settings.JANITOR_INTERVAL_SECONDS
        self.idle_threshold = idle_threshold if idle_threshold is not None else settings.IDLE_THRESHOLD_SECONDS
        self._task: Optional[asyncio.Task] = None

    async def start(self):
        """Start the janitor background task"""
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._loop())

    async def stop(self):
        """Stop the janitor"""
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _loop(self):
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.sweep()
            except Exception:
                logger.exception("Janitor sweep failed")

    async def sweep(self) -> List[str]:
        """Run one eviction pass; returns the evicted tenant ids"""
        evicted = []
        for tenant_id in sorted(self.pool.list_active()):
            if self.registry.count(tenant_id) != 0:
                continue
            idle = self.pool.idle_for(tenant_id)
            if idle is None or idle <= self.idle_threshold:
                continue

            logger.info("Auto-disconnect %s (inactive %ds, 0 clients)", tenant_id, round(idle))
            await self.pool.disconnect(tenant_id)
            record_eviction()
            evicted.append(tenant_id)
        return evicted
