"""
Relay service: process-level owner of the pool, registry, broadcaster and janitor
Sequences downstream join/leave requests against subscriber counts and upstream connections
"""
import logging
from typing import Any, Dict, Optional, Set

from relay.core.broadcaster import RoomBroadcaster, RoomSocket
from relay.core.connection_pool import ConnectionPool
from relay.core.janitor import Janitor
from relay.core.subscriber_registry import SubscriberRegistry
from relay.models.tenant import PoolStats, normalize_tenant_id
from relay.services.upstream import UpstreamFactory

logger = logging.getLogger(__name__)


class RelayService:
    """
    Wires the relay components together and tracks which rooms each
    downstream socket has joined, so counts are only released by the
    sockets that took them.
    """

    def __init__(
        self,
        upstream_factory: UpstreamFactory,
        connect_timeout: Optional[float] = None,
        janitor_interval: Optional[float] = None,
        idle_threshold: Optional[float] = None,
        send_timeout: Optional[float] = None,
    ):
        self.broadcaster = RoomBroadcaster(send_timeout=send_timeout)
        self.registry = SubscriberRegistry()
        self.pool = ConnectionPool(self.broadcaster, upstream_factory, connect_timeout=connect_timeout)
        self.janitor = Janitor(self.pool, self.registry, interval=janitor_interval, idle_threshold=idle_threshold)

        # socket -> tenant ids it has joined
        self.memberships: Dict[Any, Set[str]] = {}

    async def start(self):
        """Start background maintenance"""
        await self.janitor.start()

    async def stop(self):
        """Stop background maintenance and release every upstream connection"""
        await self.janitor.stop()
        await self.pool.shutdown()
        logger.info("Relay stopped")

    async def join(self, socket: RoomSocket, raw_tenant_id: Any) -> bool:
        """
        Subscribe a socket to a tenant room and make sure the tenant's
        upstream connection exists. Raises InvalidTenantId for bad input.
        Returns whether the upstream connection is available.
        """
        tenant_id = normalize_tenant_id(raw_tenant_id)

        self.broadcaster.join(tenant_id, socket)
        joined = self.memberships.setdefault(socket, set())
        if tenant_id not in joined:
            joined.add(tenant_id)
            self.registry.increment(tenant_id)
        logger.info("Socket %s joined room: %s", id(socket), tenant_id)

        return await self.pool.connect(tenant_id)

    def leave(self, socket: RoomSocket, raw_tenant_id: Any) -> bool:
        """Unsubscribe a socket from a tenant room; ignores rooms it never joined"""
        try:
            tenant_id = normalize_tenant_id(raw_tenant_id)
        except ValueError:
            return False

        joined = self.memberships.get(socket)
        if not joined or tenant_id not in joined:
            return False

        joined.discard(tenant_id)
        if not joined:
            del self.memberships[socket]
        self.broadcaster.leave(tenant_id, socket)
        self.registry.decrement(tenant_id)
        logger.info("Socket %s left room: %s", id(socket), tenant_id)
        return True

    def drop(self, socket: RoomSocket):
        """Downstream socket went away: leave every room it joined"""
        for tenant_id in self.memberships.pop(socket, set()):
            self.broadcaster.leave(tenant_id, socket)
            self.registry.decrement(tenant_id)

    async def disconnect_tenant(self, raw_tenant_id: Any) -> bool:
        """Operator-initiated release of a tenant's upstream connection"""
        return await self.pool.disconnect(normalize_tenant_id(raw_tenant_id))

    def stats(self) -> PoolStats:
        """Get current service statistics"""
        connections = self.pool.tenant_ids()
        return PoolStats(
            active_connections=len(connections),
            connections=connections,
            rooms=self.registry.snapshot(),
        )
