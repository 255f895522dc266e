"""
Multi-tenant upstream connection pool
Keeps at most one upstream live connection per tenant, shared by all of that tenant's viewers
"""
import asyncio
import logging
import time
from typing import Any, Callable, Dict, Mapping, Optional, Set

from relay.config import settings
from relay.core.broadcaster import RoomBroadcaster
from relay.models.tenant import ConnectionState, TenantConnection
from relay.services.normalizer import normalize
from relay.services.upstream import UpstreamEventFamily, UpstreamFactory
from relay.utils.metrics import record_handshake, update_upstream_connections

logger = logging.getLogger(__name__)


class ConnectionPool:
    """
    Owns the tenant_id -> TenantConnection map:
    - connect() is idempotent and race-safe: concurrent callers for the same
      tenant share one handshake task and its result
    - disconnect() removes the entry unconditionally; if the handshake is still
      in flight, its success is undone as soon as it completes
    - upstream events are queued per connection and dispatched by a single task,
      so each tenant's events are broadcast in emission order
    """

    def __init__(
        self,
        broadcaster: RoomBroadcaster,
        upstream_factory: UpstreamFactory,
        connect_timeout: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.broadcaster = broadcaster
        self.upstream_factory = upstream_factory
        self.connect_timeout = connect_timeout if connect_timeout is not None else settings.UPSTREAM_CONNECT_TIMEOUT_SECONDS
        self.clock = clock
        self.connections: Dict[str, TenantConnection] = {}

    async def connect(self, tenant_id: str) -> bool:
        """
        Connect to a tenant's live feed, reusing an existing connection.
        Returns True when the upstream connection is (or becomes) active.
        """
        conn = self.connections.get(tenant_id)
        if conn is not None:
            conn.last_activity_at = self.clock()
            if conn.state is ConnectionState.ACTIVE:
                logger.info("Reusing existing connection for: %s", tenant_id)
                return True
            # Handshake in flight; wait for its outcome instead of racing it
            logger.info("Waiting for in-flight connection for: %s", tenant_id)
            return await asyncio.shield(conn.handshake)

        logger.info("Creating new connection for: %s", tenant_id)
        conn = TenantConnection(
            tenant_id=tenant_id,
            last_activity_at=self.clock(),
            events=asyncio.Queue(),
        )
        try:
            conn.upstream = self.upstream_factory(tenant_id, self._make_sink(conn))
        except Exception as e:
            logger.warning("Cannot create upstream client for %s: %s", tenant_id, e)
            conn.state = ConnectionState.CLOSED
            record_handshake("failure")
            return False

        # Entry and handshake task are installed without an await in between
        self.connections[tenant_id] = conn
        self._update_gauge()
        conn.handshake = asyncio.create_task(self._handshake(conn))
        return await asyncio.shield(conn.handshake)

    async def _handshake(self, conn: TenantConnection) -> bool:
        """Run the upstream handshake and settle the entry's state"""
        try:
            await asyncio.wait_for(conn.upstream.connect(), timeout=self.connect_timeout)
        except asyncio.CancelledError:
            self._discard(conn)
            await self._close_upstream(conn)
            record_handshake("aborted")
            raise
        except asyncio.TimeoutError:
            logger.warning("Cannot connect to %s: handshake timed out after %ss", conn.tenant_id, self.connect_timeout)
            self._discard(conn)
            await self._close_upstream(conn)
            record_handshake("timeout")
            return False
        except Exception as e:
            logger.warning("Cannot connect to %s: %s", conn.tenant_id, e)
            self._discard(conn)
            await self._close_upstream(conn)
            record_handshake("failure")
            return False

        if conn.state is ConnectionState.CLOSED:
            # disconnect() arrived while the handshake was running
            logger.info("Connection for %s was released during handshake; closing it", conn.tenant_id)
            await self._close_upstream(conn)
            record_handshake("aborted")
            return False

        conn.state = ConnectionState.ACTIVE
        conn.dispatcher = asyncio.create_task(self._dispatch_loop(conn))
        record_handshake("success")
        logger.info("Connected to live: %s", conn.tenant_id)
        return True

    def _make_sink(self, conn: TenantConnection):
        def sink(family: UpstreamEventFamily, raw: Mapping[str, Any]) -> None:
            if conn.state is ConnectionState.CLOSED:
                return
            conn.events.put_nowait((family, raw))
        return sink

    async def _dispatch_loop(self, conn: TenantConnection):
        """Drain a connection's event queue in order"""
        while True:
            family, raw = await conn.events.get()
            try:
                await self._dispatch(conn, family, raw)
            except Exception:
                logger.exception("Failed to dispatch %s event for %s", family, conn.tenant_id)
            finally:
                conn.events.task_done()

            if conn.state is ConnectionState.CLOSED:
                self._drain(conn)
                break

    async def _dispatch(self, conn: TenantConnection, family: UpstreamEventFamily, raw: Mapping[str, Any]):
        events = normalize(conn.tenant_id, family, raw)
        if events and family is not UpstreamEventFamily.DISCONNECTED:
            self.touch(conn.tenant_id)

        if family is UpstreamEventFamily.ERROR:
            logger.error("Error for %s: %s", conn.tenant_id, raw.get("message"))

        for event in events:
            await self.broadcaster.broadcast(conn.tenant_id, event)

        if family is UpstreamEventFamily.DISCONNECTED:
            logger.info("Disconnected from: %s", conn.tenant_id)
            self._discard(conn)
            await self._close_upstream(conn)

    async def disconnect(self, tenant_id: str) -> bool:
        """
        Release a tenant's upstream connection.
        Idempotent; returns False when there was nothing to release.
        """
        conn = self.connections.get(tenant_id)
        if conn is None:
            return False

        was_connecting = conn.state is ConnectionState.CONNECTING
        self._discard(conn)

        if was_connecting:
            # _handshake closes the upstream once connect() returns
            logger.info("Disconnect requested during handshake for: %s", tenant_id)
            return True

        if conn.dispatcher is not None and conn.dispatcher is not asyncio.current_task():
            conn.dispatcher.cancel()
            self._drain(conn)

        await self._close_upstream(conn)
        logger.info("Disconnected: %s", tenant_id)
        return True

    def touch(self, tenant_id: str):
        """Update last activity timestamp for a connection"""
        conn = self.connections.get(tenant_id)
        if conn is not None:
            conn.last_activity_at = self.clock()

    def list_active(self) -> Set[str]:
        """Tenant ids with an ACTIVE upstream connection"""
        return {
            tenant_id for tenant_id, conn in self.connections.items()
            if conn.state is ConnectionState.ACTIVE
        }

    def tenant_ids(self) -> list:
        """All pooled tenant ids, including handshakes in flight"""
        return list(self.connections.keys())

    def get_connection(self, tenant_id: str) -> Optional[TenantConnection]:
        return self.connections.get(tenant_id)

    def idle_for(self, tenant_id: str) -> Optional[float]:
        """Seconds since the tenant's last activity, None if not pooled"""
        conn = self.connections.get(tenant_id)
        if conn is None:
            return None
        return self.clock() - conn.last_activity_at

    async def flush(self, tenant_id: str):
        """Wait until every event received so far for a tenant has been broadcast"""
        conn = self.connections.get(tenant_id)
        if conn is None or conn.state is not ConnectionState.ACTIVE:
            return
        await conn.events.join()

    async def shutdown(self):
        """Disconnect every tenant and abandon pending handshakes"""
        pending = []
        for tenant_id in list(self.connections.keys()):
            conn = self.connections[tenant_id]
            if conn.state is ConnectionState.CONNECTING and conn.handshake is not None:
                conn.handshake.cancel()
                pending.append(conn.handshake)
            await self.disconnect(tenant_id)

        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    def _discard(self, conn: TenantConnection):
        """Mark a connection closed and drop it from the map if it is still the current entry"""
        conn.state = ConnectionState.CLOSED
        if self.connections.get(conn.tenant_id) is conn:
            del self.connections[conn.tenant_id]
        self._update_gauge()

    def _drain(self, conn: TenantConnection):
        """Discard queued events of a closed connection so flush() never blocks on them"""
        while True:
            try:
                conn.events.get_nowait()
            except asyncio.QueueEmpty:
                break
            conn.events.task_done()

    async def _close_upstream(self, conn: TenantConnection):
        """Best-effort upstream teardown; never raises"""
        if conn.upstream is None:
            return
        try:
            await conn.upstream.disconnect()
        except Exception as e:
            # Ignore disconnect errors
            logger.debug("Ignoring upstream teardown error for %s: %s", conn.tenant_id, e)

    def _update_gauge(self):
        update_upstream_connections(len(self.connections))
