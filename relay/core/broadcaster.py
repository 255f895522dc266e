"""
Room-based event delivery
Each tenant id names exactly one room; an event only ever reaches the room of its own tenant
"""
import asyncio
import logging
from typing import Any, Dict, Optional, Protocol, Set

from relay.config import settings
from relay.models.events import CanonicalEvent
from relay.utils.metrics import record_broadcast

logger = logging.getLogger(__name__)


class RoomSocket(Protocol):
    """Downstream connection that can receive JSON messages"""

    async def send_json(self, data: Any) -> None:
        ...


class RoomBroadcaster:
    """
    Holds room membership (tenant_id -> set of sockets) and delivers
    canonical events to the members of a single room.
    """

    def __init__(self, send_timeout: Optional[float] = None):
        self.send_timeout = send_timeout if send_timeout is not None else settings.BROADCAST_SEND_TIMEOUT_SECONDS
        self.rooms: Dict[str, Set[RoomSocket]] = {}

    def join(self, tenant_id: str, socket: RoomSocket):
        """Add a socket to a tenant room"""
        self.rooms.setdefault(tenant_id, set()).add(socket)

    def leave(self, tenant_id: str, socket: RoomSocket):
        """Remove a socket from a tenant room"""
        members = self.rooms.get(tenant_id)
        if members is None:
            return
        members.discard(socket)
        if not members:
            del self.rooms[tenant_id]

    def members(self, tenant_id: str) -> Set[RoomSocket]:
        """Snapshot of the sockets in a room"""
        return set(self.rooms.get(tenant_id, ()))

    async def broadcast(self, tenant_id: str, event: CanonicalEvent) -> int:
        """
        Deliver an event to every socket in the tenant's room.
        Returns the number of sockets reached.
        """
        if event.tenant_id != tenant_id:
            raise ValueError(
                f"Refusing to deliver {event.kind.value} of tenant {event.tenant_id!r} to room {tenant_id!r}"
            )

        members = list(self.members(tenant_id))
        if not members:
            return 0

        message = event.to_message()
        # A stalled socket costs at most send_timeout, and never delays its roommates
        results = await asyncio.gather(
            *(asyncio.wait_for(socket.send_json(message), timeout=self.send_timeout) for socket in members),
            return_exceptions=True,
        )

        disconnected = set()
        for socket, result in zip(members, results):
            if isinstance(result, asyncio.TimeoutError):
                logger.warning("Dropping socket from room %s: send timed out after %ss", tenant_id, self.send_timeout)
                disconnected.add(socket)
            elif isinstance(result, Exception):
                logger.debug("Dropping socket from room %s after send failure: %s", tenant_id, result)
                disconnected.add(socket)

        # Remove disconnected sockets
        for socket in disconnected:
            self.leave(tenant_id, socket)

        record_broadcast(event.kind.value)
        return len(members) - len(disconnected)
