"""
Contract between the connection pool and a per-tenant live-event client
"""
from enum import Enum
from typing import Any, Callable, Mapping, Protocol


class UpstreamEventFamily(str, Enum):
    """Raw event families an upstream client reports"""
    CHAT = "chat"
    LIKE = "like"
    SOCIAL = "social"
    GIFT = "gift"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    ERROR = "error"


# Called by the upstream client, in emission order, for every raw event.
EventSink = Callable[[UpstreamEventFamily, Mapping[str, Any]], None]


class UpstreamConnectError(Exception):
    """Upstream handshake was rejected (streamer offline, unknown user, ...)"""


class UpstreamClient(Protocol):
    """Live-event client for a single tenant"""

    async def connect(self) -> None:
        """Perform the handshake; raise on failure"""
        ...

    async def disconnect(self) -> None:
        """Tear the connection down"""
        ...


UpstreamFactory = Callable[[str, EventSink], UpstreamClient]
