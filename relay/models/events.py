"""
Canonical event models exchanged between the normalizer, the pool and the broadcaster
"""
import copy
import time
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class EventKind(str, Enum):
    """Canonical event kinds; values are the event names sent to viewers"""
    CHAT = "tiktok_chat"
    PLAYER_JOIN = "player_join"
    PLAYER_ATTACK = "player_attack"
    LIKE = "tiktok_like"
    SHARE = "tiktok_share"
    GIFT = "tiktok_gift"
    GIFT_RECEIVED = "gift_received"  # legacy alias of GIFT
    CONNECTED = "tiktok_connected"
    DISCONNECTED = "tiktok_disconnected"
    ERROR = "tiktok_error"


class ControlEvent(str, Enum):
    """Replies sent to a single requesting socket, never broadcast"""
    ROOM_JOINED = "room-joined"
    CONNECTION_ERROR = "connection-error"
    ERROR = "error"
    PONG = "pong"


class GiftType(str, Enum):
    """Gift size buckets by coin value"""
    SMALL = "small"    # < 10 coins
    MEDIUM = "medium"  # 10-99 coins
    LARGE = "large"    # 100+ coins


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds"""
    return int(time.time() * 1000)


class EventUser(BaseModel):
    """Viewer that triggered an event"""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: Optional[str] = Field(default=None, alias="uniqueId")
    display_name: Optional[str] = Field(default=None, alias="nickname")
    avatar_url: Optional[str] = Field(default=None, alias="profilePictureUrl")


class CanonicalEvent(BaseModel):
    """Normalized event for one tenant"""
    model_config = ConfigDict(frozen=True)

    kind: EventKind
    tenant_id: str
    user: Optional[EventUser] = None
    payload: Mapping[str, Any] = Field(default_factory=dict, validate_default=True)
    timestamp: int = Field(default_factory=now_ms)

    @field_validator("payload", mode="after")
    @classmethod
    def freeze_payload(cls, value: Mapping[str, Any]) -> Mapping[str, Any]:
        """Own a private deep copy behind a read-only view"""
        return MappingProxyType(copy.deepcopy(dict(value)))

    def to_message(self) -> Dict[str, Any]:
        """Build the wire envelope delivered to viewers"""
        data = copy.deepcopy(dict(self.payload))
        if self.user is not None:
            data["user"] = self.user.model_dump(by_alias=True)
        data["timestamp"] = self.timestamp
        return {"event": self.kind.value, "data": data}


def control_message(event: ControlEvent, **data: Any) -> Dict[str, Any]:
    """Build the wire envelope for a single-socket reply"""
    return {"event": event.value, "data": data}
