"""
Tenant connection and pool statistics models
"""
import asyncio
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class InvalidTenantId(ValueError):
    """Raised when a join request carries no usable tenant identifier"""


def normalize_tenant_id(raw: Any) -> str:
    """Lower-case and trim a tenant id; reject missing or non-string values"""
    if not isinstance(raw, str):
        raise InvalidTenantId("Invalid username")
    tenant_id = raw.strip().lower()
    if not tenant_id:
        raise InvalidTenantId("Invalid username")
    return tenant_id


class ConnectionState(str, Enum):
    """Upstream connection lifecycle"""
    CONNECTING = "CONNECTING"
    ACTIVE = "ACTIVE"
    CLOSED = "CLOSED"


class TenantConnection(BaseModel):
    """One upstream connection, owned by the ConnectionPool"""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    tenant_id: str
    upstream: Any = None
    state: ConnectionState = ConnectionState.CONNECTING
    last_activity_at: float  # monotonic seconds
    created_at: datetime = Field(default_factory=datetime.now)

    # Runtime plumbing, not part of the public model
    events: Optional[asyncio.Queue] = Field(default=None, exclude=True)
    handshake: Optional[asyncio.Task] = Field(default=None, exclude=True)
    dispatcher: Optional[asyncio.Task] = Field(default=None, exclude=True)


class PoolStats(BaseModel):
    """Read-only snapshot for health and monitoring surfaces"""
    model_config = ConfigDict(populate_by_name=True)

    active_connections: int = Field(alias="activeConnections")
    connections: List[str]
    rooms: Dict[str, int]
