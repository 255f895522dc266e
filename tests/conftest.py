"""
Shared fixtures: scripted upstream clients, recording sockets and a manual clock
"""
import asyncio
from typing import Any, Dict, List, Mapping, Optional, Set, Tuple

import pytest
import pytest_asyncio

from relay.core.broadcaster import RoomBroadcaster
from relay.core.connection_pool import ConnectionPool
from relay.core.subscriber_registry import SubscriberRegistry
from relay.services.upstream import EventSink, UpstreamConnectError, UpstreamEventFamily


class FakeClock:
    """Monotonic clock advanced by hand"""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class FakeUpstream:
    """Upstream client whose handshake outcome is controlled by its factory"""

    def __init__(self, factory: "FakeUpstreamFactory", tenant_id: str, sink: EventSink):
        self.factory = factory
        self.tenant_id = tenant_id
        self.sink = sink
        self.connect_calls = 0
        self.disconnect_calls = 0

    async def connect(self) -> None:
        self.connect_calls += 1
        delay = self.factory.delays.get(self.tenant_id)
        if delay:
            await asyncio.sleep(delay)
        gate = self.factory.gates.get(self.tenant_id)
        if gate is not None:
            await gate.wait()
        if self.tenant_id in self.factory.failing:
            raise UpstreamConnectError(f"{self.tenant_id} is offline")
        for family, raw in self.factory.scripted.get(self.tenant_id, []):
            self.sink(family, raw)

    async def disconnect(self) -> None:
        self.disconnect_calls += 1
        if self.factory.teardown_error:
            raise RuntimeError("socket already closed")

    def emit(self, family: UpstreamEventFamily, raw: Optional[Mapping[str, Any]] = None):
        self.sink(family, raw or {})


class FakeUpstreamFactory:
    """UpstreamFactory that records every client it builds"""

    def __init__(self):
        self.created: Dict[str, List[FakeUpstream]] = {}
        self.failing: Set[str] = set()
        self.gates: Dict[str, asyncio.Event] = {}
        self.scripted: Dict[str, List[Tuple[UpstreamEventFamily, Dict[str, Any]]]] = {}
        self.delays: Dict[str, float] = {}
        self.broken: Set[str] = set()
        self.teardown_error = False

    def __call__(self, tenant_id: str, sink: EventSink) -> FakeUpstream:
        if tenant_id in self.broken:
            raise RuntimeError(f"cannot build client for {tenant_id}")
        upstream = FakeUpstream(self, tenant_id, sink)
        self.created.setdefault(tenant_id, []).append(upstream)
        return upstream

    def handshakes(self, tenant_id: str) -> int:
        return sum(u.connect_calls for u in self.created.get(tenant_id, []))

    def last(self, tenant_id: str) -> FakeUpstream:
        return self.created[tenant_id][-1]


class FakeSocket:
    """Downstream socket that records what it was sent"""

    def __init__(self, name: str = "socket", fail: bool = False, stall: float = 0.0):
        self.name = name
        self.fail = fail
        self.stall = stall
        self.messages: List[Dict[str, Any]] = []

    async def send_json(self, data: Any) -> None:
        if self.fail:
            raise RuntimeError("connection reset")
        if self.stall:
            await asyncio.sleep(self.stall)
        self.messages.append(data)

    def event_names(self) -> List[str]:
        return [m["event"] for m in self.messages]

    def __repr__(self):
        return f"FakeSocket({self.name})"


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def factory():
    return FakeUpstreamFactory()


@pytest.fixture
def broadcaster():
    return RoomBroadcaster()


@pytest.fixture
def registry():
    return SubscriberRegistry()


@pytest_asyncio.fixture
async def pool(broadcaster, factory, clock):
    pool = ConnectionPool(broadcaster, factory, connect_timeout=1.0, clock=clock)
    yield pool
    await pool.shutdown()
