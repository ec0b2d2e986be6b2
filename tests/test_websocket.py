import pytest

from pumpwatch.core.websocket import ConnectionManager, open_incidents_snapshot
from pumpwatch.services.incident_store import new_incident

from tests.factories import make_report
from tests.fakes import MemoryIncidentStore


class _FakeSocket:

    def __init__(self, broken: bool = False) -> None:
        self.sent: list[str] = []
        self.broken = broken
        self.accepted = False

    async def accept(self) -> None:
        self.accepted = True

    async def send_text(self, message: str) -> None:
        if self.broken:
            raise RuntimeError("socket closed")
        self.sent.append(message)


@pytest.mark.asyncio
async def test_snapshot_contains_only_open_incidents():
    store = MemoryIncidentStore()
    open_row = new_incident(make_report(device="pump-1"))
    closed_row = new_incident(make_report(device="pump-2"))
    closed_row.active = False
    store.rows.extend([open_row, closed_row])

    snapshot = await open_incidents_snapshot(store)

    assert [item["id"] for item in snapshot] == [open_row.id]
    assert snapshot[0]["duration"] == "0"


@pytest.mark.asyncio
async def test_broadcast_drops_dead_connections():
    manager = ConnectionManager()
    alive, dead = _FakeSocket(), _FakeSocket(broken=True)
    await manager.connect(alive)
    await manager.connect(dead)

    await manager.broadcast('{"type": "incident"}')

    assert alive.sent == ['{"type": "incident"}']
    assert manager.connections == [alive]
