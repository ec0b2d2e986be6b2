"""In-memory stand-ins for the incident store and Redis."""
from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime

from pumpwatch.models import ConditionReport, ConditionType, Incident, IncidentKey
from pumpwatch.services.incident_store import (
    close_incident,
    mark_acknowledged,
    new_incident,
    refresh_incident,
)


class MemoryIncidentTransaction:

    def __init__(self, store: "MemoryIncidentStore") -> None:
        self.store = store

    async def find_open_incidents(self, key: IncidentKey) -> list[Incident]:
        # yield to the loop so unserialised callers would interleave here
        await asyncio.sleep(0)
        rows = [
            i for i in self.store.rows
            if i.device == key.device and i.condition_type == key.condition_type and i.active
        ]
        return sorted(rows, key=lambda i: i.timestamp, reverse=True)

    async def get_incident(self, incident_id: str, *, for_update: bool = False) -> Incident | None:
        return next((i for i in self.store.rows if i.id == incident_id), None)

    async def list_open_incidents(self, condition_type: ConditionType | None = None) -> list[Incident]:
        rows = [
            i for i in self.store.rows
            if i.active and (condition_type is None or i.condition_type == condition_type)
        ]
        return sorted(rows, key=lambda i: i.timestamp, reverse=True)

    async def create_incident(self, report: ConditionReport) -> Incident:
        await asyncio.sleep(0)
        incident = new_incident(report)
        self.store.rows.append(incident)
        return incident

    async def update_incident(self, incident: Incident, report: ConditionReport) -> Incident:
        refresh_incident(incident, report)
        return incident

    async def resolve_incident(
        self, incident: Incident, *, timestamp: datetime, duration: int | None = None
    ) -> Incident:
        close_incident(incident, timestamp, duration)
        return incident

    async def acknowledge_incident(self, incident: Incident, *, actor: str | None, at: datetime) -> Incident:
        mark_acknowledged(incident, actor, at)
        return incident


class MemoryIncidentStore:

    def __init__(self, fail_with: Exception | None = None) -> None:
        self.rows: list[Incident] = []
        self.fail_with = fail_with
        self.transactions = 0

    @asynccontextmanager
    async def transaction(self, key: IncidentKey | None = None):
        if self.fail_with is not None:
            raise self.fail_with
        self.transactions += 1
        yield MemoryIncidentTransaction(self)


class FakeRedis:

    def __init__(self, fail_publish: bool = False) -> None:
        self.hashes: dict[str, dict[str, str]] = {}
        self.published: list[tuple[str, str]] = []
        self.fail_publish = fail_publish

    async def hset(self, key: str, field: str, value: str) -> int:
        self.hashes.setdefault(key, {})[field] = value
        return 1

    async def hgetall(self, key: str) -> dict[str, str]:
        return dict(self.hashes.get(key, {}))

    async def publish(self, channel: str, message: str) -> int:
        if self.fail_publish:
            raise ConnectionError("redis down")
        self.published.append((channel, message))
        return 1
