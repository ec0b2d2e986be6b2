"""Incident store: storage capability injected into IncidentTracker.

SqlIncidentStore runs every unit of work in one SQLAlchemy transaction.
A transaction opened for a key is serialised against other transactions
for the same key: on PostgreSQL it takes pg_advisory_xact_lock(hashtext(key))
and selects open rows FOR UPDATE. Any SQLAlchemy failure leaves the
transaction rolled back and is raised as StorageError.
"""
from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncContextManager, AsyncIterator, Protocol

from sqlalchemy import and_, desc, select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pumpwatch.core.errors import StorageError
from pumpwatch.models.incident import ConditionType, Incident
from pumpwatch.models.report import ConditionReport, IncidentKey

logger = logging.getLogger("pumpwatch.incident_store")


class IncidentTransaction(Protocol):

    async def find_open_incidents(self, key: IncidentKey) -> list[Incident]:
        """Open incidents for the key, most recently touched first."""
        ...

    async def get_incident(self, incident_id: str, *, for_update: bool = False) -> Incident | None: ...

    async def list_open_incidents(
        self, condition_type: ConditionType | None = None
    ) -> list[Incident]: ...

    async def create_incident(self, report: ConditionReport) -> Incident: ...

    async def update_incident(self, incident: Incident, report: ConditionReport) -> Incident: ...

    async def resolve_incident(
        self, incident: Incident, *, timestamp: datetime, duration: int | None = None
    ) -> Incident: ...

    async def acknowledge_incident(
        self, incident: Incident, *, actor: str | None, at: datetime
    ) -> Incident: ...


class IncidentStore(Protocol):

    def transaction(
        self, key: IncidentKey | None = None
    ) -> AsyncContextManager[IncidentTransaction]: ...


# ---------------------------------------------------------------------------
# Row mutations (shared by every store implementation)
# ---------------------------------------------------------------------------

def new_incident(report: ConditionReport) -> Incident:
    return Incident(
        id=str(uuid.uuid4()),
        device=report.device,
        location=report.location,
        condition_type=report.condition_type,
        value=report.value,
        threshold=report.threshold,
        description=report.description,
        start_time=report.start_time,
        timestamp=report.timestamp,
        duration=report.duration,
        active=True,
        acknowledged=False,
    )


def refresh_incident(incident: Incident, report: ConditionReport) -> None:
    # start_time and id stay as they were when the incident opened
    incident.timestamp = report.timestamp
    incident.value = report.value
    incident.duration = report.duration
    incident.description = report.description


def close_incident(incident: Incident, timestamp: datetime, duration: int | None) -> None:
    incident.active = False
    incident.timestamp = timestamp
    if duration is not None:
        incident.duration = duration


def mark_acknowledged(incident: Incident, actor: str | None, at: datetime) -> None:
    if incident.acknowledged:
        return
    incident.acknowledged = True
    incident.acknowledged_at = at
    incident.acknowledged_by = actor


# ---------------------------------------------------------------------------
# SQLAlchemy implementation
# ---------------------------------------------------------------------------

class SqlIncidentTransaction:

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def find_open_incidents(self, key: IncidentKey) -> list[Incident]:
        stmt = (
            select(Incident)
            .where(
                and_(
                    Incident.device == key.device,
                    Incident.condition_type == key.condition_type,
                    Incident.active == True,  # noqa: E712
                )
            )
            .order_by(desc(Incident.timestamp))
            .with_for_update()
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def get_incident(self, incident_id: str, *, for_update: bool = False) -> Incident | None:
        stmt = select(Incident).where(Incident.id == incident_id)
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_open_incidents(
        self, condition_type: ConditionType | None = None
    ) -> list[Incident]:
        stmt = select(Incident).where(Incident.active == True)  # noqa: E712
        if condition_type is not None:
            stmt = stmt.where(Incident.condition_type == condition_type)
        stmt = stmt.order_by(desc(Incident.timestamp))
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def create_incident(self, report: ConditionReport) -> Incident:
        incident = new_incident(report)
        self.session.add(incident)
        await self.session.flush()
        return incident

    async def update_incident(self, incident: Incident, report: ConditionReport) -> Incident:
        refresh_incident(incident, report)
        await self.session.flush()
        return incident

    async def resolve_incident(
        self, incident: Incident, *, timestamp: datetime, duration: int | None = None
    ) -> Incident:
        close_incident(incident, timestamp, duration)
        await self.session.flush()
        return incident

    async def acknowledge_incident(
        self, incident: Incident, *, actor: str | None, at: datetime
    ) -> Incident:
        mark_acknowledged(incident, actor, at)
        await self.session.flush()
        return incident


class SqlIncidentStore:

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    @asynccontextmanager
    async def transaction(
        self, key: IncidentKey | None = None
    ) -> AsyncIterator[SqlIncidentTransaction]:
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    if key is not None:
                        await self._lock_key(session, key)
                    yield SqlIncidentTransaction(session)
        except SQLAlchemyError as exc:
            logger.error("Incident store transaction failed (key=%s): %s", key, exc)
            raise StorageError("incident store transaction failed") from exc

    async def _lock_key(self, session: AsyncSession, key: IncidentKey) -> None:
        # held until commit/rollback; also covers keys with no open row yet
        if session.get_bind().dialect.name != "postgresql":
            return
        await session.execute(
            text("SELECT pg_advisory_xact_lock(hashtext(:key))"),
            {"key": str(key)},
        )
