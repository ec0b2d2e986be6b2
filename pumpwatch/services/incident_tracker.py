"""IncidentTracker: turns condition reports into incident lifecycle transitions.

Per (device, condition_type) key:

    no open incident --active=true-->  open incident          CREATED
    open incident    --active=true-->  open incident          UPDATED (refresh)
    open incident    --active=false--> no open incident       RESOLVED (row kept)
    no open incident --active=false--> no open incident       NOOP_CLEAR

Lookup and mutation for one key always run inside one store transaction
while holding the key's lock, so at most one incident per key is active.
"""
from __future__ import annotations

import asyncio
import enum
import logging
from collections.abc import Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import AsyncIterator

from pumpwatch.core.errors import IncidentNotFound, InvariantViolation
from pumpwatch.models.incident import Incident
from pumpwatch.models.report import ConditionReport, IncidentKey
from pumpwatch.services.incident_store import IncidentStore

logger = logging.getLogger("pumpwatch.incident_tracker")


class OutcomeKind(str, enum.Enum):
    CREATED = "created"
    UPDATED = "updated"
    RESOLVED = "resolved"
    NOOP_CLEAR = "noop_clear"
    ACKNOWLEDGED = "acknowledged"


@dataclass(frozen=True)
class Outcome:
    kind: OutcomeKind
    incident: Incident | None = None
    violation: InvariantViolation | None = None

    @property
    def incident_id(self) -> str | None:
        return self.incident.id if self.incident is not None else None


class KeyedLock:
    """One asyncio.Lock per key; locks for idle keys are dropped."""

    def __init__(self) -> None:
        self._locks: dict[IncidentKey, asyncio.Lock] = {}
        self._waiters: dict[IncidentKey, int] = {}

    @asynccontextmanager
    async def hold(self, key: IncidentKey) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                del self._waiters[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)


def _utcnow() -> datetime:
    return datetime.utcnow()


class IncidentTracker:

    def __init__(
        self,
        store: IncidentStore,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.store = store
        self.clock = clock
        self._locks = KeyedLock()

    # ------------------------------------------------------------------
    async def submit(self, report: ConditionReport) -> Outcome:
        key = report.key
        async with self._locks.hold(key):
            async with self.store.transaction(key) as tx:
                open_incidents = await tx.find_open_incidents(key)
                current, violation = self._pick_authoritative(key, open_incidents)

                if report.active:
                    if current is not None:
                        incident = await tx.update_incident(current, report)
                        kind = OutcomeKind.UPDATED
                    else:
                        incident = await tx.create_incident(report)
                        kind = OutcomeKind.CREATED
                elif current is not None:
                    incident = await tx.resolve_incident(
                        current, timestamp=report.timestamp, duration=report.duration,
                    )
                    kind = OutcomeKind.RESOLVED
                else:
                    logger.debug("Clear for %s with no open incident", key)
                    return Outcome(OutcomeKind.NOOP_CLEAR, violation=violation)

        logger.info("INCIDENT %s: %s id=%s", kind.value.upper(), key, incident.id)
        return Outcome(kind, incident, violation)

    async def acknowledge(self, incident_id: str, actor: str | None = None) -> Outcome:
        async with self.store.transaction() as tx:
            incident = await tx.get_incident(incident_id, for_update=True)
            if incident is None:
                raise IncidentNotFound(incident_id)
            if incident.acknowledged:
                logger.debug("Incident %s already acknowledged", incident_id)
            else:
                await tx.acknowledge_incident(incident, actor=actor, at=self.clock())
                logger.info("INCIDENT ACKNOWLEDGED: id=%s by=%s", incident_id, actor)
        return Outcome(OutcomeKind.ACKNOWLEDGED, incident)

    async def resolve_manually(self, incident_id: str) -> Outcome:
        async with self.store.transaction() as tx:
            found = await tx.get_incident(incident_id)
        if found is None:
            raise IncidentNotFound(incident_id)

        key = IncidentKey(found.device, found.condition_type)
        async with self._locks.hold(key):
            async with self.store.transaction(key) as tx:
                incident = await tx.get_incident(incident_id, for_update=True)
                if incident is None:
                    raise IncidentNotFound(incident_id)
                if incident.active:
                    await tx.resolve_incident(incident, timestamp=self.clock())
                    logger.info("INCIDENT RESOLVED (manual): %s id=%s", key, incident_id)
        return Outcome(OutcomeKind.RESOLVED, incident)

    # ------------------------------------------------------------------
    @staticmethod
    def _pick_authoritative(
        key: IncidentKey, open_incidents: list[Incident]
    ) -> tuple[Incident | None, InvariantViolation | None]:
        if not open_incidents:
            return None, None
        ordered = sorted(open_incidents, key=lambda i: i.timestamp, reverse=True)
        current = ordered[0]
        if len(ordered) == 1:
            return current, None

        violation = InvariantViolation(
            device=key.device,
            condition_type=key.condition_type.value,
            authoritative_id=current.id,
            stale_ids=tuple(i.id for i in ordered[1:]),
        )
        logger.error("INVARIANT VIOLATION: %s", violation)
        return current, violation
