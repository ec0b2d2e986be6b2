"""REST API for condition reports and the incident journal.

POST  /api/events              - submit one device report (create/update/resolve)
GET   /api/events              - list incidents with filters + pagination
GET   /api/events/active       - open incidents only
GET   /api/events/{id}         - single incident
PATCH /api/events?id=&action=  - acknowledge | resolve
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, ValidationError, field_validator
from redis.asyncio import Redis
from sqlalchemy import and_, desc, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from pumpwatch.core.errors import IncidentNotFound, ReportValidationError
from pumpwatch.models import CONDITION_TYPE_CODES, ConditionReport, ConditionType, Incident, get_session
from pumpwatch.services.device_activity import from_epoch_ms
from pumpwatch.services.incident_publisher import IncidentPublisher
from pumpwatch.services.incident_tracker import IncidentTracker, OutcomeKind

router = APIRouter(prefix="/api/events", tags=["events"])
logger = logging.getLogger("pumpwatch.api.events")

REQUIRED_FIELDS = (
    "device", "location", "timestamp", "type", "value", "threshold",
    "startTime", "duration", "active", "description",
)


# ---------------------------------------------------------------------------
# Schemas
# ---------------------------------------------------------------------------

class EventReportIn(BaseModel):
    """Device report body; `type` is checked separately against CONDITION_TYPE_CODES."""

    device: str = Field(min_length=1)
    location: str = Field(min_length=1)
    timestamp: int                      # epoch ms, sent as a string by the firmware
    start_time: int = Field(alias="startTime")
    value: float
    threshold: float
    duration: int = Field(ge=0)
    active: bool
    description: str = Field(min_length=1)


class IncidentOut(BaseModel):
    id: str
    device: str
    location: str
    condition_type: ConditionType
    value: float
    threshold: float
    description: str
    start_time: datetime
    timestamp: datetime
    duration: str                       # 64-bit ms count, string-safe for JS clients
    active: bool
    acknowledged: bool
    acknowledged_at: Optional[datetime] = None
    acknowledged_by: Optional[str] = None

    model_config = {"from_attributes": True}

    @field_validator("duration", mode="before")
    @classmethod
    def _duration_as_str(cls, v: Any) -> str:
        return str(v)


class Pagination(BaseModel):
    total: int
    limit: int
    offset: int
    has_more: bool


class IncidentPage(BaseModel):
    data: list[IncidentOut]
    pagination: Pagination


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------

def get_tracker(request: Request) -> IncidentTracker:
    return request.app.state.tracker


def get_publisher(request: Request) -> IncidentPublisher | None:
    return getattr(request.app.state, "publisher", None)


def get_redis(request: Request) -> Redis | None:
    return getattr(request.app.state, "redis", None)


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

def _type_code(raw: Any) -> int | None:
    """Firmware type code: an int (or integral float) or a string of ASCII digits."""
    if isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        return raw
    if isinstance(raw, float):
        return int(raw) if raw.is_integer() else None
    if isinstance(raw, str) and raw.isascii() and raw.isdigit():
        return int(raw)
    return None


def parse_report(data: Any) -> ConditionReport:
    """Validate a raw device report and convert it for the tracker."""
    if not isinstance(data, dict):
        raise ReportValidationError("Request body must be a JSON object")

    for field in REQUIRED_FIELDS:
        if field not in data:
            raise ReportValidationError(f"Missing required field: {field}")

    condition_type = CONDITION_TYPE_CODES.get(_type_code(data["type"]))
    if condition_type is None:
        raise ReportValidationError(f"Invalid event type: {data['type']}")

    try:
        body = EventReportIn.model_validate(data)
    except ValidationError as exc:
        err = exc.errors()[0]
        loc = ".".join(str(p) for p in err["loc"])
        raise ReportValidationError(f"Invalid field {loc}: {err['msg']}") from exc

    try:
        timestamp = from_epoch_ms(body.timestamp)
        start_time = from_epoch_ms(body.start_time)
    except (OverflowError, OSError, ValueError) as exc:
        raise ReportValidationError("Timestamp out of range") from exc

    return ConditionReport(
        device=body.device,
        location=body.location,
        condition_type=condition_type,
        timestamp=timestamp,
        start_time=start_time,
        value=body.value,
        threshold=body.threshold,
        duration=body.duration,
        active=body.active,
        description=body.description,
    )


def _naive_utc(dt: datetime | None) -> datetime | None:
    if dt is None or dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.post("")
async def submit_event(
    request: Request,
    tracker: IncidentTracker = Depends(get_tracker),
    publisher: IncidentPublisher | None = Depends(get_publisher),
) -> JSONResponse:
    """Apply one device report to the incident journal."""
    try:
        data = await request.json()
    except ValueError:
        raise ReportValidationError("Request body must be valid JSON") from None

    report = parse_report(data)
    outcome = await tracker.submit(report)

    if publisher is not None:
        await publisher.publish(outcome)

    if outcome.kind == OutcomeKind.NOOP_CLEAR:
        return JSONResponse({"success": True, "message": "No active event to resolve"})
    if outcome.kind == OutcomeKind.CREATED:
        return JSONResponse(
            {"success": True, "id": outcome.incident_id, "created": True},
            status_code=201,
        )
    return JSONResponse({"success": True, "id": outcome.incident_id, outcome.kind.value: True})


@router.get("", response_model=IncidentPage)
async def list_events(
    device: Optional[str] = Query(None),
    active: Optional[bool] = Query(None),
    condition_type: Optional[ConditionType] = Query(None, alias="type"),
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    session: AsyncSession = Depends(get_session),
) -> IncidentPage:
    """Return incidents with filtering and pagination, newest first."""
    conditions = []
    if device is not None:
        conditions.append(Incident.device == device)
    if active is not None:
        conditions.append(Incident.active == active)
    if condition_type is not None:
        conditions.append(Incident.condition_type == condition_type)
    if start_date is not None:
        conditions.append(Incident.timestamp >= _naive_utc(start_date))
    if end_date is not None:
        conditions.append(Incident.timestamp <= _naive_utc(end_date))

    stmt = select(Incident)
    count_stmt = select(func.count()).select_from(Incident)
    if conditions:
        stmt = stmt.where(and_(*conditions))
        count_stmt = count_stmt.where(and_(*conditions))

    stmt = stmt.order_by(desc(Incident.timestamp)).offset(offset).limit(limit)
    result = await session.execute(stmt)
    incidents = list(result.scalars().all())
    total = (await session.execute(count_stmt)).scalar_one()

    return IncidentPage(
        data=[IncidentOut.model_validate(i) for i in incidents],
        pagination=Pagination(
            total=total, limit=limit, offset=offset, has_more=offset + limit < total,
        ),
    )


@router.get("/active", response_model=list[IncidentOut])
async def get_active(
    device: Optional[str] = Query(None),
    session: AsyncSession = Depends(get_session),
) -> list[IncidentOut]:
    stmt = select(Incident).where(Incident.active == True)  # noqa: E712
    if device is not None:
        stmt = stmt.where(Incident.device == device)
    stmt = stmt.order_by(desc(Incident.timestamp))
    result = await session.execute(stmt)
    return [IncidentOut.model_validate(i) for i in result.scalars().all()]


@router.get("/{event_id}", response_model=IncidentOut)
async def get_event(
    event_id: str,
    session: AsyncSession = Depends(get_session),
) -> IncidentOut:
    incident = await session.get(Incident, event_id)
    if incident is None:
        raise IncidentNotFound(event_id)
    return IncidentOut.model_validate(incident)


@router.patch("")
async def update_event(
    incident_id: Optional[str] = Query(None, alias="id"),
    action: Optional[str] = Query(None, description="acknowledge | resolve"),
    actor: Optional[str] = Query(None, max_length=100),
    tracker: IncidentTracker = Depends(get_tracker),
    publisher: IncidentPublisher | None = Depends(get_publisher),
) -> JSONResponse:
    """Operator actions on a single incident."""
    if not incident_id:
        raise ReportValidationError("Event ID is required")

    if action == "acknowledge":
        outcome = await tracker.acknowledge(incident_id, actor)
        message = "Event acknowledged successfully"
    elif action == "resolve":
        outcome = await tracker.resolve_manually(incident_id)
        message = "Event resolved successfully"
    else:
        raise ReportValidationError("Invalid action")

    if publisher is not None:
        await publisher.publish(outcome)

    return JSONResponse({
        "success": True,
        "id": outcome.incident_id,
        outcome.kind.value: True,
        "message": message,
    })
