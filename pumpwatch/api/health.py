"""GET /health: database connectivity, sensor data ingestion, open incident summary."""
from __future__ import annotations

import logging
from datetime import datetime, timedelta

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from redis.asyncio import Redis
from sqlalchemy import func, select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from pumpwatch import __version__
from pumpwatch.api.events import get_redis
from pumpwatch.config import settings
from pumpwatch.models import Incident, get_session
from pumpwatch.services.device_activity import load_last_seen

router = APIRouter(tags=["health"])
logger = logging.getLogger("pumpwatch.api.health")


def overall_status(active_incidents: int, unhealthy_above: int, receiving_data: bool = True) -> str:
    if active_incidents > 0:
        return "unhealthy" if active_incidents > unhealthy_above else "warning"
    return "healthy" if receiving_data else "degraded"


async def last_data_received(redis: Redis | None) -> datetime | None:
    """Newest sensor reading time across all devices, None when unknown."""
    if redis is None:
        return None
    try:
        seen = await load_last_seen(redis)
    except Exception as exc:
        logger.warning("Health check could not read last-seen registry: %s", exc)
        return None
    return max((s.seen_at for s in seen), default=None)


@router.get("/health")
async def health(
    session: AsyncSession = Depends(get_session),
    redis: Redis | None = Depends(get_redis),
) -> JSONResponse:
    now = datetime.utcnow()
    try:
        await session.execute(text("SELECT 1"))
        active = (await session.execute(
            select(func.count()).select_from(Incident).where(Incident.active == True)  # noqa: E712
        )).scalar_one()
        total = (await session.execute(select(func.count()).select_from(Incident))).scalar_one()
    except SQLAlchemyError as exc:
        logger.error("Health check failed: %s", exc)
        return JSONResponse(
            {
                "status": "unhealthy",
                "timestamp": now.isoformat(),
                "database": "disconnected",
                "version": __version__,
            },
            status_code=503,
        )

    last_seen = await last_data_received(redis)
    receiving = (
        last_seen is not None
        and now - last_seen <= timedelta(minutes=settings.HEALTH_DATA_STALE_MINUTES)
    )

    return JSONResponse({
        "status": overall_status(active, settings.HEALTH_UNHEALTHY_ACTIVE_COUNT, receiving),
        "timestamp": now.isoformat(),
        "database": "connected",
        "data_ingestion": "active" if receiving else "stale",
        "last_data_received": last_seen.isoformat() if last_seen else None,
        "version": __version__,
        "active_alerts": active,
        "stats": {"events": total},
    })
