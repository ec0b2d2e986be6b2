"""Periodic sensor telemetry from the pump controllers.

POST /api/sensors  - one aggregated reading window; marks the device as alive

Readings are the liveness signal for the missing-data watchdog: condition
reports on /api/events only arrive while something is wrong, telemetry
arrives on every sampling window.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, ValidationError
from redis.asyncio import Redis

from pumpwatch.core.errors import ReportValidationError
from pumpwatch.services.device_activity import from_epoch_ms, record_seen

from pumpwatch.api.events import get_redis

router = APIRouter(prefix="/api/sensors", tags=["sensors"])
logger = logging.getLogger("pumpwatch.api.sensors")

REQUIRED_FIELDS = (
    "device", "location", "timestamp", "startTime", "endTime", "sampleCount",
    "tempMin", "tempMax", "tempAvg",
    "humMin", "humMax", "humAvg",
    "pressMin", "pressMax", "pressAvg",
    "current1Min", "current1Max", "current1Avg", "current1RMS", "dutyCycle1",
    "current2Min", "current2Max", "current2Avg", "current2RMS", "dutyCycle2",
)


class SensorReadingIn(BaseModel):
    device: str = Field(min_length=1)
    location: str = Field(min_length=1)
    timestamp: int                      # epoch ms
    start_time: int = Field(alias="startTime")
    end_time: int = Field(alias="endTime")
    sample_count: int = Field(alias="sampleCount", ge=0)

    temp_min: float = Field(alias="tempMin")
    temp_max: float = Field(alias="tempMax")
    temp_avg: float = Field(alias="tempAvg")
    hum_min: float = Field(alias="humMin")
    hum_max: float = Field(alias="humMax")
    hum_avg: float = Field(alias="humAvg")
    press_min: float = Field(alias="pressMin")
    press_max: float = Field(alias="pressMax")
    press_avg: float = Field(alias="pressAvg")
    current1_min: float = Field(alias="current1Min")
    current1_max: float = Field(alias="current1Max")
    current1_avg: float = Field(alias="current1Avg")
    current1_rms: float = Field(alias="current1RMS")
    duty_cycle1: float = Field(alias="dutyCycle1")
    current2_min: float = Field(alias="current2Min")
    current2_max: float = Field(alias="current2Max")
    current2_avg: float = Field(alias="current2Avg")
    current2_rms: float = Field(alias="current2RMS")
    duty_cycle2: float = Field(alias="dutyCycle2")


def parse_reading(data: Any) -> SensorReadingIn:
    if not isinstance(data, dict):
        raise ReportValidationError("Request body must be a JSON object")

    for field in REQUIRED_FIELDS:
        if field not in data:
            raise ReportValidationError(f"Missing required field: {field}")

    try:
        reading = SensorReadingIn.model_validate(data)
    except ValidationError as exc:
        err = exc.errors()[0]
        loc = ".".join(str(p) for p in err["loc"])
        raise ReportValidationError(f"Invalid field {loc}: {err['msg']}") from exc

    try:
        from_epoch_ms(reading.timestamp)
        from_epoch_ms(reading.start_time)
        from_epoch_ms(reading.end_time)
    except (OverflowError, OSError, ValueError) as exc:
        raise ReportValidationError("Timestamp out of range") from exc
    return reading


@router.post("", status_code=201)
async def submit_reading(
    request: Request,
    redis: Redis | None = Depends(get_redis),
) -> JSONResponse:
    """Accept one telemetry window and refresh the device's last-seen time."""
    try:
        data = await request.json()
    except ValueError:
        raise ReportValidationError("Request body must be valid JSON") from None

    reading = parse_reading(data)

    # receipt time, not the device clock: the watchdog compares against server time
    if redis is not None:
        await record_seen(redis, reading.device, reading.location, datetime.utcnow())
    logger.debug(
        "Reading from %s: %d samples, current1 RMS=%.2f",
        reading.device, reading.sample_count, reading.current1_rms,
    )

    return JSONResponse(
        {"success": True, "device": reading.device, "message": "Sensor data received"},
        status_code=201,
    )
