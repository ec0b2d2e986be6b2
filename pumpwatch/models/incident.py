"""Incident storage (table `events`).

Each row = one occurrence of a condition on a device.
active=True while the condition holds; on clear the row is kept with
active=False and `timestamp` set to the resolution time.
At most one active row per (device, condition_type).
"""
from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import BigInteger, Enum, Index, String, func, text
from sqlalchemy.orm import Mapped, mapped_column

from pumpwatch.models.base import Base


class ConditionType(str, enum.Enum):
    HIGH_CURRENT = "HIGH_CURRENT"
    LOW_PRESSURE = "LOW_PRESSURE"
    LOW_TEMPERATURE = "LOW_TEMPERATURE"
    SENSOR_ERROR = "SENSOR_ERROR"
    SYSTEM_ERROR = "SYSTEM_ERROR"
    MISSING_DATA = "MISSING_DATA"  # only produced by the missing-data watchdog


# Device firmware sends condition types as small integer codes
CONDITION_TYPE_CODES: dict[int, ConditionType] = {
    1: ConditionType.HIGH_CURRENT,
    2: ConditionType.LOW_PRESSURE,
    3: ConditionType.LOW_TEMPERATURE,
    4: ConditionType.SENSOR_ERROR,
    5: ConditionType.SYSTEM_ERROR,
}


class Incident(Base):
    __tablename__ = "events"

    __table_args__ = (
        Index("ix_events_device_type_active", "device", "condition_type", "active"),
        Index("ix_events_timestamp", "timestamp"),
        Index(
            "uq_events_open_per_key",
            "device", "condition_type",
            unique=True,
            postgresql_where=text("active"),
            sqlite_where=text("active = 1"),
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    device: Mapped[str] = mapped_column(String(100))
    location: Mapped[str] = mapped_column(String(100))
    condition_type: Mapped[ConditionType] = mapped_column(
        Enum(ConditionType, native_enum=False, length=20)
    )

    value: Mapped[float] = mapped_column()
    threshold: Mapped[float] = mapped_column()
    description: Mapped[str] = mapped_column(String(500))

    start_time: Mapped[datetime] = mapped_column()
    timestamp: Mapped[datetime] = mapped_column()
    duration: Mapped[int] = mapped_column(BigInteger)  # ms, device-reported

    active: Mapped[bool] = mapped_column(default=True)
    acknowledged: Mapped[bool] = mapped_column(default=False)
    acknowledged_at: Mapped[datetime | None] = mapped_column(default=None)
    acknowledged_by: Mapped[str | None] = mapped_column(String(100), default=None)

    created_at: Mapped[datetime] = mapped_column(server_default=func.now())

    def __repr__(self) -> str:
        state = "open" if self.active else "resolved"
        return f"<Incident {self.id} {self.device}/{self.condition_type.value} {state}>"
