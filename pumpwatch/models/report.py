"""Inbound condition report (already validated and parsed by the API layer)."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from pumpwatch.models.incident import ConditionType


@dataclass(frozen=True)
class IncidentKey:
    device: str
    condition_type: ConditionType

    def __str__(self) -> str:
        return f"{self.device}:{self.condition_type.value}"


@dataclass(frozen=True)
class ConditionReport:
    device: str
    location: str
    condition_type: ConditionType
    timestamp: datetime
    start_time: datetime
    value: float
    threshold: float
    duration: int  # ms elapsed, as reported by the device
    active: bool
    description: str

    @property
    def key(self) -> IncidentKey:
        return IncidentKey(self.device, self.condition_type)
