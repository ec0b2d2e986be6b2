from pumpwatch.models.base import Base, async_session, engine, get_session
from pumpwatch.models.incident import CONDITION_TYPE_CODES, ConditionType, Incident
from pumpwatch.models.report import ConditionReport, IncidentKey

__all__ = [
    "Base",
    "async_session",
    "engine",
    "get_session",
    "CONDITION_TYPE_CODES",
    "ConditionType",
    "Incident",
    "ConditionReport",
    "IncidentKey",
]
