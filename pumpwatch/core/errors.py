"""Incident tracker error taxonomy.

ReportValidationError  -> 400, caller's fault, never retried
IncidentNotFound       -> 404
StorageError           -> 500, transient, whole submit() is safe to retry
InvariantViolation     -> not raised; logged and attached to the Outcome
"""
from __future__ import annotations

from dataclasses import dataclass


class TrackerError(Exception):
    """Base class for errors surfaced by the incident tracker."""

    retryable: bool = False


class ReportValidationError(TrackerError):
    """Inbound report is missing a field or carries a malformed value."""


class IncidentNotFound(TrackerError):

    def __init__(self, incident_id: str) -> None:
        super().__init__(f"Incident not found: {incident_id}")
        self.incident_id = incident_id


class StorageError(TrackerError):
    """Connection failure, transaction conflict or timeout in the store."""

    retryable = True


@dataclass(frozen=True)
class InvariantViolation:
    """More than one open incident exists for a (device, condition_type) key."""

    device: str
    condition_type: str
    authoritative_id: str
    stale_ids: tuple[str, ...]

    def __str__(self) -> str:
        return (
            f"{len(self.stale_ids) + 1} open incidents for {self.device}/{self.condition_type}: "
            f"using {self.authoritative_id}, left open {', '.join(self.stale_ids)}"
        )
