"""IncidentPublisher: announces incident transitions on Redis PubSub.

Notification senders (push, Pushover) and the WebSocket bridge subscribe
to INCIDENTS_CHANNEL. Publishing is best effort: a Redis failure is logged
and never undoes or fails the transition that was already committed.
"""
from __future__ import annotations

import json
import logging

from redis.asyncio import Redis

from pumpwatch.models.incident import Incident
from pumpwatch.services.incident_tracker import Outcome, OutcomeKind

logger = logging.getLogger("pumpwatch.incident_publisher")


def incident_to_dict(incident: Incident) -> dict:
    return {
        "id": incident.id,
        "device": incident.device,
        "location": incident.location,
        "condition_type": incident.condition_type.value,
        "value": incident.value,
        "threshold": incident.threshold,
        "description": incident.description,
        "start_time": incident.start_time.isoformat(),
        "timestamp": incident.timestamp.isoformat(),
        "duration": str(incident.duration),
        "active": incident.active,
        "acknowledged": incident.acknowledged,
        "acknowledged_at": incident.acknowledged_at.isoformat() if incident.acknowledged_at else None,
        "acknowledged_by": incident.acknowledged_by,
    }


class IncidentPublisher:

    def __init__(self, redis: Redis, channel: str) -> None:
        self.redis = redis
        self.channel = channel

    async def publish(self, outcome: Outcome) -> bool:
        if outcome.kind == OutcomeKind.NOOP_CLEAR or outcome.incident is None:
            return False
        message = {
            "type": "incident",
            "outcome": outcome.kind.value,
            **incident_to_dict(outcome.incident),
        }
        try:
            await self.redis.publish(self.channel, json.dumps(message))
        except Exception as exc:
            logger.warning(
                "Failed to publish %s for incident %s: %s",
                outcome.kind.value, outcome.incident_id, exc,
            )
            return False
        return True
