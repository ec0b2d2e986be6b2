"""Last-seen registry for reporting devices (Redis hash `devices:last_seen`).

field = device name, value = {"ts": epoch_ms, "location": "..."}
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from redis.asyncio import Redis

logger = logging.getLogger("pumpwatch.device_activity")

LAST_SEEN_KEY = "devices:last_seen"


@dataclass(frozen=True)
class DeviceSeen:
    device: str
    location: str
    seen_at: datetime  # naive UTC


def to_epoch_ms(dt: datetime) -> int:
    return int(dt.replace(tzinfo=timezone.utc).timestamp() * 1000)


def from_epoch_ms(ms: int | float) -> datetime:
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc).replace(tzinfo=None)


async def record_seen(redis: Redis, device: str, location: str, seen_at: datetime) -> None:
    try:
        await redis.hset(
            LAST_SEEN_KEY,
            device,
            json.dumps({"ts": to_epoch_ms(seen_at), "location": location}),
        )
    except Exception as exc:
        logger.warning("Failed to record last-seen for %s: %s", device, exc)


async def load_last_seen(redis: Redis) -> list[DeviceSeen]:
    raw = await redis.hgetall(LAST_SEEN_KEY)
    seen: list[DeviceSeen] = []
    for field, value in raw.items():
        device = field.decode("utf-8") if isinstance(field, bytes) else field
        if isinstance(value, bytes):
            value = value.decode("utf-8")
        try:
            data = json.loads(value)
            seen.append(DeviceSeen(device, data.get("location", ""), from_epoch_ms(data["ts"])))
        except (json.JSONDecodeError, KeyError, TypeError, ValueError):
            logger.warning("Skipping malformed last-seen entry for %s", device)
    return seen
