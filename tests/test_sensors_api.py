import json
from datetime import timedelta

import pytest

from pumpwatch.api.sensors import parse_reading
from pumpwatch.core.errors import ReportValidationError
from pumpwatch.models import ConditionType
from pumpwatch.services.device_activity import LAST_SEEN_KEY, load_last_seen
from pumpwatch.services.missing_data_watchdog import MissingDataWatchdog

from tests.factories import reading_body, report_body


def test_parse_reading_accepts_firmware_body():
    reading = parse_reading(reading_body())
    assert reading.device == "pump-1"
    assert reading.sample_count == 60
    assert reading.current1_rms == 4.7


def test_parse_reading_missing_field():
    body = reading_body()
    del body["dutyCycle2"]
    with pytest.raises(ReportValidationError, match="Missing required field: dutyCycle2"):
        parse_reading(body)


def test_parse_reading_rejects_bad_value():
    with pytest.raises(ReportValidationError, match="Invalid field tempAvg"):
        parse_reading(reading_body(tempAvg="warm"))


@pytest.mark.asyncio
async def test_post_reading_records_device(api):
    resp = await api.client.post("/api/sensors", json=reading_body())

    assert resp.status_code == 201
    assert resp.json()["success"] is True
    seen = json.loads(api.redis.hashes[LAST_SEEN_KEY]["pump-1"])
    assert seen["location"] == "Pump House"
    assert isinstance(seen["ts"], int)


@pytest.mark.asyncio
async def test_post_reading_missing_field(api):
    body = reading_body()
    del body["sampleCount"]

    resp = await api.client.post("/api/sensors", json=body)

    assert resp.status_code == 400
    assert resp.json() == {"error": "Missing required field: sampleCount"}
    assert LAST_SEEN_KEY not in api.redis.hashes


@pytest.mark.asyncio
async def test_idle_device_sending_readings_is_not_flagged(api):
    watchdog = MissingDataWatchdog(api.redis, api.tracker, api.store, threshold_minutes=5)

    # condition raised and cleared, then only routine telemetry
    await api.client.post("/api/events", json=report_body())
    await api.client.post("/api/events", json=report_body(active=False, duration=45000))

    for _ in range(3):
        assert (await api.client.post("/api/sensors", json=reading_body())).status_code == 201
        [seen] = await load_last_seen(api.redis)
        assert await watchdog.check_cycle(now=seen.seen_at + timedelta(minutes=4)) == []

    assert watchdog.flagged == set()
    async with api.store.transaction() as tx:
        assert await tx.list_open_incidents(ConditionType.MISSING_DATA) == []


@pytest.mark.asyncio
async def test_device_silent_after_readings_is_flagged(api):
    watchdog = MissingDataWatchdog(api.redis, api.tracker, api.store, threshold_minutes=5)
    await api.client.post("/api/sensors", json=reading_body())
    [seen] = await load_last_seen(api.redis)

    outcomes = await watchdog.check_cycle(now=seen.seen_at + timedelta(minutes=6))

    assert [o.incident.condition_type for o in outcomes] == [ConditionType.MISSING_DATA]
    assert watchdog.flagged == {"pump-1"}
