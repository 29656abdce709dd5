"""
Integration tests for the location HTTP API.

Tests ingestion, wire format, error envelopes and history queries.
"""

import json
import pytest
from datetime import datetime, timedelta, timezone

FROZEN_NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


def parse_time(value: str) -> datetime:
    return datetime.fromisoformat(value)


async def post_ping(client, **overrides):
    payload = {"truckId": "TRUCK-7", "latitude": 9.03, "longitude": 38.74}
    payload.update(overrides)
    return await client.post("/v1/locations", json=payload)


# TEST 1: Minimal ping
@pytest.mark.asyncio
async def test_record_minimal_ping(client):
    """Only the required fields: both times fall back to receipt time."""
    response = await post_ping(client)
    
    assert response.status_code == 201
    data = response.json()
    assert data["id"] is not None
    assert data["truckId"] == "TRUCK-7"
    assert data["latitude"] == 9.03
    assert data["longitude"] == 38.74
    assert data["speed"] is None
    assert data["battery"] is None
    assert data["status"] is None
    assert parse_time(data["timestamp"]) == FROZEN_NOW
    assert parse_time(data["serverReceivedAt"]) == FROZEN_NOW


# TEST 2: Delayed upload
@pytest.mark.asyncio
async def test_delayed_upload_keeps_client_timestamp(client):
    observed = FROZEN_NOW - timedelta(hours=1)
    
    response = await post_ping(client, timestamp=observed.isoformat(), speed=62.0, battery=48, status="MOVING")
    
    assert response.status_code == 201
    data = response.json()
    assert parse_time(data["timestamp"]) == observed
    assert parse_time(data["serverReceivedAt"]) == FROZEN_NOW
    assert data["speed"] == 62.0
    assert data["battery"] == 48
    assert data["status"] == "MOVING"


@pytest.mark.asyncio
async def test_naive_timestamp_is_read_as_utc(client):
    response = await post_ping(client, timestamp="2026-03-01T11:15:00")
    
    assert response.status_code == 201
    assert parse_time(response.json()["timestamp"]) == datetime(2026, 3, 1, 11, 15, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_snake_case_keys_are_accepted(client):
    response = await client.post("/v1/locations", json={
        "truck_id": "TRUCK-8",
        "latitude": 1.5,
        "longitude": 2.5,
    })
    
    assert response.status_code == 201
    assert response.json()["truckId"] == "TRUCK-8"


# TEST 3: Validation
@pytest.mark.asyncio
@pytest.mark.parametrize("missing", ["truckId", "latitude", "longitude"])
async def test_missing_required_field_returns_validation_error(client, missing):
    payload = {"truckId": "TRUCK-7", "latitude": 9.03, "longitude": 38.74}
    del payload[missing]
    
    response = await client.post("/v1/locations", json=payload)
    
    assert response.status_code == 422
    assert response.json()["error_code"] == "ERR_VALIDATION"


@pytest.mark.asyncio
@pytest.mark.parametrize("field,value", [
    ("latitude", 91),
    ("longitude", -181),
    ("battery", 101),
    ("speed", -5),
    ("truckId", "   "),
])
async def test_out_of_range_values_are_rejected(client, field, value):
    response = await post_ping(client, **{field: value})
    
    assert response.status_code == 422


# TEST 4: Fan-out
@pytest.mark.asyncio
async def test_stored_ping_is_published(client, mock_redis, broadcaster):
    response = await post_ping(client)
    
    assert len(mock_redis.published) == 1
    channel, raw = mock_redis.published[0]
    message = json.loads(raw)
    assert channel == "location-update"
    assert message["origin"] == broadcaster.instance_id
    assert message["data"]["id"] == response.json()["id"]
    assert message["data"]["truckId"] == "TRUCK-7"


@pytest.mark.asyncio
async def test_redis_outage_does_not_fail_ingestion(client, mock_redis):
    mock_redis.fail = True
    
    response = await post_ping(client)
    
    assert response.status_code == 201
    fetched = await client.get(f"/v1/locations/{response.json()['id']}")
    assert fetched.status_code == 200


# TEST 5: Reads
@pytest.mark.asyncio
async def test_get_location_by_id(client):
    created = (await post_ping(client, status="IDLE")).json()
    
    response = await client.get(f"/v1/locations/{created['id']}")
    
    assert response.status_code == 200
    assert response.json() == created


@pytest.mark.asyncio
async def test_get_unknown_location_returns_404(client):
    response = await client.get("/v1/locations/12345")
    
    assert response.status_code == 404
    body = response.json()
    assert body["error_code"] == "ERR_NOT_FOUND_001"
    assert body["details"] == {"resource": "Location", "id": 12345}


@pytest.mark.asyncio
async def test_truck_history_and_latest(client):
    for minutes in (10, 30, 20):
        await post_ping(
            client, timestamp=(FROZEN_NOW - timedelta(minutes=minutes)).isoformat(), status=f"T-{minutes}"
        )
    await post_ping(client, truckId="TRUCK-OTHER")
    
    history = await client.get("/v1/trucks/TRUCK-7/locations")
    assert history.status_code == 200
    data = history.json()
    assert data["truckId"] == "TRUCK-7"
    assert data["count"] == 3
    assert [loc["status"] for loc in data["locations"]] == ["T-10", "T-20", "T-30"]
    
    limited = await client.get("/v1/trucks/TRUCK-7/locations", params={"limit": 1})
    assert limited.json()["count"] == 1
    
    latest = await client.get("/v1/trucks/TRUCK-7/locations/latest")
    assert latest.status_code == 200
    assert latest.json()["status"] == "T-10"


@pytest.mark.asyncio
async def test_truck_history_window(client):
    for minutes in (10, 20, 30):
        await post_ping(client, timestamp=(FROZEN_NOW - timedelta(minutes=minutes)).isoformat())
    
    response = await client.get("/v1/trucks/TRUCK-7/locations", params={
        "since": (FROZEN_NOW - timedelta(minutes=25)).isoformat(),
        "until": (FROZEN_NOW - timedelta(minutes=15)).isoformat(),
    })
    
    assert response.status_code == 200
    assert response.json()["count"] == 1


@pytest.mark.asyncio
async def test_truck_history_rejects_inverted_window(client):
    response = await client.get("/v1/trucks/TRUCK-7/locations", params={
        "since": FROZEN_NOW.isoformat(),
        "until": (FROZEN_NOW - timedelta(hours=1)).isoformat(),
    })
    
    assert response.status_code == 400
    assert response.json()["error_code"] == "ERR_BAD_REQUEST"


@pytest.mark.asyncio
async def test_latest_for_unknown_truck_returns_404(client):
    response = await client.get("/v1/trucks/NOPE/locations/latest")
    
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_fleet_positions(client):
    await post_ping(client, truckId="TRUCK-A", timestamp=(FROZEN_NOW - timedelta(minutes=5)).isoformat())
    await post_ping(client, truckId="TRUCK-A")
    await post_ping(client, truckId="TRUCK-B")
    
    response = await client.get("/v1/trucks/positions")
    
    assert response.status_code == 200
    data = response.json()
    assert data["count"] == 2
    assert [p["truckId"] for p in data["positions"]] == ["TRUCK-A", "TRUCK-B"]
    assert parse_time(data["positions"][0]["timestamp"]) == FROZEN_NOW


# TEST 6: Service endpoints
@pytest.mark.asyncio
async def test_health_and_correlation_header(client):
    response = await client.get("/health", headers={"X-Correlation-ID": "abc-123"})
    
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert response.headers["X-Correlation-ID"] == "abc-123"
    assert "X-Process-Time" in response.headers


@pytest.mark.asyncio
@pytest.mark.parametrize("raw_latitude", ["NaN", "Infinity", "-Infinity"])
async def test_non_finite_coordinate_returns_validation_error(client, raw_latitude):
    body = '{"truckId": "TRUCK-7", "latitude": %s, "longitude": 38.74}' % raw_latitude
    
    response = await client.post(
        "/v1/locations", content=body, headers={"Content-Type": "application/json"}
    )
    
    assert response.status_code == 422
    data = response.json()
    assert data["error_code"] == "ERR_VALIDATION"
    assert data["details"]["errors"][0]["loc"] == ["body", "latitude"]
    assert "input" not in data["details"]["errors"][0]


@pytest.mark.asyncio
async def test_history_limit_above_cap_is_clamped(client):
    for minutes in (1, 2, 3):
        await post_ping(client, timestamp=(FROZEN_NOW - timedelta(minutes=minutes)).isoformat())
    
    response = await client.get("/v1/trucks/TRUCK-7/locations", params={"limit": 50000})
    
    assert response.status_code == 200
    assert response.json()["count"] == 3
