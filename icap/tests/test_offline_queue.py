"""
Offline queue tests: persistence, ordering and drain outcomes.
"""

import json
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from icap.mobile.errors import NetworkError, OrderNotFoundError
from icap.mobile.models import LocationAck, LocationSample
from icap.mobile.offline_queue import OfflineQueue
from icap.mobile.store import LocalStore, PENDING_KEY
from icap.mobile.transport import TransportClient

ORDER_CODE = "CAP2505260002"
START = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)


def samples(count, order_id=ORDER_CODE):
    return [
        LocationSample(
            order_id=order_id,
            latitude=-25.4284 - i * 0.001,
            longitude=-49.2733,
            accuracy=10.0,
            timestamp=START + timedelta(seconds=30 * i),
        )
        for i in range(count)
    ]


class ScriptedTransport:
    """Answers send_location from a list of outcomes (None means success)."""

    def __init__(self, outcomes):
        self.outcomes = list(outcomes)
        self.sent = []

    async def send_location(self, sample):
        self.sent.append(sample.sample_id)
        outcome = self.outcomes.pop(0) if self.outcomes else None
        if outcome is not None:
            raise outcome
        return LocationAck()


@pytest.mark.asyncio
async def test_queue_survives_restart(tmp_path):
    """Entries written by one queue are read back by a new store on the same file."""
    path = tmp_path / "device.json"
    queued = samples(2)
    queue = OfflineQueue(LocalStore(path))
    for sample in queued:
        await queue.enqueue(sample)

    reopened = OfflineQueue(LocalStore(path))

    assert len(reopened) == 2
    assert [s.sample_id for s in reopened.snapshot()] == [s.sample_id for s in queued]
    assert reopened.snapshot()[0].timestamp == START


@pytest.mark.asyncio
async def test_entries_use_wire_field_names(store):
    queue = OfflineQueue(store)
    await queue.enqueue(samples(1)[0])

    entry = store.get(PENDING_KEY)[0]
    assert entry["orderId"] == ORDER_CODE
    assert {"latitude", "longitude", "accuracy", "timestamp", "sampleId"} <= set(entry)


@pytest.mark.asyncio
async def test_drain_delivers_oldest_first(store):
    queue = OfflineQueue(store)
    queued = samples(3)
    for sample in queued:
        await queue.enqueue(sample)
    transport = ScriptedTransport([])

    result = await queue.drain(transport)

    assert result.delivered == 3
    assert result.remaining == 0
    assert result.interrupted is False
    assert transport.sent == [s.sample_id for s in queued]
    assert len(queue) == 0


@pytest.mark.asyncio
async def test_drain_stops_at_first_network_failure(store):
    """A failure keeps that entry and everything after it, in order."""
    queue = OfflineQueue(store)
    queued = samples(3)
    for sample in queued:
        await queue.enqueue(sample)
    transport = ScriptedTransport([None, NetworkError("down")])

    result = await queue.drain(transport)

    assert result.delivered == 1
    assert result.interrupted is True
    assert result.remaining == 2
    assert len(transport.sent) == 2
    assert [s.sample_id for s in queue.snapshot()] == [s.sample_id for s in queued[1:]]


@pytest.mark.asyncio
async def test_drain_drops_samples_for_unknown_orders(store, caplog):
    queue = OfflineQueue(store)
    queued = samples(2)
    for sample in queued:
        await queue.enqueue(sample)
    transport = ScriptedTransport([OrderNotFoundError(ORDER_CODE), None])

    result = await queue.drain(transport)

    assert result.dropped == 1
    assert result.delivered == 1
    assert len(queue) == 0
    assert "Dropping undeliverable location" in caplog.text


@pytest.mark.asyncio
async def test_drain_against_api_records_points_in_order(store, transport, seeded_order, client):
    """Three failed sends, then a drain: nothing left queued, three points in order."""
    queue = OfflineQueue(store)
    queued = samples(3)
    offline = ScriptedTransport([NetworkError("offline")] * 3)
    for sample in queued:
        with pytest.raises(NetworkError):
            await offline.send_location(sample)
        await queue.enqueue(sample)

    result = await queue.drain(transport)

    assert result.delivered == 3
    assert len(queue) == 0

    points = (await client.get(f"/api/tracking-points/{ORDER_CODE}")).json()
    assert [p["latitude"] for p in points] == pytest.approx([s.latitude for s in queued])


@pytest.mark.asyncio
async def test_redrain_after_partial_ack_creates_no_duplicates(store, transport, seeded_order, client):
    """A sample delivered but not removed is acknowledged as a duplicate on retry."""
    queue = OfflineQueue(store)
    queued = samples(2)
    for sample in queued:
        await queue.enqueue(sample)

    # Delivered once before the app lost the acknowledgement
    await transport.send_location(queued[0])

    result = await queue.drain(transport)

    assert result.delivered == 2
    points = (await client.get(f"/api/tracking-points/{ORDER_CODE}")).json()
    assert len(points) == 2


@pytest.mark.asyncio
async def test_clear(store):
    queue = OfflineQueue(store)
    await queue.enqueue(samples(1)[0])

    await queue.clear()

    assert len(queue) == 0
    assert store.get(PENDING_KEY) is None


@pytest.mark.asyncio
async def test_rejected_entry_does_not_block_the_queue(store, caplog):
    """A sample the server refuses is dropped; the entries behind it are delivered."""
    queue = OfflineQueue(store)
    refused = LocationSample(order_id=ORDER_CODE, latitude=-25.4284, longitude=-49.2733, accuracy=-1.0, timestamp=START)
    behind = samples(3)
    await queue.enqueue(refused)
    for sample in behind:
        await queue.enqueue(sample)

    def handler(request):
        if json.loads(request.content)["sampleId"] == refused.sample_id:
            return httpx.Response(422, json={
                "success": False, "error_code": "ERR_VALIDATION", "message": "Dados inválidos"
            })
        return httpx.Response(200, json={"success": True, "duplicate": False, "pointId": 1})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://test") as client:
        result = await queue.drain(TransportClient("http://test", client=client))

    assert result.dropped == 1
    assert result.delivered == 3
    assert result.interrupted is False
    assert len(queue) == 0
    assert "Dropping rejected location" in caplog.text
