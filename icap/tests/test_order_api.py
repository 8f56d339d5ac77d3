"""
Integration tests for order validation and status updates.
"""

import logging

import pytest
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from icap.app.core.observability import order_code_from_path
from icap.app.models.order import Order
from icap.app.models.tracking_point import TrackingPoint

ORDER_CODE = "CAP2505260002"


async def fetch_order(session_factory, order_code):
    async with session_factory() as session:
        result = await session.execute(select(Order).where(Order.order_id == order_code))
        return result.scalar_one_or_none()


async def count_points(session_factory):
    async with session_factory() as session:
        result = await session.execute(select(TrackingPoint))
        return len(result.scalars().all())


# TEST 1: Validate a seeded order
@pytest.mark.asyncio
async def test_validate_known_order(client, seeded_order):
    """A seeded order validates with its status and display details."""
    response = await client.get(f"/api/orders/validate/{ORDER_CODE}")

    assert response.status_code == 200
    data = response.json()
    assert data["valid"] is True
    assert data["orderId"] == ORDER_CODE
    assert data["status"] == "Em Rota"
    assert data["message"] == "Pedido encontrado e válido"
    assert data["details"]["id"] == seeded_order.id
    assert data["details"]["productName"] == "Concreto usinado FCK 30"
    assert data["details"]["supplierName"] == "Concreteira Paraná"
    assert data["details"]["deliveryDate"] == "2025-05-27"


# TEST 2: Unknown code is a normal answer, every time
@pytest.mark.asyncio
async def test_validate_unknown_order_is_idempotent(client, seeded_order):
    """Unknown codes answer valid=false without details, repeatedly."""
    for _ in range(2):
        response = await client.get("/api/orders/validate/INVALID123")

        assert response.status_code == 200
        data = response.json()
        assert data["valid"] is False
        assert data["orderId"] == "INVALID123"
        assert data["message"] == "Pedido não encontrado no sistema"
        assert "details" not in data
        assert "status" not in data


# TEST 3: Status update with audit point
@pytest.mark.asyncio
async def test_update_status_records_audit_point(client, seeded_order, session_factory):
    """Updating the status overwrites it and appends a status tracking point."""
    response = await client.put(
        f"/api/orders/{ORDER_CODE}/status",
        json={"status": "Em Transporte"}
    )

    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["orderId"] == ORDER_CODE
    assert data["newStatus"] == "Em Transporte"
    assert data["auditRecorded"] is True
    assert data["message"] == "Status atualizado com sucesso"

    order = await fetch_order(session_factory, ORDER_CODE)
    assert order.status == "Em Transporte"

    points = (await client.get(f"/api/tracking-points/{ORDER_CODE}")).json()
    assert len(points) == 1
    assert points[0]["status"] == "Em Transporte"
    assert points[0]["comment"] == "Status alterado via PWA para: Em Transporte"
    assert points[0]["userId"] == 4
    assert points[0]["latitude"] is None


# TEST 4: Two consecutive updates, last one wins
@pytest.mark.asyncio
async def test_consecutive_updates_last_writer_wins(client, seeded_order, session_factory):
    """In transit then delivered: final status is delivered, at most two audit points."""
    first = await client.put(f"/api/orders/{ORDER_CODE}/status", json={"status": "Em Transporte"})
    second = await client.put(f"/api/orders/{ORDER_CODE}/status", json={"status": "Entregue"})

    assert first.json()["success"] is True
    assert second.json()["success"] is True

    order = await fetch_order(session_factory, ORDER_CODE)
    assert order.status == "Entregue"
    assert await count_points(session_factory) <= 2


# TEST 5: Status values are matched case-insensitively
@pytest.mark.asyncio
async def test_update_status_normalizes_case(client, seeded_order, session_factory):
    """'em transporte' is stored as the canonical 'Em Transporte'."""
    response = await client.put(f"/api/orders/{ORDER_CODE}/status", json={"status": "em transporte"})

    assert response.json()["newStatus"] == "Em Transporte"
    order = await fetch_order(session_factory, ORDER_CODE)
    assert order.status == "Em Transporte"


# TEST 6: Unknown status is a business rejection
@pytest.mark.asyncio
async def test_update_status_rejects_unknown_value(client, seeded_order, session_factory):
    """An unknown status leaves the order untouched and answers the 200 envelope."""
    response = await client.put(f"/api/orders/{ORDER_CODE}/status", json={"status": "Perdido"})

    assert response.status_code == 200
    data = response.json()
    assert data["success"] is False
    assert data["error_code"] == "INVALID_STATUS"
    assert "Entregue" in data["details"]["allowed"]

    order = await fetch_order(session_factory, ORDER_CODE)
    assert order.status == "Em Rota"
    assert await count_points(session_factory) == 0


# TEST 7: Unknown order
@pytest.mark.asyncio
async def test_update_status_unknown_order(client, seeded_order):
    """Updating an unknown order answers ORDER_NOT_FOUND."""
    response = await client.put("/api/orders/INVALID123/status", json={"status": "Entregue"})

    assert response.status_code == 200
    data = response.json()
    assert data["success"] is False
    assert data["error_code"] == "ORDER_NOT_FOUND"
    assert data["message"] == "Pedido não encontrado"
    assert data["details"]["orderId"] == "INVALID123"


# TEST 8: Malformed body
@pytest.mark.asyncio
async def test_update_status_requires_status_field(client, seeded_order):
    """A body without status is a protocol error (422)."""
    response = await client.put(f"/api/orders/{ORDER_CODE}/status", json={})

    assert response.status_code == 422
    data = response.json()
    assert data["success"] is False
    assert data["error_code"] == "ERR_VALIDATION"


# TEST 9: Audit failure does not fail the update
@pytest.mark.asyncio
async def test_audit_failure_is_best_effort(client, seeded_order, session_factory, mocker, caplog):
    """When the audit point cannot be written the status update still succeeds."""
    mocker.patch(
        "icap.app.services.order_gateway.TrackingPoint",
        side_effect=SQLAlchemyError("tracking_points unavailable")
    )

    with caplog.at_level(logging.WARNING, logger="icap.app.services.order_gateway"):
        response = await client.put(f"/api/orders/{ORDER_CODE}/status", json={"status": "Entregue"})

    data = response.json()
    assert data["success"] is True
    assert data["newStatus"] == "Entregue"
    assert data["auditRecorded"] is False

    order = await fetch_order(session_factory, ORDER_CODE)
    assert order.status == "Entregue"
    assert await count_points(session_factory) == 0

    warnings = [r for r in caplog.records if r.getMessage() == "Status audit point not recorded"]
    assert len(warnings) == 1
    assert warnings[0].order_code == ORDER_CODE


# TEST 10: Correlation id is echoed
@pytest.mark.asyncio
async def test_correlation_id_header(client, seeded_order):
    """The observability middleware echoes the caller's correlation id."""
    response = await client.get(
        f"/api/orders/validate/{ORDER_CODE}",
        headers={"X-Correlation-ID": "driver-42"}
    )

    assert response.headers["X-Correlation-ID"] == "driver-42"
    assert "X-Process-Time" in response.headers


# TEST 11: Request logs carry the order code
@pytest.mark.parametrize("path,expected", [
    ("/api/orders/validate/CAP2505260002", "CAP2505260002"),
    ("/api/orders/CAP2505260002/status", "CAP2505260002"),
    ("/api/tracking-points/CAP2505260002", "CAP2505260002"),
    ("/api/tracking/location", None),
    ("/api/health", None),
])
def test_order_code_from_path(path, expected):
    assert order_code_from_path(path) == expected
