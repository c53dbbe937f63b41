import httpx
import pytest

from fulfillment.database import get_db
from fulfillment.main import app
from fulfillment.services.drones import get_drone_service
from fulfillment.services.hubs import get_hub_service
from fulfillment.services.orders import get_order_service

from tests.conftest import ADDRESS, cart_item, hub_payload


@pytest.fixture
async def client(session_maker, order_service, hub_service, drone_service, dispatched):
    async def _get_db():
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_order_service] = lambda: order_service
    app.dependency_overrides[get_hub_service] = lambda: hub_service
    app.dependency_overrides[get_drone_service] = lambda: drone_service

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


async def _place(client) -> dict:
    response = await client.post("/api/orders", json={
        "customer_id": "cust-1",
        "items": [cart_item("pho", 10.0, 2, "rest_a"), cart_item("com-tam", 8.0, 1, "rest_b")],
        "address": ADDRESS,
    })
    assert response.status_code == 200
    return response.json()


async def test_place_order_and_fetch_zones(client):
    await client.post("/api/hubs", json=hub_payload("HUB-D1", "District 1"))

    body = await _place(client)

    assert body["success"] is True
    assert body["amount"] == 28.0
    assert [z["district"] for z in body["zones"]] == ["District 1", "District 3"]
    assert body["zones"][0]["hub_code"] == "HUB-D1"
    assert body["zones"][1]["hub_resolution"]["status"] == "unresolved"

    zones = (await client.get(f"/api/orders/{body['order_id']}/delivery-zones")).json()
    assert zones["data"]["total_zones"] == 2
    assert zones["data"]["unresolved_zones"] == 1


async def test_invalid_cart_is_rejected(client):
    response = await client.post("/api/orders", json={
        "customer_id": "cust-1",
        "items": [],
        "address": ADDRESS,
    })

    assert response.status_code == 422


async def test_restaurant_status_uses_caller_header(client, dispatched):
    order_id = (await _place(client))["order_id"]

    response = await client.post(
        "/api/restaurant/orders/status",
        json={"order_id": order_id, "status": "Out for Delivery"},
        headers={"X-Restaurant-Id": "rest_a"},
    )
    assert response.status_code == 200
    assert response.json()["data"]["status"] == "Out for Delivery"

    response = await client.post(
        "/api/restaurant/orders/status",
        json={"order_id": order_id, "status": "Out for Delivery"},
        headers={"X-Restaurant-Id": "rest_b"},
    )
    assert response.json()["data"]["status"] == "Delivered"
    assert len(dispatched) == 1

    listed = await client.get("/api/restaurant/orders", headers={"X-Restaurant-Id": "rest_b"})
    assert [o["id"] for o in listed.json()["data"]] == [order_id]


async def test_domain_errors_render_structured_json(client):
    order_id = (await _place(client))["order_id"]

    denied = await client.post(
        "/api/restaurant/orders/status",
        json={"order_id": order_id, "status": "Preparing"},
        headers={"X-Restaurant-Id": "rest_z"},
    )
    missing = await client.get("/api/orders/999")
    bad_status = await client.post(f"/api/orders/{order_id}/status", json={"status": "Cooking"})

    assert denied.status_code == 403
    assert denied.json()["success"] is False
    assert denied.json()["error"] == "permission_denied"
    assert missing.status_code == 404
    assert missing.json()["error"] == "not_found"
    assert bad_status.status_code == 400
    assert bad_status.json()["error"] == "validation_failed"


async def test_restaurant_routes_require_header(client):
    response = await client.get("/api/restaurant/orders")

    assert response.status_code == 422


async def test_hub_capacity_conflict_is_409(client):
    hub = (await client.post("/api/hubs", json=hub_payload("hub-d1", "District 1", max_drones=1))).json()["data"]
    first = (await client.post("/api/drones", json={"drone_code": "D-1"})).json()["data"]
    second = (await client.post("/api/drones", json={"drone_code": "D-2"})).json()["data"]

    assigned = await client.post(f"/api/hubs/{hub['id']}/drones", json={"drone_id": first["id"]})
    full = await client.post(f"/api/hubs/{hub['id']}/drones", json={"drone_id": second["id"]})

    assert hub["hub_code"] == "HUB-D1"
    assert assigned.json()["data"]["assigned_drones"] == [first["id"]]
    assert full.status_code == 409
    assert full.json()["error"] == "capacity_exceeded"

    stats = (await client.get("/api/hubs/stats")).json()["data"]
    assert stats["total_assigned_drones"] == 1


async def test_drone_charging_returns_estimate(client):
    drone = (await client.post("/api/drones", json={"drone_code": "D-1", "battery_level": 45})).json()["data"]

    response = await client.put(f"/api/drones/{drone['id']}/status", json={"status": "charging"})

    data = response.json()["data"]
    assert data["status"] == "charging"
    assert data["battery"]["is_charging"] is True
    assert data["charging_estimate"]["minutes_needed"] == 28


async def test_payment_verification_round(client, dispatched):
    order_id = (await _place(client))["order_id"]

    failed = await client.post("/api/orders/verify", json={"order_id": order_id, "success": "false"})
    gone = await client.get(f"/api/orders/{order_id}")

    assert failed.json()["success"] is False
    assert failed.json()["message"] == "Payment failed."
    assert gone.status_code == 404
    assert dispatched == []


async def test_unassigning_non_member_drone_is_400(client):
    hub = (await client.post("/api/hubs", json=hub_payload("HUB-D1", "District 1"))).json()["data"]
    drone = (await client.post("/api/drones", json={"drone_code": "D-1"})).json()["data"]

    response = await client.delete(f"/api/hubs/{hub['id']}/drones/{drone['id']}")

    assert response.status_code == 400
    assert response.json()["error"] == "validation_failed"
    assert "HUB-D1" in response.json()["message"]


async def test_cart_items_may_use_id_key(client):
    item = cart_item("pho", 10.0, 1, "rest_a")
    item["id"] = item.pop("food_id")

    response = await client.post("/api/orders", json={"customer_id": "cust-1", "items": [item], "address": ADDRESS})

    assert response.status_code == 200
    order = (await client.get(f"/api/orders/{response.json()['order_id']}")).json()["data"]
    assert order["items"][0]["food_id"] == "pho"


async def test_metrics_exposes_request_and_order_counters(client):
    order_id = (await _place(client))["order_id"]
    await client.get(f"/api/orders/{order_id}")

    response = await client.get("/metrics")

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/plain")
    text = response.text
    assert 'path="/api/orders/{order_id}"' in text
    assert "http_requests_total" in text
    assert "fulfillment_orders_placed_total" in text
    assert 'path="/metrics"' not in text
