"""
API tests for the dashboard backend.
"""
import asyncio
import json

import pytest
from fastapi import Request
from fastapi.testclient import TestClient

import dashboard.app as dashboard_app
from stockflow.sources import JsonFileSource


@pytest.fixture
def client(service):
    dashboard_app._service = service
    yield TestClient(dashboard_app.app)
    dashboard_app._service = None


@pytest.fixture
def seeded_client(client, service):
    service.store.write("items", [
        {"uid": "a", "itemcode": "WIX 51515", "allocated_to": "New Stock"},
        {"uid": "b", "itemcode": "MOT FL-820S", "allocated_to": "Shelf"},
    ])
    return client


@pytest.mark.api
class TestHealth:

    def test_health(self, client):
        response = client.get("/api/health")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ok"
        assert set(body["paths"]) == {"items", "orders", "settings"}
        assert "New Stock" in body["bubbles"]

    def test_setup(self, client):
        body = client.get("/api/setup").json()
        assert body["items"]["count"] == 0


@pytest.mark.api
class TestItemsApi:

    def test_list_and_replace(self, client):
        assert client.get("/api/items").json() == []
        response = client.put("/api/items", json={"items": [{"uid": "x", "itemcode": "A"}]})
        body = response.json()
        assert (body["ok"], body["written"], body["count"], body["held"]) == (True, True, 1, [])
        items = client.get("/api/items").json()
        assert items[0]["uid"] == "x"
        assert items[0]["allocated_to"] == "New Stock"

    def test_replace_keeps_locked_item(self, seeded_client):
        seeded_client.post("/api/items/a/lock")

        response = seeded_client.put("/api/items", json={"items": [{"uid": "b", "allocated_to": "Van"}]})

        assert response.status_code == 200
        assert response.json()["held"] == ["a"]
        items = {i["uid"]: i for i in seeded_client.get("/api/items").json()}
        assert items["a"]["allocated_to"] == "New Stock"
        assert items["b"]["allocated_to"] == "Van"

    def test_corrupt_items_file(self, seeded_client, service):
        service.store.path("items").write_text("[{", encoding="utf-8")
        response = seeded_client.post("/api/items/a/lock")
        assert response.status_code == 503
        assert response.json()["detail"]["reason"] == "parse-corruption"
        assert service.store.path("items").read_text(encoding="utf-8") == "[{"

    def test_stream_sends_current_then_changed_items(self, client, service):
        # TestClient buffers the whole response, so drive the event generator directly
        async def _receive():
            await asyncio.sleep(3600)
            return {"type": "http.disconnect"}

        async def _two_frames():
            scope = {"type": "http", "method": "GET", "path": "/api/items/stream", "headers": []}
            response = await dashboard_app.stream_items(Request(scope, _receive))
            frames = response.body_iterator
            try:
                first = await asyncio.wait_for(frames.__anext__(), timeout=5)
                service.write_items([{"uid": "n1", "itemcode": "WIX 51515"}])
                second = await asyncio.wait_for(frames.__anext__(), timeout=5)
            finally:
                await frames.aclose()
            return response, first, second

        try:
            response, first, second = asyncio.run(_two_frames())
        finally:
            service.store.stop_watching()

        assert response.media_type == "text/event-stream"
        assert first == "event: items\ndata: []\n\n"
        assert second.startswith("event: items\ndata: ")
        [item] = json.loads(second.split("data: ", 1)[1])
        assert item["uid"] == "n1"
        assert item["allocated_to"] == "New Stock"

    def test_summary(self, seeded_client):
        body = seeded_client.get("/api/items/summary").json()
        assert body["items"] == 2
        assert body["by_bubble"] == {"New Stock": 1, "Shelf": 1}

    def test_lock_conflict(self, seeded_client):
        first = seeded_client.post("/api/items/a/lock")
        assert first.status_code == 200
        assert first.json()["expires_at"] == "2025-11-28T09:50:20+00:00"

        second = seeded_client.post("/api/items/a/lock")
        assert second.status_code == 409
        assert second.json()["detail"]["reason"] == "locked"

    def test_edit_under_lease(self, seeded_client):
        seeded_client.post("/api/items/a/lock")
        response = seeded_client.patch("/api/items/a", json={"patch": {"notes1": "checked"}})
        assert response.status_code == 200
        assert response.json()["item"]["notes1"] == "checked"

    def test_edit_after_expiry(self, seeded_client, frozen_clock):
        seeded_client.post("/api/items/a/lock")
        frozen_clock.advance(30)
        response = seeded_client.patch("/api/items/a", json={"patch": {"notes1": "late"}})
        assert response.status_code == 409
        assert response.json()["detail"]["reason"] == "lock-expired"

    def test_release(self, seeded_client):
        seeded_client.post("/api/items/a/lock")
        assert seeded_client.delete("/api/items/a/lock").status_code == 200
        assert seeded_client.delete("/api/items/zzz/lock").status_code == 404

    def test_move(self, seeded_client):
        response = seeded_client.post("/api/items/a/move", json={"bubble": "Cash Sales"})
        assert response.status_code == 200
        assert response.json()["item"]["allocated_to"] == "Cash Sales"

    def test_move_invalid(self, seeded_client):
        assert seeded_client.post("/api/items/a/move", json={"bubble": ""}).status_code == 400

    def test_export(self, seeded_client, temp_dir):
        target = temp_dir / "export.json"
        response = seeded_client.post("/api/items/export", json={"path": str(target)})
        assert response.json()["count"] == 2
        assert target.exists()


@pytest.mark.api
class TestOrdersApi:

    def test_replace_and_list(self, client):
        response = client.put("/api/orders", json={"orders": [{"reference": "PO-1", "total": "$5"}]})
        assert response.status_code == 200
        orders = client.get("/api/orders").json()
        assert orders[0]["total"] == 5

    def test_set_invoice(self, client):
        client.put("/api/orders", json={"orders": [{"reference": "PO-1"}]})
        assert client.get("/api/orders/pending-invoice").json()[0]["reference"] == "PO-1"

        response = client.put("/api/orders/PO-1/invoice", json={"invoice": "INV-1"})

        assert response.status_code == 200
        assert client.get("/api/orders/pending-invoice").json() == []

    def test_set_invoice_unknown_order(self, client):
        response = client.put("/api/orders/NOPE/invoice", json={"invoice": "INV-1"})
        assert response.status_code == 404

    def test_add_to_outstanding(self, client):
        client.put("/api/orders", json={"orders": [
            {"reference": "W-1", "lineItems": [{"partNumber": "123", "quantity": 2, "costPrice": 10}]},
        ]})
        body = client.post("/api/orders/add-to-outstanding").json()
        assert body["created"] == 1
        assert body["items"][0]["cost"] == "10.00"


@pytest.mark.api
class TestSourcesApi:

    def test_fetch(self, client, service, json_source_dir):
        service.register_source(JsonFileSource("world"))
        assert client.get("/api/sources").json() == ["world"]

        response = client.post("/api/sources/world/fetch")

        assert response.status_code == 200
        assert response.json()["added"] == 2

    def test_fetch_unknown(self, client):
        response = client.post("/api/sources/nowhere/fetch")
        assert response.status_code == 404
        assert response.json()["detail"]["reason"] == "unknown-source"


@pytest.mark.api
class TestPathsAndSettingsApi:

    def test_move_and_reset_collection(self, client, temp_dir):
        target = temp_dir / "shared" / "orders.json"
        response = client.put("/api/paths/orders", json={"path": str(target)})
        assert response.status_code == 200
        assert client.get("/api/paths").json()["orders"] == str(target)

        reset = client.delete("/api/paths/orders")
        assert reset.status_code == 200
        assert reset.json()["path"] != str(target)

    def test_unknown_collection(self, client, temp_dir):
        response = client.put("/api/paths/customers", json={"path": str(temp_dir / "x.json")})
        assert response.status_code == 400

    def test_settings(self, client):
        assert client.put("/api/settings", json={"values": {"default_bubble": "Shelf"}}).json() == {"ok": True}
        assert client.get("/api/settings").json() == {"default_bubble": "Shelf"}
