"""Tests for api_server module."""
import io
import zipfile

import pytest

# Skip all tests if fastapi is not available
fastapi = pytest.importorskip("fastapi", reason="fastapi not installed (install with pip install inventory-register[web])")

from fastapi.testclient import TestClient  # noqa: E402

from inventory_register import api_server  # noqa: E402
from inventory_register.export import ExportAssembler, ExportState  # noqa: E402
from inventory_register.images import encode_data_url  # noqa: E402
from inventory_register.notifications import Notifier  # noqa: E402
from inventory_register.storage import LocalStorage  # noqa: E402
from inventory_register.store import ItemStore  # noqa: E402

PNG_URL = encode_data_url(b"fake-png-bytes", "image/png")

WIDGET = {"name": "Widget", "quantity": "10", "location": "Shelf A", "user": "Alice"}


@pytest.fixture
def client(tmp_path, monkeypatch):
    """Test client with the server state pointed at a temporary store."""
    monkeypatch.setattr(api_server, "store", ItemStore(LocalStorage(tmp_path), notifier=Notifier(timeout=60)))
    monkeypatch.setattr(api_server, "assembler", ExportAssembler())
    monkeypatch.setattr(api_server, "settings", None)
    return TestClient(api_server.app)


class TestHealth:
    """Tests for the health endpoint."""

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["store_loaded"] is True
        assert data["item_count"] == 0
        assert data["exporting"] is False


class TestItems:
    """Tests for the item endpoints."""

    def test_create(self, client):
        response = client.post("/api/items", json={**WIDGET, "images": [PNG_URL]})

        assert response.status_code == 201
        data = response.json()
        assert data["item"]["name"] == "Widget"
        assert data["item"]["quantity"] == 10
        assert data["item"]["images"] == [PNG_URL]
        assert data["item"]["id"]
        assert data["notification"] == {"message": "Item added", "type": "success"}
        assert len(api_server.store) == 1

    def test_create_integer_quantity(self, client):
        response = client.post("/api/items", json={**WIDGET, "quantity": 0})
        assert response.status_code == 201
        assert response.json()["item"]["quantity"] == 0

    def test_create_missing_fields(self, client):
        response = client.post("/api/items", json={"name": "Widget", "quantity": "10"})

        assert response.status_code == 422
        detail = response.json()["detail"]
        assert detail["message"] == "Please fill in all required fields"
        assert detail["fields"] == ["location", "user"]
        assert len(api_server.store) == 0

    def test_create_bad_image(self, client):
        response = client.post("/api/items", json={**WIDGET, "images": [PNG_URL, "/tmp/photo.jpg"]})

        assert response.status_code == 422
        assert response.json()["detail"]["images"] == [1]
        assert len(api_server.store) == 0

    def test_list_and_search(self, client):
        client.post("/api/items", json=WIDGET)
        client.post("/api/items", json={**WIDGET, "name": "Gadget", "location": "Drawer"})

        data = client.get("/api/items").json()
        assert data["total"] == 2
        assert data["count"] == 2

        data = client.get("/api/items", params={"q": "drawer"}).json()
        assert data["total"] == 2
        assert data["count"] == 1
        assert data["items"][0]["name"] == "Gadget"

    def test_get_item(self, client):
        item = client.post("/api/items", json=WIDGET).json()["item"]

        response = client.get(f"/api/items/{item['id']}")
        assert response.status_code == 200
        assert response.json()["item"] == item

        assert client.get("/api/items/unknown").status_code == 404

    def test_update_keeps_identity(self, client):
        item = client.post("/api/items", json=WIDGET).json()["item"]

        response = client.put(f"/api/items/{item['id']}", json={**WIDGET, "quantity": "15"})

        assert response.status_code == 200
        updated = response.json()["item"]
        assert updated["id"] == item["id"]
        assert updated["date"] == item["date"]
        assert updated["quantity"] == 15
        assert response.json()["notification"]["message"] == "Item updated"
        assert len(api_server.store) == 1

    def test_update_unknown(self, client):
        assert client.put("/api/items/unknown", json=WIDGET).status_code == 404

    def test_delete(self, client):
        item = client.post("/api/items", json=WIDGET).json()["item"]

        response = client.delete(f"/api/items/{item['id']}")

        assert response.status_code == 200
        assert response.json()["deleted"] is True
        assert len(api_server.store) == 0

    def test_delete_unknown(self, client):
        response = client.delete("/api/items/unknown")
        assert response.status_code == 200
        assert response.json()["deleted"] is False
        assert response.json()["notification"] is None


class TestExport:
    """Tests for the export endpoint."""

    def test_export_empty(self, client):
        assert client.get("/api/export").status_code == 409

    def test_export(self, client):
        item = client.post("/api/items", json={**WIDGET, "images": [PNG_URL]}).json()["item"]

        response = client.get("/api/export")

        assert response.status_code == 200
        assert response.headers["content-type"] == "application/zip"
        assert 'filename="inventory_export.zip"' in response.headers["content-disposition"]
        with zipfile.ZipFile(io.BytesIO(response.content)) as archive:
            assert "inventory.xlsx" in archive.namelist()
            assert f"images/item_{item['id']}_image_0.png" in archive.namelist()

    def test_export_busy(self, client):
        client.post("/api/items", json=WIDGET)
        api_server.assembler._set_state(ExportState.EXPORTING)

        assert client.get("/api/export").status_code == 409
