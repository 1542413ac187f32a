# /tests/test_web_server.py
"""
Unit tests for the health and evidence routes
"""

from unittest.mock import Mock

import pytest

from my_config import Config
from services.document_store import IMPOSTORS, MONITORED_DOMAINS, StoreUnavailableError
from src.components.impostor_monitoring.config import JOB_STATUS_COLLECTION
from web.web_server import create_app


@pytest.fixture
def config(tmp_path):
    return Config(data_dir=str(tmp_path), evidence_base_url="http://localhost:8080/evidence")


@pytest.fixture
def client(config, store):
    app = create_app(config, store)
    app.config["TESTING"] = True
    return app.test_client()


class TestHealthz:
    """Test cases for the health probe"""

    def test_ok(self, client, store):
        """Test the health endpoint with the store available"""
        store.upsert(MONITORED_DOMAINS, "example.com", {"domain": "example.com"})
        store.upsert(IMPOSTORS, "exampl.com", {"needs_evidence": True})
        store.upsert(JOB_STATUS_COLLECTION, "due_rescan_sweep", {"name": "due_rescan_sweep", "last_error": None})

        response = client.get("/healthz")
        assert response.status_code == 200
        body = response.get_json()
        assert body["status"] == "ok"
        assert body["monitored_domains"] == 1
        assert body["screenshot_queue"] == 1
        assert "due_rescan_sweep" in body["jobs"]

    def test_store_down(self, config):
        """Test that the health endpoint reports degraded when the store is down"""
        broken = Mock()
        broken.query.side_effect = StoreUnavailableError("gone")
        client = create_app(config, broken).test_client()

        response = client.get("/healthz")
        assert response.status_code == 503
        assert response.get_json()["status"] == "degraded"


class TestEvidence:
    """Test cases for serving screenshots"""

    def test_serves_stored_screenshot(self, client, config, tmp_path):
        """Test serving a stored screenshot"""
        path = tmp_path / "evidence" / "screenshots" / "exampl.com-1.png"
        path.parent.mkdir(parents=True)
        path.write_bytes(b"\x89PNG")

        response = client.get("/evidence/screenshots/exampl.com-1.png")
        assert response.status_code == 200
        assert response.data == b"\x89PNG"
        assert response.mimetype == "image/png"

    def test_missing(self, client):
        """Test that a missing screenshot is 404"""
        assert client.get("/evidence/screenshots/nothing.png").status_code == 404

    def test_traversal(self, client):
        """Test that path traversal is rejected"""
        assert client.get("/evidence/../my_config.py").status_code == 404
