"""
Tests for server/routers/WebhookRouter.py
Signed and unsigned deliveries over HTTP, handshake and health probe.
"""

import json
import logging
import time

import pytest

from services.knowledge_sync.WebhookVerifier import WebhookVerifier
from tests.conftest import CONTAINER_A, TENANT_A_ID

SECRET = "whsec_router"
V1 = "2024-03-01T10:00:00.000Z"


def page_event(event_type: str = "page.content_updated", page_id: str = "page1") -> bytes:
    return json.dumps(
        {"type": event_type, "entity": {"id": page_id, "type": "page"}, "data": {"parent": {"id": CONTAINER_A, "type": "database"}}}
    ).encode("utf-8")


def signed_headers(body: bytes, secret: str = SECRET) -> dict:
    timestamp = str(int(time.time()))
    return {
        "X-Notion-Signature": "sha256=" + WebhookVerifier.compute_signature(secret, timestamp, body),
        "X-Notion-Timestamp": timestamp,
        "Content-Type": "application/json",
    }


@pytest.fixture
def webhook_secret(monkeypatch):
    monkeypatch.setenv("SOURCE_NOTION_WEBHOOK_SECRET", SECRET)
    return SECRET


class TestSignedDeliveries:
    """Test deliveries to a source with a webhook secret."""

    async def test_valid_delivery_is_processed(self, api_client, webhook_secret, source, store):
        source.put("page1", "Pushed content.", V1)
        body = page_event()

        response = await api_client.post("/webhook/notion", content=body, headers=signed_headers(body))

        assert response.status_code == 200
        assert response.json()["success"] is True
        assert response.json()["outcomes"] == ["ingested"]
        assert len(await store.get_all(TENANT_A_ID)) == 1

    async def test_wrong_secret_rejected_without_side_effects(self, api_client, webhook_secret, source, store, caplog):
        source.put("page1", "Must not be ingested.", V1)
        body = page_event()

        with caplog.at_level(logging.WARNING):
            response = await api_client.post("/webhook/notion", content=body, headers=signed_headers(body, secret="wrong"))

        assert response.status_code == 401
        assert response.json() == {"success": False, "error": "invalid_signature", "message": "Webhook signature mismatch."}
        assert source.fetch_calls == []
        assert await store.get_all(TENANT_A_ID) == []
        assert "Rejected webhook" in caplog.text

    async def test_missing_signature_rejected(self, api_client, webhook_secret, source):
        response = await api_client.post("/webhook/notion", content=page_event(), headers={"Content-Type": "application/json"})
        assert response.status_code == 401
        assert source.fetch_calls == []

    async def test_failed_reconcile_answers_500(self, api_client, webhook_secret, source):
        source.put("page1", "Source hiccup.", V1)
        source.fail_fetch = {"page1"}
        body = page_event()

        response = await api_client.post("/webhook/notion", content=body, headers=signed_headers(body))

        assert response.status_code == 500
        assert response.json()["success"] is False
        assert response.json()["outcomes"] == ["failed"]


class TestUnsignedDeliveries:
    async def test_accepted_with_warning(self, api_client, source, store, caplog):
        source.put("page1", "Unsigned but accepted.", V1)

        with caplog.at_level(logging.WARNING):
            response = await api_client.post("/webhook/notion", content=page_event())

        assert response.status_code == 200
        assert len(await store.get_all(TENANT_A_ID)) == 1
        assert "unsigned webhook" in caplog.text

    async def test_verification_challenge_echoed(self, api_client, store):
        body = json.dumps({"verification_token": "secret_handshake_token"}).encode("utf-8")

        response = await api_client.post("/webhook/notion", content=body)

        assert response.status_code == 200
        assert response.json()["challenge"] == "secret_handshake_token"
        assert await store.get_all(TENANT_A_ID) == []

    async def test_invalid_json_rejected(self, api_client):
        response = await api_client.post("/webhook/notion", content=b"not json")
        assert response.status_code == 400
        assert response.json()["error"] == "invalid_request"

    async def test_unknown_engine_rejected(self, api_client):
        response = await api_client.post("/webhook/confluence", content=page_event())
        assert response.status_code == 404
        assert response.json()["error"] == "unknown_engine"


class TestHealth:
    """Test the configuration health probe."""

    async def test_reports_missing_configuration(self, api_client):
        response = await api_client.get("/webhook/notion/health")

        assert response.status_code == 200
        assert response.json() == {
            "status": "ok",
            "engine": "notion",
            "has_webhook_secret": False,
            "has_api_key": False,
            "mirrored_connectors": 2,
            "store_engine": "sqlite",
        }

    async def test_reports_presence_never_values(self, api_client, webhook_secret, monkeypatch):
        monkeypatch.setenv("SOURCE_NOTION_API_KEY", "secret_notion_key")

        response = await api_client.get("/webhook/notion/health")

        assert response.json()["has_webhook_secret"] is True
        assert response.json()["has_api_key"] is True
        assert SECRET not in response.text
        assert "secret_notion_key" not in response.text

    async def test_unknown_engine(self, api_client):
        response = await api_client.get("/webhook/confluence/health")
        assert response.status_code == 404
