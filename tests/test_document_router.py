"""
Tests for server/core/DocumentService.py, the document router and GET /sync/status.
"""

from shared.models.document import SourceKind, make_document_id
from shared.models.sync import SyncOutcome
from tests.conftest import CONTAINER_A, TENANT_A_ID, TENANT_B_ID

V1 = "2024-03-01T10:00:00.000Z"
API_HEADERS = {"X-Api-Key": "test-api-key"}
DOC_A = make_document_id(TENANT_A_ID, SourceKind.MEETING_NOTES, "page1")


async def ingest(sync_service, source, tenant, native_id: str, content: str) -> None:
    source.put(native_id, content, V1, container_id=tenant.settings.connectors[0].container_id)
    outcome = await sync_service.do_reconcile_item(tenant, tenant.settings.connectors[0], native_id, trigger="manual")
    assert outcome == SyncOutcome.INGESTED


class TestListAndGet:
    """Test GET /documents and GET /documents/{id}."""

    async def test_requires_api_key(self, api_client):
        response = await api_client.get("/documents", params={"tenant": "acme"})
        assert response.status_code == 401

    async def test_lists_only_the_tenants_documents(self, api_client, sync_service, source, tenant_a, tenant_b):
        await ingest(sync_service, source, tenant_a, "page1", "Acme roadmap.")
        await ingest(sync_service, source, tenant_b, "page2", "Globex pricing.")

        response = await api_client.get("/documents", params={"tenant": "acme-inc"}, headers=API_HEADERS)

        assert response.status_code == 200
        documents = response.json()["documents"]
        assert [d["id"] for d in documents] == [DOC_A]
        assert documents[0]["source_version"] == V1
        assert "content" not in documents[0]

    async def test_source_kind_filter(self, api_client, sync_service, source, tenant_a):
        await ingest(sync_service, source, tenant_a, "page1", "Acme roadmap.")

        meeting_notes = await api_client.get(
            "/documents", params={"tenant": "acme", "source_kind": "meeting-notes"}, headers=API_HEADERS
        )
        client_pages = await api_client.get(
            "/documents", params={"tenant": "acme", "source_kind": "client-page"}, headers=API_HEADERS
        )

        assert len(meeting_notes.json()["documents"]) == 1
        assert client_pages.json()["documents"] == []

    async def test_unknown_source_kind_rejected(self, api_client):
        response = await api_client.get("/documents", params={"tenant": "acme", "source_kind": "emails"}, headers=API_HEADERS)
        assert response.status_code == 422

    async def test_unknown_tenant_is_404(self, api_client):
        response = await api_client.get("/documents", params={"tenant": "initech"}, headers=API_HEADERS)
        assert response.status_code == 404
        assert response.json()["error"] == "tenant_not_found"

    async def test_get_document_with_chunk_count(self, api_client, sync_service, source, tenant_a, store):
        await ingest(sync_service, source, tenant_a, "page1", "Acme roadmap. Mobile first.")

        response = await api_client.get(f"/documents/{DOC_A}", params={"tenant": "acme"}, headers=API_HEADERS)

        assert response.status_code == 200
        payload = response.json()
        assert payload["chunk_count"] == len(await store.get_chunks(TENANT_A_ID, DOC_A))
        assert payload["chunk_count"] >= 1
        assert payload["content_preview"] == "Acme roadmap. Mobile first."
        assert payload["metadata"]["container_id"] == CONTAINER_A

    async def test_get_missing_document_is_404(self, api_client):
        response = await api_client.get("/documents/does-not-exist", params={"tenant": "acme"}, headers=API_HEADERS)
        assert response.status_code == 404
        assert response.json()["error"] == "source_item_not_found"

    async def test_get_foreign_document_is_403(self, api_client, sync_service, source, tenant_a):
        await ingest(sync_service, source, tenant_a, "page1", "Acme only.")

        response = await api_client.get(f"/documents/{DOC_A}", params={"tenant": "globex"}, headers=API_HEADERS)

        assert response.status_code == 403
        assert response.json()["error"] == "tenant_mismatch"


class TestDelete:
    """Test DELETE /documents/{id}."""

    async def test_delete_removes_document_and_chunks(self, api_client, sync_service, source, tenant_a, store):
        await ingest(sync_service, source, tenant_a, "page1", "Acme roadmap.")

        response = await api_client.delete(f"/documents/{DOC_A}", params={"tenant": "acme"}, headers=API_HEADERS)

        assert response.status_code == 200
        assert response.json()["success"] is True
        assert await store.get_all(TENANT_A_ID) == []
        assert await store.get_search_candidates(TENANT_A_ID) == []

    async def test_next_poll_restores_document_still_in_source(self, api_client, sync_service, source, tenant_a, store):
        await ingest(sync_service, source, tenant_a, "page1", "Acme roadmap.")
        await api_client.delete(f"/documents/{DOC_A}", params={"tenant": "acme"}, headers=API_HEADERS)

        report = await sync_service.do_poll_connector(tenant_a, tenant_a.settings.connectors[0])

        assert report.ingested == 1
        assert [d.id for d in await store.get_all(TENANT_A_ID)] == [DOC_A]

    async def test_delete_missing_document_is_404(self, api_client):
        response = await api_client.delete("/documents/does-not-exist", params={"tenant": "acme"}, headers=API_HEADERS)
        assert response.status_code == 404

    async def test_delete_foreign_document_is_403(self, api_client, sync_service, source, tenant_a, store):
        await ingest(sync_service, source, tenant_a, "page1", "Acme only.")

        response = await api_client.delete(f"/documents/{DOC_A}", params={"tenant": "globex"}, headers=API_HEADERS)

        assert response.status_code == 403
        assert len(await store.get_all(TENANT_A_ID)) == 1
        assert await store.get_all(TENANT_B_ID) == []


class TestReprocess:
    """Test POST /documents/{id}/reprocess."""

    async def test_reingests_same_version(self, api_client, sync_service, source, tenant_a, store):
        await ingest(sync_service, source, tenant_a, "page1", "Original text.")
        # content changed without a version bump, so a normal trigger sees nothing new
        source.put("page1", "Corrected text.", V1)
        assert await sync_service.do_reconcile_item(tenant_a, tenant_a.settings.connectors[0], "page1", trigger="webhook") == SyncOutcome.UNCHANGED

        response = await api_client.post(f"/documents/{DOC_A}/reprocess", params={"tenant": "acme"}, headers=API_HEADERS)

        assert response.status_code == 200
        assert response.json()["outcome"] == "ingested"
        stored = await store.get_document(TENANT_A_ID, DOC_A)
        assert stored.content == "Corrected text."

    async def test_clears_persistent_failure(self, sync_service, source, tenant_a):
        await ingest(sync_service, source, tenant_a, "page1", "Original text.")
        cursor = sync_service.get_cursor(TENANT_A_ID, SourceKind.MEETING_NOTES)
        source.fail_fetch.add("page1")
        for _ in range(sync_service.max_item_failures):
            await sync_service.do_reconcile_item(tenant_a, tenant_a.settings.connectors[0], "page1", trigger="poll")
        assert "page1" in cursor.persistent_failures

        source.fail_fetch.clear()
        outcome = await sync_service.do_reprocess_document(tenant_a, DOC_A)

        assert outcome == SyncOutcome.INGESTED
        assert cursor.persistent_failures == {}
        assert cursor.failures == {}

    async def test_item_gone_from_source_is_deleted(self, api_client, sync_service, source, tenant_a, store):
        await ingest(sync_service, source, tenant_a, "page1", "Soon gone.")
        source.remove("page1")

        response = await api_client.post(f"/documents/{DOC_A}/reprocess", params={"tenant": "acme"}, headers=API_HEADERS)

        assert response.json()["outcome"] == "deleted"
        assert await store.get_all(TENANT_A_ID) == []

    async def test_source_outage_is_500(self, api_client, sync_service, source, tenant_a, store):
        await ingest(sync_service, source, tenant_a, "page1", "Original text.")
        source.fail_fetch.add("page1")

        response = await api_client.post(f"/documents/{DOC_A}/reprocess", params={"tenant": "acme"}, headers=API_HEADERS)

        assert response.status_code == 500
        assert response.json() == {
            "success": False,
            "outcome": "failed",
            "message": f"Reprocessing document {DOC_A} failed",
        }
        assert (await store.get_document(TENANT_A_ID, DOC_A)).content == "Original text."

    async def test_missing_document_is_404(self, api_client):
        response = await api_client.post("/documents/does-not-exist/reprocess", params={"tenant": "acme"}, headers=API_HEADERS)
        assert response.status_code == 404

    async def test_disabled_connector_is_400(self, api_client, sync_service, source, tenant_a, tenant_resolver):
        await ingest(sync_service, source, tenant_a, "page1", "Original text.")
        tenant_resolver.get_tenant(TENANT_A_ID).settings.connectors[0].enabled = False

        response = await api_client.post(f"/documents/{DOC_A}/reprocess", params={"tenant": "acme"}, headers=API_HEADERS)

        assert response.status_code == 400
        assert response.json()["error"] == "invalid_request"


class TestSyncStatus:
    """Test GET /sync/status."""

    async def test_requires_api_key(self, api_client):
        response = await api_client.get("/sync/status")
        assert response.status_code == 401

    async def test_status_before_any_poll(self, api_client):
        response = await api_client.get("/sync/status", headers=API_HEADERS)

        assert response.status_code == 200
        payload = response.json()
        assert payload["scheduler_running"] is False
        assert payload["manual_sync_running"] is False
        assert {c["tenant_id"] for c in payload["connectors"]} == {TENANT_A_ID, TENANT_B_ID}
        assert all(c["last_polled_at"] is None for c in payload["connectors"])
        assert payload["cursors"] == []

    async def test_status_after_manual_sync(self, api_client, sync_scheduler, source):
        source.put("page1", "For tenant A.", V1)
        await sync_scheduler.trigger_manual_sync()

        payload = (await api_client.get("/sync/status", headers=API_HEADERS)).json()

        assert all(c["last_polled_at"] is not None for c in payload["connectors"])
        cursor_a = next(c for c in payload["cursors"] if c["tenant_id"] == TENANT_A_ID)
        assert cursor_a["tracked_items"] == 1
        assert cursor_a["last_full_pass"] is not None
        assert cursor_a["persistent_failures"] == {}

    async def test_status_reports_persistent_failures(self, api_client, sync_service, source, tenant_a):
        source.put("page1", "Never arrives.", V1)
        source.fail_fetch.add("page1")
        for _ in range(sync_service.max_item_failures):
            await sync_service.do_reconcile_item(tenant_a, tenant_a.settings.connectors[0], "page1", trigger="poll")

        payload = (await api_client.get("/sync/status", headers=API_HEADERS)).json()

        cursor_a = next(c for c in payload["cursors"] if c["tenant_id"] == TENANT_A_ID)
        assert list(cursor_a["persistent_failures"]) == ["page1"]
        assert cursor_a["in_flight"] == []
