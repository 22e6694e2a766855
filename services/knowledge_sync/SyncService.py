"""Synchronisation service.

Keeps every tenant's document store consistent with its external sources.
Two triggers feed the same per-item reconciliation: signed webhooks pushed by
the source, and scheduled polls that list each mirrored container. Both are
idempotent and safe to run concurrently for the same item.

Per item the flow is fetch → diff → (no-op | ingest). An item is only
re-ingested if the source reports a strictly newer version than the last one
successfully ingested; the cursor advances only after the store commit.
"""

import asyncio
import json
from datetime import datetime

from services.ingestion.ChunkingPipeline import ChunkingPipeline
from services.knowledge_sync.WebhookVerifier import WebhookVerifier
from shared.clients.source.SourceClientInterface import SourceClientInterface
from shared.clients.source.SourceClientManager import SourceClientManager
from shared.clients.store.DocumentStoreInterface import DocumentStoreInterface
from shared.helper.HelperConfig import HelperConfig
from shared.helper.HelperRetry import HelperRetry
from shared.logging.logging_setup import tenant_log_context
from shared.models.document import Document, SourceKind, make_document_id, utcnow
from shared.models.errors import BridgeError, ErrorKind
from shared.models.sync import (
    CursorStatus,
    SourceListing,
    SyncCursor,
    SyncOutcome,
    SyncReport,
    WebhookAction,
    WebhookResult,
)
from shared.models.tenant import ConnectorConfig, Tenant
from shared.tenants.TenantResolver import TenantResolver

DEFAULT_CONCURRENCY = 5
DEFAULT_ITEM_TIMEOUT_SECONDS = 120
DEFAULT_MAX_ITEM_FAILURES = 3


def _parse_version(version: str) -> datetime | None:
    try:
        return datetime.fromisoformat(version.replace("Z", "+00:00"))
    except ValueError:
        return None


def is_newer_version(candidate: str | None, current: str | None) -> bool:
    """Return True if `candidate` is strictly newer than `current`.

    Versions are ISO-8601 timestamps where possible. Opaque versions that do
    not parse can only be compared for equality, so any difference counts as newer.
    """
    if not current:
        return True
    if not candidate:
        return False
    candidate_dt, current_dt = _parse_version(candidate), _parse_version(current)
    if candidate_dt is not None and current_dt is not None:
        try:
            return candidate_dt > current_dt
        except TypeError:
            # naive vs aware timestamps
            pass
    return candidate != current


class SyncService:
    """Orchestrates webhook and scheduled reconciliation for all tenants."""

    def __init__(
        self,
        helper_config: HelperConfig,
        tenant_resolver: TenantResolver,
        store: DocumentStoreInterface,
        pipeline: ChunkingPipeline,
        source_manager: SourceClientManager,
        verifier: WebhookVerifier | None = None,
        helper_retry: HelperRetry | None = None,
    ) -> None:
        self.logging = helper_config.get_logger()
        self._tenant_resolver = tenant_resolver
        self._store = store
        self._pipeline = pipeline
        self._source_manager = source_manager
        self._verifier = verifier or WebhookVerifier(helper_config)
        self._helper_retry = helper_retry or HelperRetry(helper_config)

        self.concurrency = max(1, int(helper_config.get_number_val("SYNC_CONCURRENCY", default=DEFAULT_CONCURRENCY)))
        self.item_timeout = helper_config.get_number_val("SYNC_ITEM_TIMEOUT_SECONDS", default=DEFAULT_ITEM_TIMEOUT_SECONDS)
        self.max_item_failures = max(1, int(helper_config.get_number_val("SYNC_MAX_ITEM_FAILURES", default=DEFAULT_MAX_ITEM_FAILURES)))

        self._cursors: dict[tuple[str, str], SyncCursor] = {}

        for client in self._source_manager.get_clients():
            if not client.has_webhook_secret():
                self.logging.warning(
                    "No webhook secret configured for source '%s': webhooks are accepted UNSIGNED.",
                    client.get_engine_name(),
                )

    ##########################################
    ################ GETTER ##################
    ##########################################

    def get_cursor(self, tenant_id: str, source_kind: SourceKind) -> SyncCursor:
        """Return the cursor of a (tenant, source kind), creating an empty one if needed."""
        key = (tenant_id, source_kind.value)
        cursor = self._cursors.get(key)
        if cursor is None:
            cursor = SyncCursor(tenant_id=tenant_id, source_kind=source_kind.value)
            self._cursors[key] = cursor
        return cursor

    def _get_connector_targets(self, client: SourceClientInterface, container_id: str | None) -> list[tuple[Tenant, ConnectorConfig]]:
        """Find every enabled (tenant, connector) of an engine that mirrors a container.

        With no container ID, every enabled connector of the engine is returned.
        """
        engine = client.get_engine_name()
        targets = []
        for tenant in self._tenant_resolver.get_tenants():
            for connector in tenant.settings.connectors:
                if not connector.enabled or connector.engine.strip().lower() != engine:
                    continue
                if container_id is None or client.is_same_container(connector.container_id, container_id):
                    targets.append((tenant, connector))
        return targets

    def get_health(self, engine: str) -> dict:
        """Report configuration presence for a source engine. Never exposes values.

        Raises:
            BridgeError: UNKNOWN_ENGINE if the engine is not configured.
        """
        client = self._source_manager.get_client(engine)
        return {
            "status": "ok",
            "engine": client.get_engine_name(),
            "has_webhook_secret": client.has_webhook_secret(),
            "has_api_key": client.has_credentials(),
            "mirrored_connectors": len(self._get_connector_targets(client, None)),
            "store_engine": self._store.get_engine_name(),
        }

    ##########################################
    ############ ITEM RECONCILE ##############
    ##########################################

    async def do_reconcile_item(
        self,
        tenant: Tenant,
        connector: ConnectorConfig,
        native_id: str,
        trigger: str,
        deleted: bool = False,
        listed_version: str | None = None,
        force: bool = False,
    ) -> SyncOutcome:
        """Bring one source item of one tenant in line with the source.

        Concurrent triggers for the same item are coalesced: while one
        reconciliation runs, further triggers are discarded, not queued. A
        newer version is picked up by its own webhook or the next poll.

        Args:
            tenant (Tenant): Owning tenant.
            connector (ConnectorConfig): Connector the item belongs to.
            native_id (str): ID of the item in the source system.
            trigger (str): "webhook", "poll" or "manual", for logging.
            deleted (bool): The source reported the item as deleted; skip the fetch.
            listed_version (str | None): Version from a listing, if known.
            force (bool): Re-ingest even if the version is not newer than the last one seen.

        Returns:
            SyncOutcome: What happened to the item.

        Raises:
            BridgeError: UNKNOWN_ENGINE if the connector's engine is not configured.
        """
        client = self._source_manager.get_client(connector.engine)
        key = client.normalize_id(native_id)
        cursor = self.get_cursor(tenant.id, connector.source_kind)

        # check and claim without awaiting in between
        if key in cursor.in_flight:
            self.logging.debug("Item %s of tenant %s already in flight, coalescing %s trigger", key, tenant.id, trigger)
            return SyncOutcome.COALESCED
        cursor.in_flight.add(key)

        try:
            with tenant_log_context(tenant.id):
                return await self._run_with_timeout(tenant, connector, client, cursor, key, trigger, deleted, listed_version, force)
        finally:
            cursor.in_flight.discard(key)

    async def _run_with_timeout(
        self,
        tenant: Tenant,
        connector: ConnectorConfig,
        client: SourceClientInterface,
        cursor: SyncCursor,
        key: str,
        trigger: str,
        deleted: bool,
        listed_version: str | None,
        force: bool,
    ) -> SyncOutcome:
        try:
            return await asyncio.wait_for(
                self._reconcile(tenant, connector, client, cursor, key, trigger, deleted, listed_version, force),
                timeout=self.item_timeout,
            )
        except asyncio.TimeoutError:
            self.logging.error(
                "Reconciliation of item %s for tenant %s timed out after %ss",
                key,
                tenant.id,
                self.item_timeout,
            )
            self._record_failure(tenant, cursor, key, listed_version)
            return SyncOutcome.FAILED

    async def _reconcile(
        self,
        tenant: Tenant,
        connector: ConnectorConfig,
        client: SourceClientInterface,
        cursor: SyncCursor,
        key: str,
        trigger: str,
        deleted: bool,
        listed_version: str | None,
        force: bool,
    ) -> SyncOutcome:
        version = listed_version
        try:
            if deleted:
                return await self._delete_item(tenant, connector, cursor, key, trigger)

            if version and cursor.persistent_failures.get(key) == version:
                self.logging.debug("Skipping item %s: version %s already failed persistently", key, version)
                return SyncOutcome.SKIPPED

            try:
                async for attempt in self._helper_retry.attempts():
                    with attempt:
                        item = await client.do_fetch_source_item(key)
            except BridgeError as e:
                if e.kind == ErrorKind.SOURCE_ITEM_NOT_FOUND:
                    return await self._delete_item(tenant, connector, cursor, key, trigger)
                raise
            version = item.version

            if item.container_id and not client.is_same_container(item.container_id, connector.container_id):
                self.logging.info("Item %s moved out of container %s, removing it", key, connector.container_id)
                return await self._delete_item(tenant, connector, cursor, key, trigger)

            if cursor.persistent_failures.get(key) == version:
                self.logging.debug("Skipping item %s: version %s already failed persistently", key, version)
                return SyncOutcome.SKIPPED
            cursor.persistent_failures.pop(key, None)

            existing = await self._store.get_by_source_native_id(tenant.id, connector.source_kind, key)
            current = cursor.last_seen.get(key)
            if current is None and existing is not None and existing.source_version:
                # lost cursor, rebuild from the stored version
                current = existing.source_version
                cursor.last_seen[key] = current
            if current is not None and not force and not is_newer_version(version, current):
                cursor.failures.pop(key, None)
                self.logging.debug("Item %s unchanged (version %s, last seen %s)", key, version, current)
                return SyncOutcome.UNCHANGED

            if not item.content.strip():
                # empty pages carry nothing retrievable
                if existing is not None:
                    await self._store.delete(tenant.id, existing.id)
                cursor.last_seen[key] = version
                cursor.failures.pop(key, None)
                self.logging.info("Item %s ('%s') has no content, skipped", key, item.title)
                return SyncOutcome.SKIPPED

            # snapshot the model so every chunk of this pass uses the same one
            embedding_model = tenant.settings.embedding_model
            document = Document(
                id=make_document_id(tenant.id, connector.source_kind, key),
                tenant_id=tenant.id,
                title=item.title,
                content=item.content,
                source_kind=connector.source_kind,
                source_native_id=key,
                source_version=version,
                metadata={
                    **item.properties,
                    "source_engine": client.get_engine_name(),
                    "container_id": connector.container_id,
                    "synced_at": utcnow().isoformat(),
                },
                created_at=existing.created_at if existing else utcnow(),
            )
            chunks = await self._pipeline.process(document, embedding_model)
            await self._store.commit_document(tenant.id, document, chunks)

            cursor.last_seen[key] = version
            cursor.failures.pop(key, None)
            self.logging.info(
                "Ingested item %s ('%s') for tenant %s via %s: %d chunk(s)",
                key,
                item.title[:50],
                tenant.id,
                trigger,
                len(chunks),
            )
            return SyncOutcome.INGESTED
        except BridgeError as e:
            self.logging.error("Reconciliation of item %s for tenant %s failed: %s", key, tenant.id, e.message)
            self._record_failure(tenant, cursor, key, version)
            return SyncOutcome.FAILED

    async def _delete_item(self, tenant: Tenant, connector: ConnectorConfig, cursor: SyncCursor, key: str, trigger: str) -> SyncOutcome:
        document_id = make_document_id(tenant.id, connector.source_kind, key)
        removed = await self._store.delete(tenant.id, document_id)
        cursor.last_seen.pop(key, None)
        cursor.failures.pop(key, None)
        cursor.persistent_failures.pop(key, None)
        if not removed:
            return SyncOutcome.UNCHANGED
        self.logging.info("Deleted item %s of tenant %s via %s", key, tenant.id, trigger)
        return SyncOutcome.DELETED

    def _record_failure(self, tenant: Tenant, cursor: SyncCursor, key: str, version: str | None) -> None:
        attempts = cursor.failures.get(key, 0) + 1
        cursor.failures[key] = attempts
        if attempts >= self.max_item_failures:
            cursor.persistent_failures[key] = version or ""
            self.logging.error(
                "Item %s of tenant %s failed %d time(s) in a row; giving up until its version changes",
                key,
                tenant.id,
                attempts,
            )

    ##########################################
    ############### POLLING ##################
    ##########################################

    async def do_poll_connector(self, tenant: Tenant, connector: ConnectorConfig, prune: bool = True) -> SyncReport:
        """List a connector's container and reconcile every changed item.

        Items are reconciled concurrently and independently; one failing item
        never aborts the others. With `prune`, documents whose item is absent
        from the listing are deleted. A failed listing aborts the pass and
        deletes nothing.

        Returns:
            SyncReport: Per-outcome counts for this pass.
        """
        with tenant_log_context(tenant.id):
            return await self._poll_connector(tenant, connector, prune)

    async def _poll_connector(self, tenant: Tenant, connector: ConnectorConfig, prune: bool) -> SyncReport:
        client = self._source_manager.get_client(connector.engine)
        cursor = self.get_cursor(tenant.id, connector.source_kind)
        report = SyncReport(tenant_id=tenant.id, source_kind=connector.source_kind.value)
        self.logging.info(
            "Polling %s container %s for tenant %s", client.get_engine_name(), connector.container_id, tenant.slug
        )

        try:
            async for attempt in self._helper_retry.attempts():
                with attempt:
                    listings = await client.do_list_source_items(connector.container_id)
        except BridgeError as e:
            self.logging.error(
                "Listing container %s for tenant %s failed, skipping pass: %s", connector.container_id, tenant.id, e.message
            )
            report.aborted = True
            return report
        report.listed = len(listings)

        documents = await self._store.get_by_source(tenant.id, connector.source_kind)
        stored_versions = {
            doc.source_native_id: doc.source_version
            for doc in documents
            if client.is_same_container(doc.metadata.get("container_id"), connector.container_id)
        }

        changed: list[SourceListing] = []
        for listing in listings:
            key = client.normalize_id(listing.source_native_id)
            current = cursor.last_seen.get(key) or stored_versions.get(key)
            if current is not None and not is_newer_version(listing.version, current):
                cursor.last_seen[key] = current
                report.record(SyncOutcome.UNCHANGED)
            else:
                changed.append(listing)

        sem = asyncio.Semaphore(self.concurrency)

        async def _bounded(listing: SourceListing) -> SyncOutcome:
            async with sem:
                return await self.do_reconcile_item(
                    tenant, connector, listing.source_native_id, trigger="poll", listed_version=listing.version
                )

        results = await asyncio.gather(*[_bounded(listing) for listing in changed], return_exceptions=True)
        for listing, result in zip(changed, results):
            if isinstance(result, Exception):
                self.logging.error("Unexpected error reconciling item %s: %r", listing.source_native_id, result)
                report.record(SyncOutcome.FAILED)
            else:
                report.record(result)

        if prune:
            listed_keys = {client.normalize_id(listing.source_native_id) for listing in listings}
            for native_id in stored_versions:
                if native_id in listed_keys:
                    continue
                outcome = await self.do_reconcile_item(tenant, connector, native_id, trigger="poll", deleted=True)
                if outcome == SyncOutcome.DELETED:
                    report.record(outcome)

        cursor.last_full_pass = utcnow()
        self.logging.info(
            "Poll complete for tenant %s / %s: %d listed, %d ingested, %d unchanged, %d deleted, %d failed.",
            tenant.slug,
            connector.source_kind.value,
            report.listed,
            report.ingested,
            report.unchanged,
            report.deleted,
            report.failed,
        )
        return report

    async def do_full_sync(self) -> list[SyncReport]:
        """Poll every enabled connector of every tenant."""
        self.logging.info("Starting full sync...")
        reports = []
        for tenant in self._tenant_resolver.get_tenants():
            for connector in tenant.settings.connectors:
                if not connector.enabled:
                    continue
                try:
                    reports.append(await self.do_poll_connector(tenant, connector))
                except BridgeError as e:
                    self.logging.error("Full sync of %s for tenant %s failed: %s", connector.engine, tenant.id, e.message)
                    reports.append(
                        SyncReport(tenant_id=tenant.id, source_kind=connector.source_kind.value, aborted=True)
                    )
        self.logging.info("Full sync finished: %d connector pass(es).", len(reports), color="green")
        return reports

    ##########################################
    ############### MANUAL ###################
    ##########################################

    async def do_reprocess_document(self, tenant: Tenant, document_id: str) -> SyncOutcome:
        """Fetch a stored document from its source again and re-ingest it.

        The item's cursor entry is cleared first, so a version that failed
        persistently gets another chance, and the version diff is bypassed.

        Args:
            tenant (Tenant): Owning tenant.
            document_id (str): ID of the stored document.

        Returns:
            SyncOutcome: INGESTED, DELETED if the item is gone from the source,
                COALESCED if it is already being reconciled, or FAILED.

        Raises:
            BridgeError: SOURCE_ITEM_NOT_FOUND if the document does not exist.
            BridgeError: TENANT_MISMATCH if it belongs to another tenant.
            BridgeError: INVALID_REQUEST if no enabled connector of the tenant mirrors it.
        """
        document = await self._store.get_document(tenant.id, document_id)
        if document is None:
            raise BridgeError(ErrorKind.SOURCE_ITEM_NOT_FOUND, f"Document {document_id} does not exist.")
        connector = self._find_connector(tenant, document)
        if connector is None:
            raise BridgeError(
                ErrorKind.INVALID_REQUEST,
                f"No enabled connector of tenant {tenant.slug} mirrors document {document_id}.",
            )

        key = document.source_native_id
        cursor = self.get_cursor(tenant.id, document.source_kind)
        cursor.last_seen.pop(key, None)
        cursor.failures.pop(key, None)
        cursor.persistent_failures.pop(key, None)

        self.logging.info("Reprocessing document %s (item %s) of tenant %s", document_id, key, tenant.id)
        return await self.do_reconcile_item(tenant, connector, key, trigger="manual", force=True)

    async def do_delete_document(self, tenant: Tenant, document_id: str) -> bool:
        """Delete a stored document and forget its cursor entry.

        The store is a mirror: if the item still exists in the source, the
        next poll ingests it again.

        Returns:
            bool: True if a document was deleted, False if it did not exist.

        Raises:
            BridgeError: TENANT_MISMATCH if the document belongs to another tenant.
        """
        document = await self._store.get_document(tenant.id, document_id)
        if document is None:
            return False
        removed = await self._store.delete(tenant.id, document_id)
        cursor = self.get_cursor(tenant.id, document.source_kind)
        cursor.last_seen.pop(document.source_native_id, None)
        cursor.failures.pop(document.source_native_id, None)
        cursor.persistent_failures.pop(document.source_native_id, None)
        if removed:
            self.logging.info("Deleted document %s (item %s) of tenant %s on request", document_id, document.source_native_id, tenant.id)
        return removed

    def _find_connector(self, tenant: Tenant, document: Document) -> ConnectorConfig | None:
        engine = str(document.metadata.get("source_engine", "")).strip().lower()
        container_id = document.metadata.get("container_id")
        for connector in tenant.settings.connectors:
            if not connector.enabled or connector.source_kind != document.source_kind:
                continue
            if engine and connector.engine.strip().lower() != engine:
                continue
            if container_id is None or connector.container_id == container_id:
                return connector
        return None

    def get_cursor_status(self) -> list[CursorStatus]:
        """Summarise every known cursor, ordered by tenant and source kind."""
        return [
            CursorStatus(
                tenant_id=cursor.tenant_id,
                source_kind=cursor.source_kind,
                tracked_items=len(cursor.last_seen),
                in_flight=sorted(cursor.in_flight),
                persistent_failures=dict(cursor.persistent_failures),
                last_full_pass=cursor.last_full_pass,
            )
            for _, cursor in sorted(self._cursors.items())
        ]

    ##########################################
    ############### WEBHOOKS #################
    ##########################################

    async def do_handle_webhook(self, engine: str, raw_body: bytes, headers: dict[str, str]) -> WebhookResult:
        """Verify, parse and route one webhook delivery.

        Args:
            engine (str): Source engine name from the URL.
            raw_body (bytes): The exact request body; the signature covers it.
            headers (dict[str, str]): Request headers.

        Returns:
            WebhookResult: Success flag, message, optional challenge and per-target outcomes.

        Raises:
            BridgeError: UNKNOWN_ENGINE, INVALID_SIGNATURE or INVALID_REQUEST. A
                rejected delivery changes nothing.
        """
        client = self._source_manager.get_client(engine)
        headers = {k.lower(): v for k, v in headers.items()}

        try:
            self._verifier.verify(
                client.get_engine_name(),
                client.get_webhook_secret(),
                raw_body,
                headers.get(client.get_signature_header()),
                headers.get(client.get_timestamp_header()),
            )
        except BridgeError as e:
            self.logging.warning("Rejected webhook for source '%s': %s", client.get_engine_name(), e.message)
            raise

        try:
            payload = json.loads(raw_body or b"{}")
        except ValueError:
            raise BridgeError(ErrorKind.INVALID_REQUEST, "Webhook body is not valid JSON.")
        if not isinstance(payload, dict):
            raise BridgeError(ErrorKind.INVALID_REQUEST, "Webhook body must be a JSON object.")

        event = client.parse_webhook_event(payload)
        if event.challenge:
            self.logging.info("Received webhook verification challenge from '%s'", client.get_engine_name())
            return WebhookResult(success=True, message="Verification challenge received", challenge=event.challenge)
        if event.action == WebhookAction.IGNORE:
            return WebhookResult(success=True, message=f"Event '{event.type}' acknowledged, nothing to do")

        container_id = event.container_id
        deleted = event.action == WebhookAction.DELETE
        if container_id is None and not deleted:
            try:
                async for attempt in self._helper_retry.attempts():
                    with attempt:
                        container_id = await client.do_fetch_container_id(event.source_native_id)
            except BridgeError as e:
                if e.kind != ErrorKind.SOURCE_ITEM_NOT_FOUND:
                    raise
                deleted = True
            if container_id is None and not deleted:
                return WebhookResult(success=True, message=f"Item {event.source_native_id} is not in a mirrored container, ignored")

        targets = self._get_connector_targets(client, container_id)
        if not targets:
            self.logging.info("Webhook %s for container %s matches no tenant connector, ignored", event.type, container_id)
            return WebhookResult(success=True, message=f"Container {container_id} is not mirrored by any tenant, ignored")

        results = await asyncio.gather(
            *[
                self.do_reconcile_item(tenant, connector, event.source_native_id, trigger="webhook", deleted=deleted)
                for tenant, connector in targets
            ],
            return_exceptions=True,
        )
        outcomes: list[SyncOutcome] = []
        for (tenant, _), result in zip(targets, results):
            if isinstance(result, Exception):
                self.logging.error("Unexpected error handling webhook for tenant %s: %r", tenant.id, result)
                outcomes.append(SyncOutcome.FAILED)
            else:
                outcomes.append(result)

        success = SyncOutcome.FAILED not in outcomes
        message = f"Processed {event.type} for item {event.source_native_id}: " + ", ".join(o.value for o in outcomes)
        return WebhookResult(success=success, message=message, outcomes=outcomes)
