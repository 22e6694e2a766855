"""Pydantic models exchanged between source clients and the sync orchestrator."""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel


class SourceItem(BaseModel):
    """Current state of one item as fetched from the source system.

    Attributes:
        source_native_id: ID of the item in the origin system.
        title:            Human-readable title.
        content:          Full plain-text content.
        version:          Opaque version marker (e.g. last-edited timestamp).
        container_id:     ID of the container the item lives in, if known.
        properties:       Flattened origin properties, stored as document metadata.
    """

    source_native_id: str
    title: str
    content: str
    version: str
    container_id: str | None = None
    properties: dict[str, Any] = {}


class SourceListing(BaseModel):
    source_native_id: str
    version: str


class WebhookAction(str, Enum):
    UPSERT = "upsert"
    DELETE = "delete"
    IGNORE = "ignore"


class WebhookEvent(BaseModel):
    """Source-agnostic view of an inbound webhook delivery.

    Attributes:
        type:             Raw event type as sent by the source.
        action:           What the orchestrator should do with the item.
        source_native_id: Affected item, if the event references one.
        container_id:     Parent container of the item, if the payload carries it.
        challenge:        Verification token to echo back, if this is a handshake.
    """

    type: str
    action: WebhookAction
    source_native_id: str | None = None
    container_id: str | None = None
    challenge: str | None = None


class SyncOutcome(str, Enum):
    INGESTED = "ingested"
    UNCHANGED = "unchanged"
    COALESCED = "coalesced"
    DELETED = "deleted"
    FAILED = "failed"
    SKIPPED = "skipped"


class SyncReport(BaseModel):
    """Counts of per-item outcomes for one connector pass."""

    tenant_id: str
    source_kind: str
    listed: int = 0
    ingested: int = 0
    unchanged: int = 0
    coalesced: int = 0
    failed: int = 0
    skipped: int = 0
    deleted: int = 0
    aborted: bool = False

    def record(self, outcome: SyncOutcome) -> None:
        field = outcome.value
        setattr(self, field, getattr(self, field) + 1)


class WebhookResult(BaseModel):
    success: bool
    message: str
    challenge: str | None = None
    outcomes: list[SyncOutcome] = []


class SyncCursor(BaseModel):
    """Per-tenant, per-source reconciliation state.

    Ephemeral: if lost it is rebuilt from Document.source_version, costing
    at most redundant work.

    Attributes:
        last_seen:           source_native_id -> last successfully ingested version.
        in_flight:           IDs currently being reconciled; duplicates are coalesced.
        failures:            source_native_id -> consecutive failed attempts.
        persistent_failures: source_native_id -> version that exhausted its retries.
        last_full_pass:      Completion time of the last full listing pass.
    """

    tenant_id: str
    source_kind: str
    last_seen: dict[str, str] = {}
    in_flight: set[str] = set()
    failures: dict[str, int] = {}
    persistent_failures: dict[str, str] = {}
    last_full_pass: datetime | None = None


class CursorStatus(BaseModel):
    """Read-only summary of one SyncCursor, safe to expose over the API."""

    tenant_id: str
    source_kind: str
    tracked_items: int = 0
    in_flight: list[str] = []
    persistent_failures: dict[str, str] = {}
    last_full_pass: datetime | None = None


class ConnectorPollStatus(BaseModel):
    tenant_id: str
    engine: str
    source_kind: str
    container_id: str
    enabled: bool
    poll_interval_seconds: int
    last_polled_at: datetime | None = None


class SyncStatus(BaseModel):
    """Scheduler state plus per-connector and per-cursor sync state.

    Attributes:
        scheduler_running:   The background polling loop is active.
        manual_sync_running: A manually triggered full sync is in progress.
        tick_seconds:        How often the scheduler checks for due connectors.
        connectors:          Every configured connector with its last scheduled or manual poll.
        cursors:             Reconciliation state per (tenant, source kind).
    """

    scheduler_running: bool
    manual_sync_running: bool
    tick_seconds: float
    connectors: list[ConnectorPollStatus] = []
    cursors: list[CursorStatus] = []
