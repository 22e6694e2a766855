"""Pydantic models for ingested knowledge.

Hierarchy:
  Document: one ingested source item, owned by exactly one tenant.
  Chunk: a retrievable fragment of a Document, with its embedding.
  SearchCandidate: a stored chunk joined with the parent document fields
    the retrieval engine needs for ranking and citations.
  RankedChunk: a scored retrieval result.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class SourceKind(str, Enum):
    MEETING_NOTES = "meeting-notes"
    CLIENT_PAGE = "client-page"
    WEBSITE_OUTLINE = "website-outline"
    CHAT_EXPORT = "chat-export"
    MANUAL_UPLOAD = "manual-upload"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def make_document_id(tenant_id: str, source_kind: SourceKind, source_native_id: str) -> str:
    """Build a deterministic UUID5 document ID.

    The same source item always maps to the same document ID, so re-syncing
    overwrites rather than duplicates.

    Args:
        tenant_id (str): Canonical tenant ID.
        source_kind (SourceKind): Kind of the originating source.
        source_native_id (str): ID of the item in the origin system.

    Returns:
        str: UUID string.
    """
    return str(uuid.uuid5(uuid.NAMESPACE_OID, f"{tenant_id}:{source_kind.value}:{source_native_id}"))


def make_chunk_id(document_id: str, ordinal: int) -> str:
    return str(uuid.uuid5(uuid.NAMESPACE_OID, f"{document_id}:{ordinal}"))


class Document(BaseModel):
    """A unit of ingested content from one external source item.

    (tenant_id, source_kind, source_native_id) is unique within the store.
    source_version records the origin version that produced the stored
    content; it lets a lost sync cursor be rebuilt without re-ingesting.
    """

    id: str
    tenant_id: str
    title: str
    content: str
    source_kind: SourceKind
    source_native_id: str
    source_version: str | None = None
    metadata: dict[str, Any] = {}
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Chunk(BaseModel):
    """A retrievable fragment of one document's content.

    tenant_id is denormalised from the parent document so every chunk query
    can be filtered by tenant without a join.
    """

    id: str
    document_id: str
    tenant_id: str
    ordinal: int
    content: str
    embedding: list[float]
    token_count: int
    metadata: dict[str, Any] = {}


class SearchCandidate(BaseModel):
    chunk: Chunk
    document_title: str
    source_kind: SourceKind
    document_updated_at: datetime


class RankedChunk(BaseModel):
    """A single retrieval hit with enough context to cite its source."""

    chunk_id: str
    document_id: str
    ordinal: int
    content: str
    score: float
    title: str
    source_kind: SourceKind
    document_updated_at: datetime
