"""Pydantic models for tenants and their connector configuration."""

from pydantic import BaseModel, Field

from shared.models.document import SourceKind


class ConnectorConfig(BaseModel):
    """One mirrored source container (e.g. a Notion database) of a tenant.

    Attributes:
        engine:                Source client engine name (e.g. "notion").
        source_kind:           Kind assigned to documents ingested from this container.
        container_id:          ID of the container in the source system.
        poll_interval_seconds: Minimum time between two scheduled polls.
        enabled:               Disabled connectors are neither polled nor routed to.
    """

    engine: str
    source_kind: SourceKind
    container_id: str
    poll_interval_seconds: int = 3600
    enabled: bool = True


class TenantSettings(BaseModel):
    """Per-tenant model choices and retrieval tuning.

    Chunks and queries of one tenant must share a single embedding model;
    changing embedding_model requires a full re-ingestion.
    """

    embedding_model: str = "nomic-embed-text"
    chat_model: str = "llama3.1"
    retrieval_limit: int = 5
    retrieval_threshold: float = 0.3
    connectors: list[ConnectorConfig] = []


class Tenant(BaseModel):
    id: str
    slug: str
    aliases: list[str] = []
    settings: TenantSettings = Field(default_factory=TenantSettings)


class TenantRegistry(BaseModel):
    """Versioned tenant configuration passed to the resolver and services.

    Attributes:
        version:           Monotonic configuration version, logged on load.
        default_tenant_id: Fallback tenant used only in demo mode.
        tenants:           All provisioned tenants.
    """

    version: int = 1
    default_tenant_id: str | None = None
    tenants: list[Tenant] = []
