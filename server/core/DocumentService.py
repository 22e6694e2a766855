from pydantic import BaseModel

from services.knowledge_sync.SyncService import SyncService
from shared.clients.store.DocumentStoreInterface import DocumentStoreInterface
from shared.helper.HelperConfig import HelperConfig
from shared.models.document import Document, SourceKind
from shared.models.errors import BridgeError, ErrorKind
from shared.models.sync import SyncOutcome
from shared.tenants.TenantResolver import TenantResolver

CONTENT_PREVIEW_CHARS = 500


class DocumentSummary(BaseModel):
    id: str
    title: str
    source_kind: SourceKind
    source_native_id: str
    source_version: str | None = None
    created_at: str
    updated_at: str


class DocumentDetail(DocumentSummary):
    """A stored document with its chunk count and a content preview.

    Attributes:
        chunk_count:     Number of chunks currently stored for the document.
        content_preview: First characters of the stored content.
        metadata:        Source properties and sync bookkeeping.
    """

    chunk_count: int
    content_preview: str
    metadata: dict = {}


class DocumentService:
    """Per-tenant inspection and maintenance of stored documents."""

    def __init__(
        self,
        helper_config: HelperConfig,
        tenant_resolver: TenantResolver,
        store: DocumentStoreInterface,
        sync_service: SyncService,
    ) -> None:
        self.logging = helper_config.get_logger()
        self._tenant_resolver = tenant_resolver
        self._store = store
        self._sync_service = sync_service

    ##########################################
    ################ GETTER ##################
    ##########################################

    async def list_documents(self, tenant_identifier: str, source_kind: SourceKind | None = None) -> list[DocumentSummary]:
        """List a tenant's documents, oldest first.

        Args:
            tenant_identifier (str): Canonical tenant ID, slug or alias.
            source_kind (SourceKind | None): Only documents of this kind if given.

        Returns:
            list[DocumentSummary]: Documents without content or chunks.
        """
        tenant = self._tenant_resolver.resolve_tenant(tenant_identifier)
        if source_kind is None:
            documents = await self._store.get_all(tenant.id)
        else:
            documents = await self._store.get_by_source(tenant.id, source_kind)
        return [self._to_summary(document) for document in documents]

    async def get_document(self, tenant_identifier: str, document_id: str) -> DocumentDetail:
        """Return one document with its chunk count.

        Raises:
            BridgeError: SOURCE_ITEM_NOT_FOUND if the document does not exist.
            BridgeError: TENANT_MISMATCH if it belongs to another tenant.
        """
        tenant = self._tenant_resolver.resolve_tenant(tenant_identifier)
        document = await self._store.get_document(tenant.id, document_id)
        if document is None:
            raise BridgeError(ErrorKind.SOURCE_ITEM_NOT_FOUND, f"Document {document_id} does not exist.")
        chunks = await self._store.get_chunks(tenant.id, document_id)
        return DocumentDetail(
            **self._to_summary(document).model_dump(),
            chunk_count=len(chunks),
            content_preview=document.content[:CONTENT_PREVIEW_CHARS],
            metadata=document.metadata,
        )

    def _to_summary(self, document: Document) -> DocumentSummary:
        return DocumentSummary(
            id=document.id,
            title=document.title,
            source_kind=document.source_kind,
            source_native_id=document.source_native_id,
            source_version=document.source_version,
            created_at=document.created_at.isoformat(),
            updated_at=document.updated_at.isoformat(),
        )

    ##########################################
    ############### CHANGES ##################
    ##########################################

    async def delete_document(self, tenant_identifier: str, document_id: str) -> None:
        """Delete one document and its chunks.

        Raises:
            BridgeError: SOURCE_ITEM_NOT_FOUND if the document does not exist.
            BridgeError: TENANT_MISMATCH if it belongs to another tenant.
        """
        tenant = self._tenant_resolver.resolve_tenant(tenant_identifier)
        if not await self._sync_service.do_delete_document(tenant, document_id):
            raise BridgeError(ErrorKind.SOURCE_ITEM_NOT_FOUND, f"Document {document_id} does not exist.")

    async def reprocess_document(self, tenant_identifier: str, document_id: str) -> SyncOutcome:
        """Fetch a document from its source again and re-ingest it, regardless of version."""
        tenant = self._tenant_resolver.resolve_tenant(tenant_identifier)
        return await self._sync_service.do_reprocess_document(tenant, document_id)
