from abc import abstractmethod

from shared.clients.ClientInterface import BaseClientInterface
from shared.helper.HelperConfig import HelperConfig
from shared.models.document import Chunk, Document, SearchCandidate, SourceKind, make_document_id
from shared.models.errors import BridgeError, ErrorKind


class DocumentStoreInterface(BaseClientInterface):
    """Durable, tenant-scoped persistence for documents and their chunks.

    Every operation takes the requesting tenant ID as its first argument and
    fails with TENANT_MISMATCH if a document or chunk it touches belongs to a
    different tenant. Chunk sets are only ever replaced as a whole.
    """

    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)

    ##########################################
    ############### CHECKER ##################
    ##########################################

    def _assert_document_tenant(self, tenant_id: str, document: Document) -> None:
        if document.tenant_id != tenant_id:
            raise BridgeError(
                ErrorKind.TENANT_MISMATCH,
                f"Document {document.id} belongs to another tenant.",
                {"requesting_tenant": tenant_id, "document_id": document.id},
            )
        expected_id = make_document_id(tenant_id, document.source_kind, document.source_native_id)
        if document.id != expected_id:
            raise BridgeError(
                ErrorKind.INVALID_REQUEST,
                f"Document ID {document.id} does not match its source key, expected {expected_id}.",
                {"document_id": document.id, "expected_id": expected_id},
            )

    def _assert_chunks_tenant(self, tenant_id: str, document_id: str, chunks: list[Chunk]) -> None:
        for chunk in chunks:
            if chunk.tenant_id != tenant_id or chunk.document_id != document_id:
                raise BridgeError(
                    ErrorKind.TENANT_MISMATCH,
                    f"Chunk {chunk.id} does not belong to document {document_id} of the requesting tenant.",
                    {"requesting_tenant": tenant_id, "document_id": document_id, "chunk_id": chunk.id},
                )

    def _assert_contiguous_ordinals(self, chunks: list[Chunk]) -> None:
        ordinals = sorted(chunk.ordinal for chunk in chunks)
        if ordinals != list(range(len(chunks))):
            raise BridgeError(ErrorKind.INVALID_REQUEST, f"Chunk ordinals must be contiguous from 0, got {ordinals}.")

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_client_type(self) -> str:
        return "store"

    ##########################################
    ################ WRITES ##################
    ##########################################

    @abstractmethod
    async def upsert(self, tenant_id: str, document: Document) -> None:
        """Insert or fully replace a document keyed by (tenant, source kind, source-native ID).

        Concurrent upserts of the same key serialize; the last committed write wins.

        Raises:
            BridgeError: TENANT_MISMATCH if the document belongs to another tenant.
        """
        pass

    @abstractmethod
    async def replace_chunks(self, tenant_id: str, document_id: str, chunks: list[Chunk]) -> None:
        """Atomically swap the complete chunk set of a document.

        Readers observe either the old or the new full set, never a mix or an
        empty intermediate state.

        Raises:
            BridgeError: TENANT_MISMATCH if the document or a chunk belongs to another tenant.
            BridgeError: SOURCE_ITEM_NOT_FOUND if the document does not exist.
        """
        pass

    @abstractmethod
    async def commit_document(self, tenant_id: str, document: Document, chunks: list[Chunk]) -> None:
        """Upsert a document and replace its chunks in a single transaction."""
        pass

    @abstractmethod
    async def delete(self, tenant_id: str, document_id: str) -> bool:
        """Delete a document and, first, all of its chunks.

        Returns:
            bool: True if a document was deleted, False if it did not exist.

        Raises:
            BridgeError: TENANT_MISMATCH if the document belongs to another tenant.
        """
        pass

    ##########################################
    ################# READS ##################
    ##########################################

    @abstractmethod
    async def get_by_source(self, tenant_id: str, source_kind: SourceKind) -> list[Document]:
        pass

    @abstractmethod
    async def get_all(self, tenant_id: str) -> list[Document]:
        pass

    @abstractmethod
    async def get_by_source_native_id(self, tenant_id: str, source_kind: SourceKind, source_native_id: str) -> Document | None:
        pass

    @abstractmethod
    async def get_document(self, tenant_id: str, document_id: str) -> Document | None:
        """Return one document by ID, or None if it does not exist.

        Raises:
            BridgeError: TENANT_MISMATCH if the document belongs to another tenant.
        """
        pass

    @abstractmethod
    async def get_chunks(self, tenant_id: str, document_id: str) -> list[Chunk]:
        """Return a document's chunks ordered by ordinal.

        Raises:
            BridgeError: TENANT_MISMATCH if the document belongs to another tenant.
        """
        pass

    @abstractmethod
    async def get_search_candidates(self, tenant_id: str) -> list[SearchCandidate]:
        """Return every chunk of the tenant joined with its parent document fields."""
        pass

    @abstractmethod
    async def do_healthcheck(self) -> bool:
        pass
