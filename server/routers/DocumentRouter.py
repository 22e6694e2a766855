from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse

from server.core.DocumentService import DocumentDetail
from server.dependencies.auth import verify_api_key
from server.models.responses import DocumentDeleteResponse, DocumentListResponse, DocumentReprocessResponse
from shared.models.document import SourceKind
from shared.models.sync import SyncOutcome

router = APIRouter(prefix="/documents", tags=["documents"])


@router.get("")
async def list_documents(
    request: Request,
    tenant: str = Query(min_length=1),
    source_kind: SourceKind | None = None,
    _: None = Depends(verify_api_key),
) -> DocumentListResponse:
    """List a tenant's stored documents.

    Args:
        request (Request): FastAPI request (provides app.state.document_service).
        tenant (str): Tenant ID, slug or alias.
        source_kind (SourceKind | None): Optional filter, e.g. "meeting-notes".
        _ (None): Auth dependency result (unused).

    Returns:
        DocumentListResponse: Document summaries, oldest first.
    """
    document_service = request.app.state.document_service
    documents = await document_service.list_documents(tenant, source_kind)
    return DocumentListResponse(tenant=tenant, documents=documents)


@router.get("/{document_id}")
async def get_document(
    request: Request,
    document_id: str,
    tenant: str = Query(min_length=1),
    _: None = Depends(verify_api_key),
) -> DocumentDetail:
    """Return one document with its chunk count and a content preview."""
    document_service = request.app.state.document_service
    return await document_service.get_document(tenant, document_id)


@router.delete("/{document_id}")
async def delete_document(
    request: Request,
    document_id: str,
    tenant: str = Query(min_length=1),
    _: None = Depends(verify_api_key),
) -> DocumentDeleteResponse:
    """Delete a document and its chunks. The next poll restores it if it still exists in the source."""
    document_service = request.app.state.document_service
    await document_service.delete_document(tenant, document_id)
    return DocumentDeleteResponse(success=True, message=f"Document {document_id} deleted")


@router.post("/{document_id}/reprocess")
async def reprocess_document(
    request: Request,
    document_id: str,
    tenant: str = Query(min_length=1),
    _: None = Depends(verify_api_key),
) -> JSONResponse:
    """Fetch a document from its source again and re-ingest it.

    Processing is synchronous so the response reports the outcome; a failed
    reconciliation answers 500.

    Args:
        request (Request): FastAPI request (provides app.state.document_service).
        document_id (str): ID of the stored document.
        tenant (str): Tenant ID, slug or alias.
        _ (None): Auth dependency result (unused).

    Returns:
        JSONResponse: DocumentReprocessResponse payload.
    """
    document_service = request.app.state.document_service
    outcome = await document_service.reprocess_document(tenant, document_id)
    success = outcome != SyncOutcome.FAILED
    message = f"Document {document_id} reprocessed: {outcome.value}" if success else f"Reprocessing document {document_id} failed"
    body = DocumentReprocessResponse(success=success, outcome=outcome, message=message)
    return JSONResponse(status_code=200 if success else 500, content=body.model_dump(mode="json"))
