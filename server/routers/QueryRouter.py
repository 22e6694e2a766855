from fastapi import APIRouter, Depends, Request

from server.dependencies.auth import verify_api_key
from server.models.requests import QueryRequest
from server.models.responses import QueryResponse

router = APIRouter(prefix="/query", tags=["query"])


@router.post("")
async def query_knowledge(
    request: Request,
    body: QueryRequest,
    _: None = Depends(verify_api_key),
) -> QueryResponse:
    """Answer a question from a tenant's knowledge base.

    Args:
        request (Request): FastAPI request (provides app.state.answer_service).
        body (QueryRequest): JSON body with the question and the tenant identifier.
        _ (None): Auth dependency result (unused).

    Returns:
        QueryResponse: The answer, its sources, token usage and whether it is grounded.
    """
    answer_service = request.app.state.answer_service
    result = await answer_service.answer(body.tenant, body.query)
    return QueryResponse(
        answer=result.text,
        sources=result.sources,
        token_count=result.token_count,
        grounded=result.grounded,
    )
