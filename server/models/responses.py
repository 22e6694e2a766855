from pydantic import BaseModel

from server.core.AnswerService import AnswerSource
from server.core.DocumentService import DocumentSummary
from shared.models.sync import SyncOutcome


class QueryResponse(BaseModel):
    answer: str
    sources: list[AnswerSource]
    token_count: int
    grounded: bool


class WebhookResponse(BaseModel):
    success: bool
    message: str
    challenge: str | None = None
    outcomes: list[SyncOutcome] = []


class WebhookHealthResponse(BaseModel):
    status: str
    engine: str
    has_webhook_secret: bool
    has_api_key: bool
    mirrored_connectors: int
    store_engine: str


class SyncTriggerResponse(BaseModel):
    status: str
    message: str


class DocumentListResponse(BaseModel):
    tenant: str
    documents: list[DocumentSummary]


class DocumentDeleteResponse(BaseModel):
    success: bool
    message: str


class DocumentReprocessResponse(BaseModel):
    success: bool
    outcome: SyncOutcome
    message: str
