from pydantic import BaseModel

from services.retrieval.RetrievalService import RetrievalService
from shared.clients.llm.LLMClientInterface import LLMClientInterface
from shared.helper.HelperConfig import HelperConfig
from shared.helper.HelperRetry import HelperRetry
from shared.logging.logging_setup import tenant_log_context
from shared.models.document import SourceKind
from shared.models.tenant import Tenant
from shared.tenants.TenantResolver import TenantResolver

SOURCE_EXCERPT_CHARS = 500


class AnswerSource(BaseModel):
    document_id: str
    chunk_id: str
    title: str
    source_kind: SourceKind
    score: float
    excerpt: str


class AnswerResult(BaseModel):
    """A generated answer with the passages it was grounded in.

    Attributes:
        text:        The generated answer.
        sources:     Passages passed to the generator, best first.
        token_count: Tokens consumed by generation as reported by the backend.
        grounded:    False if no passage reached the tenant's threshold.
    """

    text: str
    sources: list[AnswerSource] = []
    token_count: int = 0
    grounded: bool = False


class AnswerService:
    """Handles question answering: resolve tenant -> retrieve -> generate."""

    def __init__(
        self,
        helper_config: HelperConfig,
        tenant_resolver: TenantResolver,
        retrieval_service: RetrievalService,
        llm_client: LLMClientInterface,
        helper_retry: HelperRetry | None = None,
    ) -> None:
        self.logging = helper_config.get_logger()
        self._tenant_resolver = tenant_resolver
        self._retrieval_service = retrieval_service
        self._llm_client = llm_client
        self._helper_retry = helper_retry or HelperRetry(helper_config)

    ##########################################
    ############### CORE #####################
    ##########################################

    async def answer(self, tenant_identifier: str, query: str) -> AnswerResult:
        """Answer a question from one tenant's knowledge base.

        Args:
            tenant_identifier (str): Canonical tenant ID, slug or alias.
            query (str): The user's question.

        Returns:
            AnswerResult: The answer; ungrounded with no sources if nothing matched.

        Raises:
            BridgeError: TENANT_NOT_FOUND for unknown tenants.
            BridgeError: EMBEDDING_UNAVAILABLE or GENERATION_UNAVAILABLE after retries.
        """
        tenant = self._tenant_resolver.resolve_tenant(tenant_identifier)
        with tenant_log_context(tenant.id):
            return await self._answer(tenant, query)

    async def _answer(self, tenant: Tenant, query: str) -> AnswerResult:
        # snapshot settings for the whole request
        settings = tenant.settings.model_copy()

        passages = await self._retrieval_service.search(
            tenant_id=tenant.id,
            query=query,
            limit=settings.retrieval_limit,
            threshold=settings.retrieval_threshold,
            embedding_model=settings.embedding_model,
        )
        if not passages:
            self.logging.warning("No relevant context found for tenant %s, query: '%s'", tenant.id, query[:100])

        async for attempt in self._helper_retry.attempts():
            with attempt:
                generation = await self._llm_client.do_generate(query, passages, model_id=settings.chat_model)

        self.logging.info(
            "Answer generated for tenant %s: %d source(s), %d token(s), grounded=%s",
            tenant.id,
            len(passages),
            generation.token_count,
            bool(passages),
        )
        return AnswerResult(
            text=generation.text,
            sources=[
                AnswerSource(
                    document_id=passage.document_id,
                    chunk_id=passage.chunk_id,
                    title=passage.title,
                    source_kind=passage.source_kind,
                    score=passage.score,
                    excerpt=passage.content[:SOURCE_EXCERPT_CHARS],
                )
                for passage in passages
            ],
            token_count=generation.token_count,
            grounded=bool(passages),
        )
