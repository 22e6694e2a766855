"""
Pytest configuration and shared fixtures.

Configures:
- pytest-asyncio for async test support
- in-process fakes for the source, embedding and generation capabilities
- a SQLite document store in a temporary directory
"""
import asyncio
import logging
import re
import zlib

import httpx
import pytest
from fastapi import FastAPI

from server.core.AnswerService import AnswerService
from server.core.DocumentService import DocumentService
from server.core.exception_handlers import register_exception_handlers
from server.routers.DocumentRouter import router as document_router
from server.routers.QueryRouter import router as query_router
from server.routers.SyncRouter import router as sync_router
from server.routers.WebhookRouter import router as webhook_router
from services.ingestion.ChunkingPipeline import ChunkingPipeline
from services.knowledge_sync.SyncScheduler import SyncScheduler
from services.knowledge_sync.SyncService import SyncService
from services.knowledge_sync.WebhookVerifier import WebhookVerifier
from services.retrieval.RetrievalService import RetrievalService
from shared.clients.llm.LLMClientInterface import GenerationResult
from shared.clients.source.SourceClientManager import SourceClientManager
from shared.clients.source.notion.SourceClientNotion import SourceClientNotion
from shared.clients.store.sqlite.DocumentStoreSqlite import DocumentStoreSqlite
from shared.helper.HelperConfig import HelperConfig
from shared.logging.logging_setup import ColorLogger
from shared.models.document import SourceKind
from shared.models.errors import BridgeError, ErrorKind
from shared.models.sync import SourceItem, SourceListing
from shared.models.tenant import ConnectorConfig, Tenant, TenantRegistry, TenantSettings
from shared.tenants.TenantResolver import TenantResolver

pytest_plugins = ["pytest_asyncio"]

TENANT_A_ID = "11111111-1111-4111-8111-111111111111"
TENANT_B_ID = "22222222-2222-4222-8222-222222222222"
CONTAINER_A = "db-a"
CONTAINER_B = "db-b"
EMBED_DIM = 64


##########################################
################ FAKES ###################
##########################################

def hashed_bag_of_words(text: str, dim: int = EMBED_DIM) -> list[float]:
    """Deterministic embedding: word counts hashed into `dim` buckets."""
    vector = [0.0] * dim
    for word in re.findall(r"[a-z0-9]+", text.lower()):
        vector[zlib.crc32(word.encode("utf-8")) % dim] += 1.0
    return vector


class FakeEmbedClient:
    def __init__(self, dim: int = EMBED_DIM):
        self.dim = dim
        self.calls: list[tuple[str, str | None]] = []
        self.fail_times = 0
        self.fail_on_text: str | None = None

    def get_engine_name(self) -> str:
        return "fake"

    async def do_embed(self, texts, model_id=None):
        texts = [texts] if isinstance(texts, str) else texts
        for text in texts:
            self.calls.append((text, model_id))
        if self.fail_times > 0:
            self.fail_times -= 1
            raise BridgeError(ErrorKind.EMBEDDING_UNAVAILABLE, "embedding backend down")
        if self.fail_on_text and any(self.fail_on_text in text for text in texts):
            raise BridgeError(ErrorKind.EMBEDDING_UNAVAILABLE, "embedding backend rejects this text")
        return [hashed_bag_of_words(text, self.dim) for text in texts]


class FakeLLMClient:
    def __init__(self):
        self.calls: list[dict] = []
        self.fail_times = 0

    async def do_generate(self, query, passages, model_id=None):
        self.calls.append({"query": query, "passages": list(passages), "model_id": model_id})
        if self.fail_times > 0:
            self.fail_times -= 1
            raise BridgeError(ErrorKind.GENERATION_UNAVAILABLE, "generation backend down")
        return GenerationResult(text=f"Answer to: {query}", token_count=42)


class FakeNotionSource(SourceClientNotion):
    """Notion client whose network calls are served from memory.

    Payload parsing, ID normalisation and webhook settings stay real.
    """

    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)
        self.items: dict[str, SourceItem] = {}
        self.fetch_calls: list[str] = []
        self.fetch_delay = 0.0
        self.fail_fetch: set[str] = set()
        self.fail_listing = False

    def put(self, native_id: str, content: str, version: str, container_id: str = CONTAINER_A, title: str | None = None) -> SourceItem:
        item = SourceItem(
            source_native_id=native_id,
            title=title or f"Page {native_id}",
            content=content,
            version=version,
            container_id=container_id,
        )
        self.items[self.normalize_id(native_id)] = item
        return item

    def remove(self, native_id: str) -> None:
        self.items.pop(self.normalize_id(native_id), None)

    async def do_fetch_source_item(self, native_id: str) -> SourceItem:
        key = self.normalize_id(native_id)
        self.fetch_calls.append(key)
        if self.fetch_delay:
            await asyncio.sleep(self.fetch_delay)
        if key in self.fail_fetch:
            raise BridgeError(ErrorKind.SOURCE_UNAVAILABLE, "notion is down")
        item = self.items.get(key)
        if item is None:
            raise BridgeError(ErrorKind.SOURCE_ITEM_NOT_FOUND, f"Item {native_id} not found")
        return item

    async def do_fetch_container_id(self, native_id: str) -> str | None:
        item = self.items.get(self.normalize_id(native_id))
        if item is None:
            raise BridgeError(ErrorKind.SOURCE_ITEM_NOT_FOUND, f"Item {native_id} not found")
        return item.container_id

    async def do_list_source_items(self, container_id: str) -> list[SourceListing]:
        if self.fail_listing:
            raise BridgeError(ErrorKind.SOURCE_UNAVAILABLE, "notion is down")
        return [
            SourceListing(source_native_id=item.source_native_id, version=item.version)
            for item in self.items.values()
            if self.is_same_container(item.container_id, container_id)
        ]


##########################################
############### FIXTURES #################
##########################################

@pytest.fixture
def logger():
    return ColorLogger(logging.getLogger("knowledge_bridge.tests"))


@pytest.fixture
def helper_config(monkeypatch, tmp_path, logger):
    """HelperConfig over a clean, fast test environment."""
    monkeypatch.setenv("RETRY_MAX_ATTEMPTS", "2")
    monkeypatch.setenv("RETRY_BACKOFF_MULTIPLIER", "0")
    monkeypatch.setenv("RETRY_BACKOFF_MAX_SECONDS", "0")
    monkeypatch.setenv("STORE_SQLITE_PATH", str(tmp_path / "knowledge.sqlite3"))
    monkeypatch.setenv("API_SERVER_API_KEY", "test-api-key")
    monkeypatch.delenv("SOURCE_NOTION_WEBHOOK_SECRET", raising=False)
    monkeypatch.delenv("SOURCE_NOTION_API_KEY", raising=False)
    monkeypatch.delenv("TENANT_DEMO_MODE", raising=False)
    monkeypatch.delenv("SOURCE_ENGINES", raising=False)
    for key in ("CHUNK_MAX_TOKENS", "CHUNK_OVERLAP_TOKENS", "CHUNK_MIN_TOKENS", "SYNC_ITEM_TIMEOUT_SECONDS", "SYNC_MAX_ITEM_FAILURES"):
        monkeypatch.delenv(key, raising=False)
    return HelperConfig(logger=logger)


@pytest.fixture
def tenant_a() -> Tenant:
    return Tenant(
        id=TENANT_A_ID,
        slug="acme",
        aliases=["acme-inc", "ACME Corp"],
        settings=TenantSettings(
            embedding_model="fake-embed",
            chat_model="fake-chat",
            retrieval_limit=3,
            retrieval_threshold=0.1,
            connectors=[ConnectorConfig(engine="notion", source_kind=SourceKind.MEETING_NOTES, container_id=CONTAINER_A)],
        ),
    )


@pytest.fixture
def tenant_b() -> Tenant:
    return Tenant(
        id=TENANT_B_ID,
        slug="globex",
        settings=TenantSettings(
            embedding_model="fake-embed",
            chat_model="fake-chat",
            connectors=[ConnectorConfig(engine="notion", source_kind=SourceKind.CLIENT_PAGE, container_id=CONTAINER_B)],
        ),
    )


@pytest.fixture
def registry(tenant_a, tenant_b) -> TenantRegistry:
    return TenantRegistry(version=3, default_tenant_id=TENANT_A_ID, tenants=[tenant_a, tenant_b])


@pytest.fixture
def tenant_resolver(helper_config, registry) -> TenantResolver:
    return TenantResolver(helper_config=helper_config, registry=registry)


@pytest.fixture
async def store(helper_config):
    store = DocumentStoreSqlite(helper_config=helper_config)
    await store.boot()
    yield store
    await store.close()


@pytest.fixture
def embed_client() -> FakeEmbedClient:
    return FakeEmbedClient()


@pytest.fixture
def llm_client() -> FakeLLMClient:
    return FakeLLMClient()


@pytest.fixture
def source(helper_config) -> FakeNotionSource:
    return FakeNotionSource(helper_config=helper_config)


@pytest.fixture
def source_manager(helper_config, source) -> SourceClientManager:
    manager = SourceClientManager(helper_config=helper_config)
    manager.clients = {"notion": source}
    return manager


@pytest.fixture
def pipeline(helper_config, embed_client) -> ChunkingPipeline:
    return ChunkingPipeline(helper_config=helper_config, embed_client=embed_client)


@pytest.fixture
def sync_service(helper_config, tenant_resolver, store, pipeline, source_manager) -> SyncService:
    return SyncService(
        helper_config=helper_config,
        tenant_resolver=tenant_resolver,
        store=store,
        pipeline=pipeline,
        source_manager=source_manager,
        verifier=WebhookVerifier(helper_config),
    )


@pytest.fixture
def retrieval_service(helper_config, store, embed_client) -> RetrievalService:
    return RetrievalService(helper_config=helper_config, store=store, embed_client=embed_client)


@pytest.fixture
def answer_service(helper_config, tenant_resolver, retrieval_service, llm_client) -> AnswerService:
    return AnswerService(
        helper_config=helper_config,
        tenant_resolver=tenant_resolver,
        retrieval_service=retrieval_service,
        llm_client=llm_client,
    )


@pytest.fixture
def sync_scheduler(helper_config, sync_service, tenant_resolver) -> SyncScheduler:
    return SyncScheduler(helper_config, sync_service, tenant_resolver)


##########################################
################ API #####################
##########################################

@pytest.fixture
def app(helper_config, tenant_resolver, store, sync_service, answer_service, sync_scheduler) -> FastAPI:
    """The API routers wired to the test services, without the production lifespan."""
    app = FastAPI()
    register_exception_handlers(app)
    app.include_router(webhook_router)
    app.include_router(query_router)
    app.include_router(sync_router)
    app.include_router(document_router)
    app.state.helper_config = helper_config
    app.state.logging = helper_config.get_logger()
    app.state.sync_service = sync_service
    app.state.answer_service = answer_service
    app.state.sync_scheduler = sync_scheduler
    app.state.document_service = DocumentService(
        helper_config=helper_config,
        tenant_resolver=tenant_resolver,
        store=store,
        sync_service=sync_service,
    )
    return app


@pytest.fixture
async def api_client(app):
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as client:
        yield client
