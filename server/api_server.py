"""FastAPI application entry point for the tenant knowledge bridge."""

import os
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from shared.logging.logging_setup import setup_logging
from shared.helper.HelperConfig import HelperConfig
from shared.helper.HelperRetry import HelperRetry
from shared.clients.ClientInterface import ClientInterface
from shared.clients.source.SourceClientManager import SourceClientManager
from shared.clients.embed.EmbedClientManager import EmbedClientManager
from shared.clients.llm.LLMClientManager import LLMClientManager
from shared.clients.store.DocumentStoreInterface import DocumentStoreInterface
from shared.clients.store.DocumentStoreManager import DocumentStoreManager
from shared.models.errors import BridgeError
from shared.tenants.TenantResolver import TenantResolver, load_tenant_registry
from services.ingestion.ChunkingPipeline import ChunkingPipeline
from services.retrieval.RetrievalService import RetrievalService
from services.knowledge_sync.SyncService import SyncService
from services.knowledge_sync.SyncScheduler import SyncScheduler
from services.knowledge_sync.WebhookVerifier import WebhookVerifier
from server.core.AnswerService import AnswerService
from server.core.DocumentService import DocumentService
from server.core.exception_handlers import register_exception_handlers
from server.routers.WebhookRouter import router as webhook_router
from server.routers.QueryRouter import router as query_router
from server.routers.SyncRouter import router as sync_router
from server.routers.DocumentRouter import router as document_router

logging = setup_logging()
app_version = os.getenv("APP_VERSION", "unknown")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # when the app starts
    app.state.logging = logging
    helper_config = HelperConfig(logger=logging)
    app.state.helper_config = helper_config

    registry = load_tenant_registry(helper_config.get_string_val("TENANTS_CONFIG_PATH", default="config/tenants.json"))
    tenant_resolver = TenantResolver(helper_config=helper_config, registry=registry)

    source_clients = SourceClientManager(helper_config=helper_config)
    embed_manager = EmbedClientManager(helper_config=helper_config)
    llm_manager = LLMClientManager(helper_config=helper_config)
    embed_client = embed_manager.get_client()
    llm_client = llm_manager.get_client()
    store = DocumentStoreManager(helper_config=helper_config).get_client()
    http_clients: list[ClientInterface] = [*source_clients.get_clients(), embed_client, llm_client]

    logging.info("Booting all clients...")
    await store.boot()
    for client in http_clients:
        await client.boot()
    logging.info("All clients booted successfully.")

    await check_connections(store, http_clients)
    await embed_manager.do_check_models(tenant_resolver.get_embedding_models())
    await llm_manager.do_check_models(tenant_resolver.get_chat_models())

    helper_retry = HelperRetry(helper_config)
    pipeline = ChunkingPipeline(helper_config=helper_config, embed_client=embed_client, helper_retry=helper_retry)
    retrieval_service = RetrievalService(
        helper_config=helper_config,
        store=store,
        embed_client=embed_client,
        helper_retry=helper_retry,
    )
    app.state.tenant_resolver = tenant_resolver
    app.state.store = store
    app.state.sync_service = SyncService(
        helper_config=helper_config,
        tenant_resolver=tenant_resolver,
        store=store,
        pipeline=pipeline,
        source_manager=source_clients,
        verifier=WebhookVerifier(helper_config),
        helper_retry=helper_retry,
    )
    app.state.answer_service = AnswerService(
        helper_config=helper_config,
        tenant_resolver=tenant_resolver,
        retrieval_service=retrieval_service,
        llm_client=llm_client,
        helper_retry=helper_retry,
    )
    app.state.document_service = DocumentService(
        helper_config=helper_config,
        tenant_resolver=tenant_resolver,
        store=store,
        sync_service=app.state.sync_service,
    )
    app.state.sync_scheduler = SyncScheduler(
        helper_config=helper_config,
        sync_service=app.state.sync_service,
        tenant_resolver=tenant_resolver,
    )
    if helper_config.get_bool_val("SYNC_SCHEDULER_ENABLED", default=True):
        app.state.sync_scheduler.start()

    # while the app is running...
    yield

    # when the app shuts down, stop the scheduler and close all client connections
    logging.info("Shutting down, closing all clients...")
    await app.state.sync_scheduler.stop()
    for client in http_clients:
        await client.close()
    await store.close()
    logging.info("All clients closed.")


app = FastAPI(
    title="tenant_knowledge_bridge",
    description=(
        "Multi-tenant knowledge backend. Source systems (e.g. Notion) are mirrored into a "
        "tenant-scoped document store via signed webhooks and scheduled polls. "
        "Questions are answered via POST /query, grounded in the tenant's own documents."
    ),
    version=app_version,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)
app.include_router(webhook_router)
app.include_router(query_router)
app.include_router(sync_router)
app.include_router(document_router)


@app.get("/healthz", tags=["health"])
async def healthz() -> dict:
    return {"status": "ok", "version": app_version}


async def check_connections(store: DocumentStoreInterface, http_clients: list[ClientInterface]) -> None:
    """Check connectivity to all configured backends on startup.

    Source, embedding and generation failures are non-fatal: the server stays
    up and the affected operations fail with their unavailable error until the
    backend recovers. The document store is fatal.

    Raises:
        Exception: If the document store is not usable.
    """
    if not await store.do_healthcheck():
        raise Exception(f"Document store '{store.get_engine_name()}' is not usable. Cannot start.")

    for client in http_clients:
        try:
            result: httpx.Response = await client.do_healthcheck()
        except BridgeError as e:
            logging.warning("%s client '%s' is not reachable: %s", client.get_client_type(), client.get_engine_name(), e.message)
            continue
        if not result.is_success:
            logging.warning(
                "%s client '%s' is not reachable (status %d).",
                client.get_client_type(),
                client.get_engine_name(),
                result.status_code,
            )


if __name__ == "__main__":
    import uvicorn

    logging.info(
        "Starting tenant_knowledge_bridge API Server v%s from root dir: %s on port 8000...",
        app_version,
        os.environ.get("ROOT_DIR", "unknown"),
    )
    uvicorn.run(app, host="0.0.0.0", port=8000)
