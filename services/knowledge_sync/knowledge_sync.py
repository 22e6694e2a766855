"""One-shot sync entry point.

Polls every enabled connector of every tenant once and mirrors the source
items into the document store. The API server runs the same passes on a
schedule; this runner is for cron jobs and initial backfills.

Usage:
    python -m services.knowledge_sync.knowledge_sync
"""

import asyncio

from services.ingestion.ChunkingPipeline import ChunkingPipeline
from services.knowledge_sync.SyncService import SyncService
from shared.clients.embed.EmbedClientManager import EmbedClientManager
from shared.clients.source.SourceClientInterface import SourceClientInterface
from shared.clients.source.SourceClientManager import SourceClientManager
from shared.clients.store.DocumentStoreManager import DocumentStoreManager
from shared.helper.HelperConfig import HelperConfig
from shared.logging.logging_setup import setup_logging
from shared.models.errors import BridgeError
from shared.tenants.TenantResolver import TenantResolver, load_tenant_registry


async def check_source(source_client: SourceClientInterface, logger) -> None:
    try:
        response = await source_client.do_healthcheck()
    except BridgeError as e:
        logger.error("Source client %s is not reachable: %s", source_client.get_engine_name(), e.message)
        return
    if not response.is_success:
        logger.error("Source client %s answered healthcheck with status %d", source_client.get_engine_name(), response.status_code)


async def main() -> int:
    """Run one full synchronisation pass.

    Returns:
        int: Process exit code, 1 if the pass could not start or any connector pass aborted.
    """
    logger = setup_logging()
    config = HelperConfig(logger=logger)
    registry = load_tenant_registry(config.get_string_val("TENANTS_CONFIG_PATH", default="config/tenants.json"))
    tenant_resolver = TenantResolver(helper_config=config, registry=registry)

    source_manager = SourceClientManager(helper_config=config)
    embed_manager = EmbedClientManager(helper_config=config)
    embed_client = embed_manager.get_client()
    store = DocumentStoreManager(helper_config=config).get_client()

    try:
        # embedding is required, there is no point in syncing without it
        try:
            await embed_client.boot()
            await embed_client.do_healthcheck()
        except BridgeError as e:
            logger.error("Error booting Embed client %s: %s. Aborting.", embed_client.get_engine_name(), e.message)
            return 1

        await embed_manager.do_check_models(tenant_resolver.get_embedding_models())
        await store.boot()

        # unreachable sources are non-fatal, their connector passes abort on listing
        for source_client in source_manager.get_clients():
            await source_client.boot()
            await check_source(source_client, logger)

        pipeline = ChunkingPipeline(helper_config=config, embed_client=embed_client)
        sync_service = SyncService(
            helper_config=config,
            tenant_resolver=tenant_resolver,
            store=store,
            pipeline=pipeline,
            source_manager=source_manager,
        )
        reports = await sync_service.do_full_sync()
        return 1 if any(report.aborted for report in reports) else 0
    finally:
        await embed_client.close()
        for source_client in source_manager.get_clients():
            await source_client.close()
        await store.close()


if __name__ == "__main__":
    raise SystemExit(asyncio.run(main()))
