import asyncio
import time
from datetime import datetime

from services.knowledge_sync.SyncService import SyncService
from shared.helper.HelperConfig import HelperConfig
from shared.models.document import utcnow
from shared.models.sync import ConnectorPollStatus, SyncReport, SyncStatus
from shared.tenants.TenantResolver import TenantResolver


class SyncScheduler:
    """Background task that polls every connector on its own interval.

    The loop wakes up every SYNC_SCHEDULER_TICK_SECONDS and polls each enabled
    connector whose poll_interval_seconds has elapsed since its last poll. A
    failing poll is logged and never stops the loop.
    """

    def __init__(self, helper_config: HelperConfig, sync_service: SyncService, tenant_resolver: TenantResolver, clock=time.monotonic) -> None:
        self.logging = helper_config.get_logger()
        self._sync_service = sync_service
        self._tenant_resolver = tenant_resolver
        self._clock = clock
        self.tick_seconds = helper_config.get_number_val("SYNC_SCHEDULER_TICK_SECONDS", default=60)
        self._last_polled: dict[tuple[str, str, str], float] = {}
        self._last_polled_at: dict[tuple[str, str, str], datetime] = {}
        self._task: asyncio.Task | None = None
        self._manual_lock = asyncio.Lock()

    ##########################################
    ############## LIFECYCLE #################
    ##########################################

    def start(self) -> None:
        if self._task is not None and not self._task.done():
            return
        self._task = asyncio.create_task(self._run(), name="sync-scheduler")
        self.logging.info("Sync scheduler started (tick every %ss)", self.tick_seconds)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        self.logging.info("Sync scheduler stopped")

    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _run(self) -> None:
        while True:
            await self.run_due_connectors()
            await asyncio.sleep(self.tick_seconds)

    ##########################################
    ################# CORE ###################
    ##########################################

    async def run_due_connectors(self) -> list[SyncReport]:
        """Poll every enabled connector whose interval has elapsed.

        Returns:
            list[SyncReport]: Reports of the connectors polled in this tick.
        """
        reports = []
        for tenant in self._tenant_resolver.get_tenants():
            for connector in tenant.settings.connectors:
                if not connector.enabled:
                    continue
                key = (tenant.id, connector.engine.lower(), connector.container_id)
                now = self._clock()
                last = self._last_polled.get(key)
                if last is not None and now - last < connector.poll_interval_seconds:
                    continue
                self._last_polled[key] = now
                self._last_polled_at[key] = utcnow()
                try:
                    reports.append(await self._sync_service.do_poll_connector(tenant, connector))
                except Exception as e:
                    self.logging.exception(
                        "Scheduled poll of %s container %s for tenant %s failed: %s",
                        connector.engine,
                        connector.container_id,
                        tenant.id,
                        e,
                    )
        return reports

    async def trigger_manual_sync(self) -> list[SyncReport]:
        """Run a full sync of all connectors now.

        Returns:
            list[SyncReport]: One report per connector, or [] if a manual sync is already running.
        """
        if self._manual_lock.locked():
            self.logging.warning("Manual sync requested while another manual sync is running, ignoring")
            return []
        async with self._manual_lock:
            self.logging.info("Manual sync triggered")
            reports = await self._sync_service.do_full_sync()
            now, polled_at = self._clock(), utcnow()
            for report in reports:
                self.logging.debug("Manual sync report: %s", report.model_dump())
            for tenant in self._tenant_resolver.get_tenants():
                for connector in tenant.settings.connectors:
                    if not connector.enabled:
                        continue
                    key = (tenant.id, connector.engine.lower(), connector.container_id)
                    self._last_polled[key] = now
                    self._last_polled_at[key] = polled_at
            return reports

    def get_status(self) -> SyncStatus:
        """Report the scheduler state, every connector's last poll and the sync cursors."""
        connectors = [
            ConnectorPollStatus(
                tenant_id=tenant.id,
                engine=connector.engine,
                source_kind=connector.source_kind.value,
                container_id=connector.container_id,
                enabled=connector.enabled,
                poll_interval_seconds=connector.poll_interval_seconds,
                last_polled_at=self._last_polled_at.get((tenant.id, connector.engine.lower(), connector.container_id)),
            )
            for tenant in self._tenant_resolver.get_tenants()
            for connector in tenant.settings.connectors
        ]
        return SyncStatus(
            scheduler_running=self.is_running(),
            manual_sync_running=self._manual_lock.locked(),
            tick_seconds=self.tick_seconds,
            connectors=connectors,
            cursors=self._sync_service.get_cursor_status(),
        )
