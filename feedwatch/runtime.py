"""Wiring of the long-lived pipeline objects for one process."""

import logging
from dataclasses import dataclass

from feedwatch.automation.browser_manager import PlaywrightTabHost, TabHost
from feedwatch.config import Settings
from feedwatch.core.kv_store import KeyValueStore, create_kv_store
from feedwatch.core.message_bus import MessageBus
from feedwatch.services.retention_store import RetentionStore
from feedwatch.services.scroll_collector import ScrollCollector, ScrollCollectorConfig
from feedwatch.workers.monitor import FeedMonitor
from feedwatch.workers.scrape_worker import ScrapeWorker

logger = logging.getLogger(__name__)


@dataclass
class AppRuntime:
    kv_store: KeyValueStore
    store: RetentionStore
    bus: MessageBus
    tab_host: TabHost
    worker: ScrapeWorker
    monitor: FeedMonitor

    def start(self) -> None:
        self.worker.register()
        self.monitor.register()

    async def close(self) -> None:
        await self.monitor.shutdown()
        await self.worker.shutdown()
        await self.tab_host.shutdown()
        await self.kv_store.close()
        logger.info("Runtime closed")


def build_runtime(
    config: Settings,
    tab_host: TabHost | None = None,
    kv_store: KeyValueStore | None = None,
) -> AppRuntime:
    kv_store = kv_store or create_kv_store(config)
    tab_host = tab_host or PlaywrightTabHost(config)
    bus = MessageBus()
    store = RetentionStore(kv_store, max_retained=config.max_retained)
    collector = ScrollCollector(
        ScrollCollectorConfig(
            min_target_count=config.scroll_min_target,
            max_attempts=config.scroll_max_attempts,
            inter_step_delay=config.scroll_delay_seconds,
        )
    )
    worker = ScrapeWorker(
        bus, tab_host, collector, feed_ready_timeout_ms=config.feed_ready_timeout_ms
    )
    monitor = FeedMonitor(bus, tab_host, store, poll_interval=config.poll_interval_seconds)
    return AppRuntime(
        kv_store=kv_store,
        store=store,
        bus=bus,
        tab_host=tab_host,
        worker=worker,
        monitor=monitor,
    )
