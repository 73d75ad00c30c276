"""Scrape worker: runs scroll collection inside a feed tab on request.

Architecture notes:
- Listens for EXECUTE_SCRAPE on the message bus. The immediate response only
  acknowledges delivery; results come back later as SCRAPE_COMPLETE or
  SCRAPE_ERROR, sent to the orchestrator.
- Delivery fails with TabNotFoundError when the tab is gone, which the
  orchestrator reports as a fetch error.
- At most one collection runs per tab; a second request for a busy tab is
  acknowledged without starting another run.
"""

import asyncio
import logging
import uuid
from collections.abc import Callable
from typing import Any

from playwright.async_api import Page

from feedwatch.automation.browser_manager import TabHost
from feedwatch.automation.feed_page import PlaywrightFeedPage
from feedwatch.core.errors import NoListenerError, TabNotFoundError
from feedwatch.core.message_bus import MessageBus
from feedwatch.schemas.messages import ExecuteScrape, Message, ScrapeComplete, ScrapeError
from feedwatch.services.scroll_collector import ScrollCollector

logger = logging.getLogger(__name__)


class ScrapeWorker:
    def __init__(
        self,
        bus: MessageBus,
        tab_host: TabHost,
        collector: ScrollCollector,
        feed_ready_timeout_ms: int = 10000,
        page_factory: Callable[[Page], Any] = PlaywrightFeedPage,
    ):
        self.bus = bus
        self.tab_host = tab_host
        self.collector = collector
        self.feed_ready_timeout_ms = feed_ready_timeout_ms
        self.page_factory = page_factory
        self._running: dict[int, asyncio.Task] = {}

    def register(self) -> None:
        self.bus.register("EXECUTE_SCRAPE", self._on_message)

    async def _on_message(self, message: ExecuteScrape) -> dict:
        return await self.handle_execute_scrape(message.tab_id)

    async def handle_execute_scrape(self, tab_id: int) -> dict:
        if not self.tab_host.has_tab(tab_id):
            raise TabNotFoundError(tab_id)

        if tab_id in self._running:
            logger.info(f"Scrape already running in tab {tab_id}", extra={"tab_id": tab_id})
            return {"accepted": False, "reason": "scrape already running"}

        feed_page = self.page_factory(self.tab_host.get_page(tab_id))
        task = asyncio.create_task(self._run(tab_id, feed_page))
        self._running[tab_id] = task
        task.add_done_callback(lambda _: self._running.pop(tab_id, None))
        return {"accepted": True}

    async def _run(self, tab_id: int, feed_page) -> None:
        scrape_id = uuid.uuid4().hex[:8]
        extra = {"tab_id": tab_id, "scrape_id": scrape_id}
        logger.info(f"Scrape {scrape_id} started in tab {tab_id}", extra=extra)

        try:
            await feed_page.wait_until_ready(self.feed_ready_timeout_ms)
            result = await self.collector.collect(feed_page)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Scrape {scrape_id} failed in tab {tab_id}: {e}", extra=extra)
            await self._reply(ScrapeError(tab_id=tab_id, error=str(e) or e.__class__.__name__))
            return

        logger.info(
            f"Scrape {scrape_id} collected {len(result.posts)} posts in tab {tab_id}", extra=extra
        )
        await self._reply(ScrapeComplete(tab_id=tab_id, payload=result.posts))

    async def _reply(self, message: Message) -> None:
        try:
            await self.bus.send(message)
        except NoListenerError as e:
            logger.warning(f"Dropped {message.type}: {e}")

    async def shutdown(self) -> None:
        tasks = list(self._running.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._running.clear()
