"""Poll/reload orchestrator: keeps one feed tab scrapeable and re-scrapes it periodically.

Architecture notes:
- A manual fetch resolves (or opens) the feed tab and asks the scrape worker
  to collect from it. A successful result is merged into the retention store
  and (re)arms a repeating timer.
- Each timer fire reloads the tab. The scrape is requested only when the
  browser reports that reload finished (ReloadPending -> load complete), and
  only if the tab is still on the feed home page.
- All state lives on MonitorSession and every transition is a method here, so
  the state machine can be driven directly in tests without a browser.
- One asyncio lock serialises transitions. At most one timer task exists and
  at most one scrape is outstanding for the tracked tab.
"""

import asyncio
import enum
import logging
from collections.abc import Iterable
from dataclasses import dataclass

from feedwatch.automation.browser_manager import TabHost, TabRef
from feedwatch.config import DEFAULT_POLL_INTERVAL
from feedwatch.core.errors import NoListenerError, ScrapeDeliveryError, TabHostError
from feedwatch.core.message_bus import MessageBus
from feedwatch.schemas.messages import (
    DataResponse,
    ExecuteScrape,
    FetchError,
    Message,
    MonitorStopped,
    PostsUpdated,
    ScrapeComplete,
    ScrapeError,
)
from feedwatch.schemas.monitor import MonitorStatus
from feedwatch.schemas.post import Post
from feedwatch.services.retention_store import RetentionStore
from feedwatch.services.url_utils import FEED_HOME_URLS, matches_prefixes

logger = logging.getLogger(__name__)


class MonitorState(str, enum.Enum):
    IDLE = "idle"
    POLLING = "polling"
    RELOAD_PENDING = "reload_pending"


@dataclass
class MonitorSession:
    target_tab_id: int | None = None
    is_reload_pending: bool = False
    pending_reload_tab_id: int | None = None
    poll_timer: asyncio.Task | None = None
    scrape_in_flight: bool = False

    @property
    def state(self) -> MonitorState:
        if self.is_reload_pending:
            return MonitorState.RELOAD_PENDING
        if self.poll_timer is not None:
            return MonitorState.POLLING
        return MonitorState.IDLE

    def clear(self) -> None:
        self.target_tab_id = None
        self.is_reload_pending = False
        self.pending_reload_tab_id = None
        self.poll_timer = None
        self.scrape_in_flight = False


class FeedMonitor:
    def __init__(
        self,
        bus: MessageBus,
        tab_host: TabHost,
        store: RetentionStore,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        feed_urls: tuple[str, ...] = FEED_HOME_URLS,
    ):
        self.bus = bus
        self.tab_host = tab_host
        self.store = store
        self.poll_interval = poll_interval
        self.feed_urls = feed_urls
        self.session = MonitorSession()
        self._lock = asyncio.Lock()

    def register(self) -> None:
        """Subscribe to bus requests and tab lifecycle events."""
        for message_type in ("FETCH_REQUEST", "STOP_REQUEST", "SCRAPE_COMPLETE", "SCRAPE_ERROR"):
            self.bus.register(message_type, self._on_message)
        self.tab_host.on_load_complete(self.on_tab_load_complete)
        self.tab_host.on_closed(self.on_tab_closed)

    async def _on_message(self, message: Message) -> None:
        if isinstance(message, ScrapeComplete):
            await self.handle_scrape_complete(message.tab_id, message.payload)
        elif isinstance(message, ScrapeError):
            await self.handle_scrape_error(message.tab_id, message.error)
        elif message.type == "FETCH_REQUEST":
            await self.handle_fetch_request()
        elif message.type == "STOP_REQUEST":
            await self.stop()

    # ------------------------------------------------------------------
    # Timer
    # ------------------------------------------------------------------

    def _start_timer(self) -> None:
        self._stop_timer()
        if self.session.target_tab_id is None:
            logger.warning("Cannot start periodic refresh: no feed tab is tracked")
            return
        self.session.poll_timer = asyncio.create_task(self._poll_loop())
        logger.info(
            f"Periodic refresh every {self.poll_interval}s for tab {self.session.target_tab_id}",
            extra={"tab_id": self.session.target_tab_id},
        )

    def _stop_timer(self) -> None:
        timer = self.session.poll_timer
        self.session.poll_timer = None
        if timer is None:
            return
        if timer is not asyncio.current_task() and not timer.done():
            timer.cancel()
        logger.info("Stopped periodic refresh")

    async def _poll_loop(self) -> None:
        me = asyncio.current_task()
        while self.session.poll_timer is me:
            await asyncio.sleep(self.poll_interval)
            if self.session.poll_timer is not me:
                break
            await self.on_timer_fire()

    # ------------------------------------------------------------------
    # Scrape requests
    # ------------------------------------------------------------------

    async def _request_scrape(self, tab_id: int) -> None:
        self.session.scrape_in_flight = True
        logger.info(f"Requesting scrape from tab {tab_id}", extra={"tab_id": tab_id})
        try:
            response = await self.bus.send(ExecuteScrape(tab_id=tab_id))
        except (NoListenerError, TabHostError) as e:
            self.session.scrape_in_flight = False
            raise ScrapeDeliveryError(f"Failed to send scrape request to feed tab: {e}") from e
        if response:
            logger.debug(f"Immediate response from tab {tab_id}: {response}")

    async def _resolve_feed_tab(self) -> TabRef:
        """Prefer an existing feed tab (the tracked one first), else open a new one."""
        tabs = await self.tab_host.query_tabs(self.feed_urls)
        if tabs:
            tab = next((t for t in tabs if t.id == self.session.target_tab_id), tabs[0])
            if not tab.active:
                tab = await self.tab_host.activate_tab(tab.id)
            return tab
        return await self.tab_host.create_tab(self.feed_urls[0])

    async def _broadcast(self, message: Message) -> None:
        await self.bus.broadcast(message)

    async def _fail_fetch(self, error: str) -> None:
        logger.error(error)
        self._stop_timer()
        self.session.clear()
        await self._broadcast(FetchError(error=error))

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def handle_fetch_request(self) -> None:
        async with self._lock:
            logger.info("Manual fetch requested; clearing existing refresh")
            self._stop_timer()
            # A reload still in progress is superseded; its completion becomes a stray event
            self.session.is_reload_pending = False

            try:
                tab = await self._resolve_feed_tab()
            except TabHostError as e:
                await self._fail_fetch(f"Failed to open feed tab: {e}")
                return

            if self.session.scrape_in_flight and self.session.target_tab_id == tab.id:
                logger.info(
                    f"Scrape already in flight for tab {tab.id}; its result will resume polling",
                    extra={"tab_id": tab.id},
                )
                return

            self.session.target_tab_id = tab.id
            try:
                await self._request_scrape(tab.id)
            except ScrapeDeliveryError as e:
                await self._fail_fetch(str(e))

    async def handle_scrape_complete(self, tab_id: int, posts: Iterable[Post]) -> None:
        async with self._lock:
            posts = list(posts)
            if self.session.target_tab_id in (None, tab_id):
                self.session.scrape_in_flight = False

            try:
                was_first_fetch = (await self.store.get_state()).is_first_fetch
                new_count = await self.store.merge(posts)
            except Exception as e:
                logger.error(f"Failed to store scraped posts: {e}", exc_info=True)
                await self._broadcast(FetchError(error=f"Failed to save posts: {e}"))
            else:
                logger.info(
                    f"Scrape from tab {tab_id} returned {len(posts)} posts, {new_count} new",
                    extra={"tab_id": tab_id},
                )
                await self._broadcast(DataResponse(payload=posts, new_count=new_count))
                if new_count:
                    await self._broadcast(
                        PostsUpdated(count=new_count, is_first_fetch=was_first_fetch)
                    )

            if self.session.target_tab_id is not None:
                self._start_timer()
            else:
                logger.warning("Scrape completed but no feed tab is tracked; polling not restarted")

    async def handle_scrape_error(self, tab_id: int, error: str) -> None:
        async with self._lock:
            logger.error(f"Scrape error from tab {tab_id}: {error}", extra={"tab_id": tab_id})
            if self.session.target_tab_id in (None, tab_id):
                self.session.scrape_in_flight = False
            await self._broadcast(FetchError(error=error))
            self._stop_timer()
            if self.session.target_tab_id == tab_id and not self.tab_host.has_tab(tab_id):
                logger.warning(f"Tab {tab_id} no longer exists; clearing session")
                self.session.clear()

    async def on_timer_fire(self) -> None:
        async with self._lock:
            session = self.session
            if session.target_tab_id is None:
                logger.warning("Periodic refresh fired without a tracked tab; stopping")
                self._stop_timer()
                return
            if session.scrape_in_flight:
                logger.debug("Scrape still in flight; skipping this tick")
                return

            tab_id = session.target_tab_id
            if session.is_reload_pending:
                # No load event arrived for the previous reload
                logger.warning(
                    f"Reload of tab {tab_id} never completed; reloading again",
                    extra={"tab_id": tab_id},
                )
            else:
                logger.info(f"Periodic refresh: reloading tab {tab_id}", extra={"tab_id": tab_id})
            session.is_reload_pending = True
            session.pending_reload_tab_id = tab_id
            try:
                await self.tab_host.reload_tab(tab_id)
            except TabHostError as e:
                logger.error(f"Error reloading tab {tab_id}: {e}", extra={"tab_id": tab_id})
                self._stop_timer()
                session.clear()
                await self._broadcast(MonitorStopped(reason=f"Reload failed: {e}"))

    async def on_tab_load_complete(self, tab_id: int, url: str) -> None:
        async with self._lock:
            session = self.session
            if tab_id != session.pending_reload_tab_id:
                return

            if not session.is_reload_pending:
                logger.info(f"Tab {tab_id} finished loading but no reload is pending; ignoring")
                session.pending_reload_tab_id = None
                return

            session.is_reload_pending = False
            session.pending_reload_tab_id = None

            if not matches_prefixes(url, self.feed_urls):
                logger.warning(
                    f"Tab {tab_id} reloaded away from the feed ({url}); stopping periodic refresh",
                    extra={"tab_id": tab_id},
                )
                self._stop_timer()
                session.target_tab_id = None
                await self._broadcast(MonitorStopped(reason=f"Feed tab navigated away to {url}"))
                return

            try:
                await self._request_scrape(tab_id)
            except ScrapeDeliveryError as e:
                # Tab id kept: a manual fetch may still recover it
                logger.error(str(e), extra={"tab_id": tab_id})
                self._stop_timer()

    async def on_tab_closed(self, tab_id: int) -> None:
        async with self._lock:
            if tab_id == self.session.target_tab_id:
                logger.warning(f"Feed tab {tab_id} was closed; stopping monitoring")
                self._stop_timer()
                self.session.clear()
                await self._broadcast(MonitorStopped(reason="Feed tab was closed"))
            elif tab_id == self.session.pending_reload_tab_id:
                self.session.pending_reload_tab_id = None
                self.session.is_reload_pending = False

    async def stop(self, reason: str = "Stopped by request") -> None:
        async with self._lock:
            self._stop_timer()
            self.session.clear()
            logger.info(f"Monitoring stopped: {reason}")
            await self._broadcast(MonitorStopped(reason=reason))

    def status(self) -> MonitorStatus:
        return MonitorStatus(
            state=self.session.state.value,
            target_tab_id=self.session.target_tab_id,
            pending_reload_tab_id=self.session.pending_reload_tab_id,
            scrape_in_flight=self.session.scrape_in_flight,
            polling=self.session.poll_timer is not None,
            poll_interval_seconds=self.poll_interval,
            observers=self.bus.observer_count,
        )

    async def shutdown(self) -> None:
        timer = self.session.poll_timer
        self._stop_timer()
        if timer is not None:
            await asyncio.gather(timer, return_exceptions=True)
