import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Protocol

from playwright.async_api import Browser, BrowserContext, Page, Playwright, async_playwright
from playwright.async_api import Error as PlaywrightError

from feedwatch.config import Settings
from feedwatch.core.errors import TabHostError, TabNotFoundError
from feedwatch.services.url_utils import matches_prefixes

logger = logging.getLogger(__name__)

NAVIGATION_TIMEOUT_MS = 30000

USER_AGENTS = [
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36",
]

STEALTH_ARGS = [
    "--disable-blink-features=AutomationControlled",
    "--disable-features=IsolateOrigins,site-per-process",
    "--no-sandbox",
]

STEALTH_SCRIPT = """
    Object.defineProperty(navigator, 'webdriver', { get: () => undefined });
    Object.defineProperty(navigator, 'languages', { get: () => ['en-US', 'en'] });
"""

LoadCompleteListener = Callable[[int, str], Awaitable[None]]
TabClosedListener = Callable[[int], Awaitable[None]]


@dataclass
class TabRef:
    id: int
    url: str
    active: bool = False


class TabHost(Protocol):
    """Tab primitives the orchestrator and scrape worker rely on."""

    async def query_tabs(self, url_prefixes: tuple[str, ...]) -> list[TabRef]: ...

    async def create_tab(self, url: str) -> TabRef: ...

    async def activate_tab(self, tab_id: int) -> TabRef: ...

    async def reload_tab(self, tab_id: int) -> None: ...

    def has_tab(self, tab_id: int) -> bool: ...

    def get_page(self, tab_id: int) -> Page: ...

    def on_load_complete(self, listener: LoadCompleteListener) -> None: ...

    def on_closed(self, listener: TabClosedListener) -> None: ...

    async def shutdown(self) -> None: ...


class PlaywrightTabHost:
    """Tabs are the pages of one Playwright browser context, launched on first use.

    With ``browser_user_data_dir`` set the context is persistent, so a profile
    that is already signed in to the feed can be reused.
    """

    def __init__(self, config: Settings):
        self.config = config
        self._playwright: Playwright | None = None
        self._browser: Browser | None = None
        self._context: BrowserContext | None = None
        self._start_lock = asyncio.Lock()

        self._pages: dict[int, Page] = {}
        self._next_id = 1
        self._active_tab_id: int | None = None

        self._load_listeners: list[LoadCompleteListener] = []
        self._close_listeners: list[TabClosedListener] = []
        self._tasks: set[asyncio.Task] = set()

    async def _get_context(self) -> BrowserContext:
        async with self._start_lock:
            if self._context is not None:
                return self._context

            self._playwright = await async_playwright().start()
            launch_kwargs: dict = {
                "headless": self.config.browser_headless,
                "args": STEALTH_ARGS,
            }
            if self.config.browser_proxy_url:
                launch_kwargs["proxy"] = {"server": self.config.browser_proxy_url}

            context_kwargs = {
                "user_agent": random.choice(USER_AGENTS),
                "viewport": {"width": 1920, "height": 1080},
                "locale": "en-US",
            }

            if self.config.browser_user_data_dir:
                self._context = await self._playwright.chromium.launch_persistent_context(
                    self.config.browser_user_data_dir, **launch_kwargs, **context_kwargs
                )
            else:
                self._browser = await self._playwright.chromium.launch(**launch_kwargs)
                self._context = await self._browser.new_context(**context_kwargs)

            await self._context.add_init_script(STEALTH_SCRIPT)
            for page in self._context.pages:
                self._ensure_tracked(page)
            self._context.on("page", self._ensure_tracked)

            logger.info(
                f"Browser context created (proxy={'yes' if self.config.browser_proxy_url else 'no'}, "
                f"persistent={'yes' if self.config.browser_user_data_dir else 'no'})"
            )
            return self._context

    # --- tab bookkeeping ---

    def _ensure_tracked(self, page: Page) -> int:
        for tab_id, known in self._pages.items():
            if known is page:
                return tab_id

        tab_id = self._next_id
        self._next_id += 1
        self._pages[tab_id] = page
        page.on("load", lambda p: self._spawn(self._emit_load(tab_id, p.url)))
        page.on("close", lambda p: self._spawn(self._emit_closed(tab_id)))
        logger.debug(f"Tracking tab {tab_id}", extra={"tab_id": tab_id})
        return tab_id

    def _spawn(self, coro: Awaitable[None]) -> None:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _emit_load(self, tab_id: int, url: str) -> None:
        for listener in list(self._load_listeners):
            try:
                await listener(tab_id, url)
            except Exception as e:
                logger.error(f"Load listener failed for tab {tab_id}: {e}", exc_info=True)

    async def _emit_closed(self, tab_id: int) -> None:
        self._pages.pop(tab_id, None)
        if self._active_tab_id == tab_id:
            self._active_tab_id = None
        for listener in list(self._close_listeners):
            try:
                await listener(tab_id)
            except Exception as e:
                logger.error(f"Close listener failed for tab {tab_id}: {e}", exc_info=True)

    def _ref(self, tab_id: int) -> TabRef:
        return TabRef(id=tab_id, url=self._pages[tab_id].url, active=tab_id == self._active_tab_id)

    # --- TabHost ---

    def has_tab(self, tab_id: int) -> bool:
        page = self._pages.get(tab_id)
        return page is not None and not page.is_closed()

    def get_page(self, tab_id: int) -> Page:
        if not self.has_tab(tab_id):
            raise TabNotFoundError(tab_id)
        return self._pages[tab_id]

    async def query_tabs(self, url_prefixes: tuple[str, ...]) -> list[TabRef]:
        await self._get_context()
        return [
            self._ref(tab_id)
            for tab_id in list(self._pages)
            if self.has_tab(tab_id) and matches_prefixes(self._pages[tab_id].url, url_prefixes)
        ]

    async def create_tab(self, url: str) -> TabRef:
        context = await self._get_context()
        try:
            page = await context.new_page()
            tab_id = self._ensure_tracked(page)
            self._active_tab_id = tab_id
            await page.goto(url, wait_until="domcontentloaded", timeout=NAVIGATION_TIMEOUT_MS)
        except PlaywrightError as e:
            raise TabHostError(f"Failed to create tab for {url}: {e}") from e
        logger.info(f"Opened tab {tab_id} at {url}", extra={"tab_id": tab_id})
        return self._ref(tab_id)

    async def activate_tab(self, tab_id: int) -> TabRef:
        page = self.get_page(tab_id)
        try:
            await page.bring_to_front()
        except PlaywrightError as e:
            raise TabHostError(f"Failed to activate tab {tab_id}: {e}") from e
        self._active_tab_id = tab_id
        return self._ref(tab_id)

    async def reload_tab(self, tab_id: int) -> None:
        """Start a reload; completion is reported through the load listeners."""
        page = self.get_page(tab_id)
        try:
            await page.reload(wait_until="commit", timeout=NAVIGATION_TIMEOUT_MS)
        except PlaywrightError as e:
            raise TabHostError(f"Failed to reload tab {tab_id}: {e}") from e

    def on_load_complete(self, listener: LoadCompleteListener) -> None:
        self._load_listeners.append(listener)

    def on_closed(self, listener: TabClosedListener) -> None:
        self._close_listeners.append(listener)

    async def shutdown(self) -> None:
        """Gracefully shut down the browser and its context."""
        if self._context is not None:
            try:
                await self._context.close()
            except PlaywrightError as e:
                logger.warning(f"Error closing browser context: {e}")
            self._context = None
        if self._browser is not None:
            await self._browser.close()
            self._browser = None
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None
        self._pages.clear()
        logger.info("Browser shutdown complete")
