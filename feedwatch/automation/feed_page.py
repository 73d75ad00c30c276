import logging

from playwright.async_api import Page
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from feedwatch.config import FEED_ITEM_SELECTOR

logger = logging.getLogger(__name__)

SNAPSHOT_SCRIPT = "elements => elements.map(el => el.outerHTML)"
SCROLL_SCRIPT = "window.scrollTo(0, document.body.scrollHeight)"


class PlaywrightFeedPage:
    """Reads feed snapshots from a live Playwright page."""

    def __init__(self, page: Page, item_selector: str = FEED_ITEM_SELECTOR):
        self.page = page
        self.item_selector = item_selector

    async def wait_until_ready(self, timeout_ms: int) -> bool:
        """Wait for the first feed item to render. False if it never did."""
        try:
            await self.page.wait_for_selector(self.item_selector, timeout=timeout_ms)
            return True
        except PlaywrightTimeoutError:
            logger.warning(f"No feed items rendered within {timeout_ms}ms on {self.page.url}")
            return False

    async def snapshot(self) -> list[str]:
        return await self.page.locator(self.item_selector).evaluate_all(SNAPSHOT_SCRIPT)

    async def scroll_to_bottom(self) -> None:
        await self.page.evaluate(SCROLL_SCRIPT)
