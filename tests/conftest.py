"""Test fixtures for FeedWatch tests."""

from datetime import UTC, datetime, timedelta

import pytest
from httpx import ASGITransport, AsyncClient

from feedwatch.automation.browser_manager import TabRef
from feedwatch.config import Settings
from feedwatch.core.errors import TabHostError, TabNotFoundError
from feedwatch.core.kv_store import MemoryKeyValueStore
from feedwatch.core.message_bus import MessageBus
from feedwatch.main import app as fastapi_app
from feedwatch.runtime import build_runtime
from feedwatch.schemas.post import Post
from feedwatch.services.identity import compute_identity
from feedwatch.services.retention_store import RetentionStore
from feedwatch.services.timestamps import format_display_timestamp, to_sortable_instant
from feedwatch.workers.monitor import FeedMonitor

BASE_TIME = datetime(2024, 5, 1, 12, 0, 0, tzinfo=UTC)


class FakeTabHost:
    """In-memory stand-in for the Playwright tab host."""

    def __init__(self):
        self.tabs: dict[int, str] = {}
        self.active_tab_id: int | None = None
        self.next_id = 1
        self.reloads: list[int] = []
        self.created: list[str] = []
        self.activated: list[int] = []
        self.fail_create = False
        self.fail_activate = False
        self.fail_reload = False
        self.load_listeners = []
        self.close_listeners = []
        self.pages: dict[int, object] = {}

    def add_tab(self, url: str, active: bool = False) -> int:
        tab_id = self.next_id
        self.next_id += 1
        self.tabs[tab_id] = url
        self.pages[tab_id] = object()
        if active:
            self.active_tab_id = tab_id
        return tab_id

    def _ref(self, tab_id: int) -> TabRef:
        return TabRef(id=tab_id, url=self.tabs[tab_id], active=tab_id == self.active_tab_id)

    async def query_tabs(self, url_prefixes):
        return [self._ref(t) for t, url in self.tabs.items() if url.startswith(url_prefixes)]

    async def create_tab(self, url: str) -> TabRef:
        if self.fail_create:
            raise TabHostError("Failed to create tab")
        self.created.append(url)
        return self._ref(self.add_tab(url, active=True))

    async def activate_tab(self, tab_id: int) -> TabRef:
        if self.fail_activate:
            raise TabHostError(f"Failed to activate tab {tab_id}")
        if tab_id not in self.tabs:
            raise TabNotFoundError(tab_id)
        self.activated.append(tab_id)
        self.active_tab_id = tab_id
        return self._ref(tab_id)

    async def reload_tab(self, tab_id: int) -> None:
        if tab_id not in self.tabs:
            raise TabNotFoundError(tab_id)
        if self.fail_reload:
            raise TabHostError(f"Failed to reload tab {tab_id}")
        self.reloads.append(tab_id)

    def has_tab(self, tab_id: int) -> bool:
        return tab_id in self.tabs

    def get_page(self, tab_id: int):
        if tab_id not in self.tabs:
            raise TabNotFoundError(tab_id)
        return self.pages[tab_id]

    def close_tab(self, tab_id: int) -> None:
        self.tabs.pop(tab_id, None)
        self.pages.pop(tab_id, None)

    def on_load_complete(self, listener) -> None:
        self.load_listeners.append(listener)

    def on_closed(self, listener) -> None:
        self.close_listeners.append(listener)

    async def shutdown(self) -> None:
        self.tabs.clear()


class FakeFeedPage:
    """Serves a fixed sequence of snapshots; the last one repeats."""

    def __init__(self, snapshots: list[list[str]], ready: bool = True):
        self.snapshots = snapshots
        self.ready = ready
        self.reads = 0
        self.scrolls = 0

    async def wait_until_ready(self, timeout_ms: int) -> bool:
        return self.ready

    async def snapshot(self) -> list[str]:
        index = min(self.reads, len(self.snapshots) - 1)
        self.reads += 1
        return list(self.snapshots[index]) if self.snapshots else []

    async def scroll_to_bottom(self) -> None:
        self.scrolls += 1


def _make_post(index: int = 0, author: str = "Alice (@alice)", content: str | None = None, when=None) -> Post:
    when = when or BASE_TIME + timedelta(minutes=index)
    instant = to_sortable_instant(when)
    content = content if content is not None else f"post number {index}"
    return Post(
        id=compute_identity(author, content, instant),
        author=author,
        content=content,
        display_timestamp=format_display_timestamp(when, UTC),
        sortable_instant=instant,
    )


def _tweet_html(
    name: str = "Alice",
    handle: str = "@alice",
    text: str = "Hello world",
    datetime_attr: str | None = "2024-05-01T12:00:00.000Z",
    time_text: str = "2h",
    extra: str = "",
) -> str:
    if datetime_attr is None:
        time_el = f"<time>{time_text}</time>"
    else:
        time_el = f'<time datetime="{datetime_attr}">{time_text}</time>'
    slug = handle.lstrip("@")
    return f"""
<article data-testid="tweet" role="article" tabindex="0">
  <div data-testid="User-Name">
    <a href="/{slug}" role="link"><span>{name}</span></a>
    <a href="/{slug}" role="link" tabindex="-1"><span>{handle}</span></a>
    <span aria-hidden="true">·</span>
    <a href="/{slug}/status/1" aria-label="{time_text}">{time_el}</a>
  </div>
  <div data-testid="tweetText" lang="en"><span>{text}</span></div>
  {extra}
  <div role="group" aria-label="Reply, Repost, Like">
    <button data-testid="reply" aria-label="Reply"></button>
    <button data-testid="like" aria-label="Like"></button>
  </div>
</article>
"""


@pytest.fixture
def make_post():
    return _make_post


@pytest.fixture
def tweet_html():
    return _tweet_html


@pytest.fixture
def kv_store() -> MemoryKeyValueStore:
    return MemoryKeyValueStore()


@pytest.fixture
def store(kv_store: MemoryKeyValueStore) -> RetentionStore:
    return RetentionStore(kv_store)


@pytest.fixture
def bus() -> MessageBus:
    return MessageBus()


@pytest.fixture
def tab_host() -> FakeTabHost:
    return FakeTabHost()


@pytest.fixture
async def monitor(bus: MessageBus, tab_host: FakeTabHost, store: RetentionStore):
    """Orchestrator with a long poll interval so timers never fire on their own."""
    feed_monitor = FeedMonitor(bus, tab_host, store, poll_interval=3600)
    feed_monitor.register()
    yield feed_monitor
    await feed_monitor.shutdown()


@pytest.fixture
async def runtime(tab_host: FakeTabHost):
    config = Settings(poll_interval_seconds=3600, scroll_delay_seconds=0, redis_url="")
    app_runtime = build_runtime(config, tab_host=tab_host, kv_store=MemoryKeyValueStore())
    app_runtime.worker.page_factory = lambda page: FakeFeedPage([[]])
    app_runtime.start()
    yield app_runtime
    await app_runtime.close()


@pytest.fixture
async def client(runtime) -> AsyncClient:
    """HTTP client against the app with a fake-browser runtime injected."""
    fastapi_app.state.runtime = runtime
    transport = ASGITransport(app=fastapi_app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    fastapi_app.state.runtime = None


@pytest.fixture
def feed_page():
    return FakeFeedPage
