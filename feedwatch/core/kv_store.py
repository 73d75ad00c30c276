"""Key-value persistence for a single JSON state blob, with change notification.

Usage:
    store = create_kv_store(settings)
    unsubscribe = store.subscribe(on_change)
    await store.set({"posts": []})
    await store.set(lambda current: {**(current or {}), "is_first_fetch": False})
    blob = await store.get()
"""

import asyncio
import inspect
import json
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from typing import Any

import redis.asyncio as aioredis
from redis.exceptions import WatchError

from feedwatch.config import Settings

logger = logging.getLogger(__name__)

StateBlob = dict[str, Any]
UpdateFn = Callable[[StateBlob | None], StateBlob]
ChangeListener = Callable[[StateBlob], Awaitable[None] | None]

MAX_WATCH_RETRIES = 5


class KeyValueStore(ABC):
    """Holds one JSON-serialisable blob. Subclasses provide the storage."""

    def __init__(self):
        self._listeners: list[ChangeListener] = []

    @abstractmethod
    async def _read(self) -> StateBlob | None: ...

    @abstractmethod
    async def _write(self, blob: StateBlob) -> None: ...

    @abstractmethod
    async def _update(self, fn: UpdateFn) -> StateBlob: ...

    async def get(self) -> StateBlob | None:
        return await self._read()

    async def set(self, value: StateBlob | UpdateFn) -> StateBlob:
        """Replace the blob, or apply ``value(current)`` when given a function."""
        if callable(value):
            blob = await self._update(value)
        else:
            blob = value
            await self._write(blob)
        await self._notify(blob)
        return blob

    def subscribe(self, listener: ChangeListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def _notify(self, blob: StateBlob) -> None:
        for listener in list(self._listeners):
            try:
                result = listener(blob)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.warning(f"State change listener failed: {e}")

    async def close(self) -> None:
        self._listeners.clear()


class MemoryKeyValueStore(KeyValueStore):
    """In-process store. The blob is kept serialised so it behaves like Redis."""

    def __init__(self):
        super().__init__()
        self._raw: str | None = None
        self._lock = asyncio.Lock()

    async def _read(self) -> StateBlob | None:
        return json.loads(self._raw) if self._raw is not None else None

    async def _write(self, blob: StateBlob) -> None:
        self._raw = json.dumps(blob)

    async def _update(self, fn: UpdateFn) -> StateBlob:
        async with self._lock:
            blob = fn(await self._read())
            await self._write(blob)
            return blob


class RedisKeyValueStore(KeyValueStore):
    """Blob stored under one Redis key; every write is also published on a channel."""

    def __init__(self, client: aioredis.Redis, key: str, channel: str):
        super().__init__()
        self.redis = client
        self.key = key
        self.channel = channel

    async def _read(self) -> StateBlob | None:
        raw = await self.redis.get(self.key)
        return json.loads(raw) if raw else None

    async def _write(self, blob: StateBlob) -> None:
        payload = json.dumps(blob)
        await self.redis.set(self.key, payload)
        await self.redis.publish(self.channel, payload)

    async def _update(self, fn: UpdateFn) -> StateBlob:
        # Optimistic WATCH/MULTI so a concurrent writer forces a re-read
        for attempt in range(MAX_WATCH_RETRIES):
            async with self.redis.pipeline(transaction=True) as pipe:
                try:
                    await pipe.watch(self.key)
                    raw = await pipe.get(self.key)
                    blob = fn(json.loads(raw) if raw else None)
                    payload = json.dumps(blob)
                    pipe.multi()
                    pipe.set(self.key, payload)
                    pipe.publish(self.channel, payload)
                    await pipe.execute()
                    return blob
                except WatchError:
                    logger.debug(f"Key {self.key} changed during update (attempt {attempt + 1}), retrying")
        raise RuntimeError(f"Could not update {self.key} after {MAX_WATCH_RETRIES} attempts")

    async def close(self) -> None:
        await super().close()
        await self.redis.aclose()


def create_kv_store(config: Settings) -> KeyValueStore:
    """Redis when ``redis_url`` is configured, otherwise in-memory."""
    if config.redis_url:
        client = aioredis.from_url(config.redis_url)
        logger.info(f"Using Redis state store (key={config.state_key})")
        return RedisKeyValueStore(client, config.state_key, config.change_channel)
    logger.info("REDIS_URL not set, using in-memory state store")
    return MemoryKeyValueStore()
