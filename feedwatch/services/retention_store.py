"""Bounded, time-ordered window of the most recent posts.

This is the only writer of the persisted retention state. Every mutation
goes through ``merge`` or ``reset``, serialised by one lock, so callers never
observe a half-applied merge.
"""

import asyncio
import logging
from collections.abc import Iterable

from pydantic import ValidationError

from feedwatch.config import MAX_RETAINED
from feedwatch.core.kv_store import KeyValueStore
from feedwatch.schemas.post import Post, RetentionState
from feedwatch.services.identity import filter_novel
from feedwatch.services.timestamps import parse_instant

logger = logging.getLogger(__name__)


def _sort_key(post: Post):
    return parse_instant(post.sortable_instant)


class RetentionStore:
    def __init__(self, kv_store: KeyValueStore, max_retained: int = MAX_RETAINED):
        self.kv_store = kv_store
        self.max_retained = max_retained
        self._lock = asyncio.Lock()

    async def _load(self) -> RetentionState:
        blob = await self.kv_store.get()
        if blob is None:
            return RetentionState()
        try:
            return RetentionState.model_validate(blob)
        except ValidationError as e:
            logger.warning(f"Discarding unreadable retention state: {e}")
            return RetentionState()

    async def _save(self, state: RetentionState) -> None:
        await self.kv_store.set(state.model_dump(mode="json"))

    async def get_state(self) -> RetentionState:
        async with self._lock:
            return await self._load()

    async def merge(self, candidate_posts: Iterable[Post]) -> int:
        """Add unseen posts, keep the newest ``max_retained``, return how many were new."""
        async with self._lock:
            state = await self._load()
            novel = filter_novel(candidate_posts, state.known_ids)
            if not novel:
                logger.debug("Merge found no new posts")
                return 0

            # sorted() is stable, so equal instants keep novel-before-existing order
            combined = sorted([*novel, *state.posts], key=_sort_key, reverse=True)
            retained = combined[: self.max_retained]

            new_state = RetentionState(
                posts=retained,
                last_fetch_instant=retained[0].sortable_instant if retained else None,
                is_first_fetch=False,
            )
            await self._save(new_state)

            logger.info(
                f"Merged {len(novel)} new posts; retaining {len(retained)} "
                f"(first fetch: {state.is_first_fetch})"
            )
            return len(novel)

    async def latest_instant(self) -> str | None:
        state = await self.get_state()
        return state.posts[0].sortable_instant if state.posts else None

    async def reset(self) -> None:
        async with self._lock:
            await self._save(RetentionState())
            logger.info("Retention state reset")
