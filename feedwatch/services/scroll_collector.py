"""Incremental scroll-and-read collection over a single page load.

One viewport rarely shows enough posts, so the collector repeatedly reads a
snapshot, keeps what it has not seen during this run, scrolls to the bottom
and waits for the feed to append more. The wait between steps is the only
suspension point.
"""

import asyncio
import enum
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Protocol

from feedwatch.config import (
    DEFAULT_SCROLL_DELAY,
    DEFAULT_SCROLL_MAX_ATTEMPTS,
    DEFAULT_SCROLL_MIN_TARGET,
)
from feedwatch.schemas.post import Post
from feedwatch.services.identity import filter_novel
from feedwatch.services.post_extractor import extract_posts

logger = logging.getLogger(__name__)


class FeedPage(Protocol):
    """What the collector needs from a rendered feed."""

    async def snapshot(self) -> list[str]: ...

    async def scroll_to_bottom(self) -> None: ...


class StopReason(str, enum.Enum):
    TARGET_REACHED = "target_reached"
    MAX_ATTEMPTS_REACHED = "max_attempts_reached"
    NO_NEW_CONTENT = "no_new_content"


@dataclass
class ScrollCollectorConfig:
    """Configuration for a scroll collection run."""

    min_target_count: int = DEFAULT_SCROLL_MIN_TARGET
    max_attempts: int = DEFAULT_SCROLL_MAX_ATTEMPTS
    inter_step_delay: float = DEFAULT_SCROLL_DELAY  # seconds


@dataclass
class CollectionResult:
    posts: list[Post] = field(default_factory=list)
    stop_reason: StopReason | None = None
    attempts: int = 0


class ScrollCollector:
    def __init__(
        self,
        config: ScrollCollectorConfig | None = None,
        extractor: Callable[[Sequence[str]], list[Post]] = extract_posts,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.config = config or ScrollCollectorConfig()
        self.extractor = extractor
        self.sleep = sleep

    def _check_stop(self, result: CollectionResult, novel_count: int) -> StopReason | None:
        if len(result.posts) >= self.config.min_target_count:
            return StopReason.TARGET_REACHED
        if result.attempts > 1 and novel_count == 0:
            return StopReason.NO_NEW_CONTENT
        if result.attempts >= self.config.max_attempts:
            return StopReason.MAX_ATTEMPTS_REACHED
        return None

    async def collect(self, page: FeedPage) -> CollectionResult:
        result = CollectionResult()
        seen_ids: set[str] = set()

        logger.info(
            f"Starting scroll collection: target {self.config.min_target_count} posts "
            f"or {self.config.max_attempts} attempts"
        )

        while result.stop_reason is None:
            snapshot = await page.snapshot()
            novel = filter_novel(self.extractor(snapshot), seen_ids)
            seen_ids.update(post.id for post in novel)
            result.posts.extend(novel)
            result.attempts += 1

            logger.debug(
                f"Scroll step {result.attempts}: {len(snapshot)} items in view, "
                f"{len(novel)} new, {len(result.posts)} collected"
            )

            result.stop_reason = self._check_stop(result, len(novel))
            if result.stop_reason is not None:
                break

            await page.scroll_to_bottom()
            await self.sleep(self.config.inter_step_delay)

        logger.info(
            f"Scroll collection finished: {len(result.posts)} posts after "
            f"{result.attempts} attempts ({result.stop_reason.value})",
            extra={"stop_reason": result.stop_reason.value},
        )
        return result
