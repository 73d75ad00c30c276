import logging
from collections.abc import Iterable, Sequence
from datetime import datetime, tzinfo

from bs4 import BeautifulSoup, Tag

from feedwatch.schemas.post import Post
from feedwatch.services.ad_filters import DEFAULT_AD_FILTERS, AdFilter, is_advertisement
from feedwatch.services.identity import compute_identity
from feedwatch.services.timestamps import TimestampSource, normalize_timestamp

logger = logging.getLogger(__name__)

AUTHOR_SELECTOR = '[data-testid="User-Name"]'
CONTENT_SELECTOR = '[data-testid="tweetText"]'
_SEPARATORS = {"·", "•"}


def _parse_item(fragment: str) -> Tag:
    soup = BeautifulSoup(fragment, "html.parser")
    return soup.find("article") or soup


def extract_author(item: Tag) -> str | None:
    """Return ``"Display Name (@handle)"``, or whichever half is present."""
    block = item.select_one(AUTHOR_SELECTOR)
    if block is None:
        return None

    name = None
    handle = None
    for text in block.stripped_strings:
        if text in _SEPARATORS:
            continue
        if text.startswith("@"):
            handle = handle or text
        elif name is None:
            name = text

    if name and handle:
        return f"{name} ({handle})"
    return name or handle


def extract_content(item: Tag) -> str | None:
    element = item.select_one(CONTENT_SELECTOR)
    if element is None:
        return None
    text = element.get_text().strip()
    return text or None


def extract_time(item: Tag) -> tuple[str | None, str | None]:
    """Return the ``datetime`` attribute and visible text of the item's ``<time>``."""
    element = item.find("time")
    if element is None:
        return None, None
    return element.get("datetime"), element.get_text(strip=True) or None


def extract_post(
    fragment: str,
    *,
    now: datetime | None = None,
    ad_filters: Iterable[AdFilter] = DEFAULT_AD_FILTERS,
    tz: tzinfo | None = None,
) -> Post | None:
    """Build a Post from one feed item, or None for ads and incomplete items."""
    item = _parse_item(fragment)
    if is_advertisement(item, ad_filters):
        logger.debug("Filtered out a promoted feed item")
        return None

    author = extract_author(item)
    content = extract_content(item)
    if not author or not content:
        return None

    raw_datetime, relative_text = extract_time(item)
    stamp = normalize_timestamp(raw_datetime, relative_text, now=now, tz=tz)

    return Post(
        id=compute_identity(
            author,
            content,
            stamp.sortable_instant,
            precise=stamp.source is TimestampSource.ABSOLUTE,
        ),
        author=author,
        content=content,
        display_timestamp=stamp.display_timestamp,
        sortable_instant=stamp.sortable_instant,
    )


def extract_posts(
    snapshot: Sequence[str],
    *,
    now: datetime | None = None,
    ad_filters: Iterable[AdFilter] = DEFAULT_AD_FILTERS,
    tz: tzinfo | None = None,
) -> list[Post]:
    """Extract posts from one snapshot (feed-item HTML fragments, document order).

    A malformed item is skipped; the rest of the snapshot is still read.
    """
    filters = tuple(ad_filters)
    posts: list[Post] = []
    for index, fragment in enumerate(snapshot):
        try:
            post = extract_post(fragment, now=now, ad_filters=filters, tz=tz)
        except Exception as e:
            logger.debug(f"Error extracting feed item {index}: {e}")
            continue
        if post is not None:
            posts.append(post)
    return posts
