"""Ad / promotion detection for feed items.

Each filter is a predicate over one parsed feed item; an item matching any
filter is dropped before extraction. The markup these rely on changes often,
so callers may pass their own tuple of filters to the extractor.
"""

import re
from collections.abc import Callable, Iterable
from urllib.parse import parse_qs, urlparse

from bs4 import Tag

AdFilter = Callable[[Tag], bool]

AD_LABELS = {"promoted", "sponsored", "ad", "advertisement"}

CLICK_TRACKING_PARAMS = {"twclid", "gclid", "fbclid", "dclid", "msclkid"}

_AD_WORD_RE = re.compile(r"\b(ad|ads|promoted|sponsored|advertisement)\b", re.IGNORECASE)
_FROM_DOMAIN_RE = re.compile(r"^From\s+[\w.-]+\.[a-z]{2,}$", re.IGNORECASE)


def has_promoted_label(item: Tag) -> bool:
    """Social-context label or a standalone span reading "Promoted" / "Ad"."""
    social_context = item.select_one('[data-testid="socialContext"]')
    if social_context:
        words = {w.lower() for w in social_context.get_text(" ", strip=True).split()}
        if words & AD_LABELS:
            return True
    for span in item.find_all("span"):
        if span.find_parent(attrs={"data-testid": "tweetText"}):
            continue
        if span.get_text(strip=True).lower() in AD_LABELS:
            return True
    return False


def _has_tracking_param(href: str) -> bool:
    try:
        query = parse_qs(urlparse(href).query)
    except ValueError:
        return False
    return any(key in CLICK_TRACKING_PARAMS for key in query)


def has_tracked_external_card(item: Tag) -> bool:
    """External link card pointing through a click tracker or "From <domain>"."""
    for card in item.select('[data-testid="card.wrapper"]'):
        for link in card.find_all("a", href=True):
            if _has_tracking_param(link["href"]):
                return True
            if _FROM_DOMAIN_RE.match(link.get_text(" ", strip=True)):
                return True
        for span in card.find_all("span"):
            if _FROM_DOMAIN_RE.match(span.get_text(" ", strip=True)):
                return True
    return False


def has_video_placement_tracking(item: Tag) -> bool:
    return item.select_one('[data-testid="placementTracking"]') is not None


def has_ad_aria_label(item: Tag) -> bool:
    """aria-label naming an ad as a whole word ("Add to thread" is fine)."""
    for element in [item, *item.find_all(attrs={"aria-label": True})]:
        label = element.get("aria-label")
        if label and _AD_WORD_RE.search(label):
            return True
    return False


DEFAULT_AD_FILTERS: tuple[AdFilter, ...] = (
    has_promoted_label,
    has_tracked_external_card,
    has_video_placement_tracking,
    has_ad_aria_label,
)


def is_advertisement(item: Tag, filters: Iterable[AdFilter] = DEFAULT_AD_FILTERS) -> bool:
    return any(check(item) for check in filters)
