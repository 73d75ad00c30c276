"""Feed location matching."""

# Canonical home timeline URLs; the first is used when a new tab is opened
FEED_HOME_URLS = ("https://x.com/home", "https://twitter.com/home")


def matches_prefixes(url: str | None, prefixes: tuple[str, ...]) -> bool:
    """Check if a URL starts with any of the prefixes (query strings allowed)."""
    if not url:
        return False
    return url.startswith(prefixes)
