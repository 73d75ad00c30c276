"""Exceptions raised across the scrape/poll pipeline.

Observers only ever see these as plain strings (``FetchError.error``); the
types exist so the orchestrator can tell a vanished tab from a transient
delivery failure.
"""


class FeedWatchError(Exception):
    """Base class for all FeedWatch errors."""


class TabHostError(FeedWatchError):
    """The browser refused or failed a tab operation."""


class TabNotFoundError(TabHostError):
    """The referenced tab no longer exists."""

    def __init__(self, tab_id: int):
        self.tab_id = tab_id
        super().__init__(f"No tab with id: {tab_id}")


class ScrapeDeliveryError(FeedWatchError):
    """A scrape request could not be delivered to the tab."""


class NoListenerError(FeedWatchError):
    """A message was sent but nobody is registered for its type."""

    def __init__(self, message_type: str):
        self.message_type = message_type
        super().__init__(f"Could not establish connection. Receiving end does not exist ({message_type})")
