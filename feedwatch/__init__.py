"""FeedWatch: keep a bounded window of the newest posts from a browser-rendered feed."""

__version__ = "0.1.0"
