"""Logging setup for FeedWatch.

Pipeline code attaches tab and scrape context through ``extra``:

    logger.info(f"Requesting scrape from tab {tab_id}", extra={"tab_id": tab_id})

Production emits one JSON object per line with those keys as fields; the
console format appends them as a ``key=value`` suffix.
"""

import json
import logging
import sys
from datetime import UTC, datetime

# Keys pipeline code passes via logger.*(..., extra={...})
CONTEXT_FIELDS = ("tab_id", "scrape_id", "stop_reason")

NOISY_LOGGERS = ("uvicorn.access", "asyncio", "playwright", "websockets")


def _context(record: logging.LogRecord) -> dict:
    return {key: getattr(record, key) for key in CONTEXT_FIELDS if hasattr(record, key)}


class JSONFormatter(logging.Formatter):
    """One JSON object per record, for log shippers."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
            **_context(record),
        }
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class ConsoleFormatter(logging.Formatter):
    """Human-readable lines with pipeline context appended."""

    def __init__(self):
        super().__init__("%(asctime)s %(levelname)-8s [%(name)s] %(message)s", datefmt="%H:%M:%S")

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        context = _context(record)
        if not context:
            return line
        suffix = " ".join(f"{key}={value}" for key, value in context.items())
        first, _, rest = line.partition("\n")
        return f"{first} ({suffix})" + (f"\n{rest}" if rest else "")


def setup_logging(app_env: str = "development", log_level: str = "INFO") -> None:
    """Replace root handlers with one stdout handler for the environment."""
    root = logging.getLogger()
    root.setLevel(log_level)
    for handler in root.handlers[:]:
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter() if app_env == "production" else ConsoleFormatter())
    root.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    # Redis connection chatter is useful while developing against a local server
    logging.getLogger("redis").setLevel(logging.INFO if app_env == "development" else logging.WARNING)
