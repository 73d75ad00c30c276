"""In-process message bus.

``send`` delivers to the single handler registered for the message type and
returns its immediate response; it raises ``NoListenerError`` when nobody is
listening. ``broadcast`` is fire-and-forget: it fans out to every observer
queue and to the handler if one exists, and a missing listener is not an
error.
"""

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import Any

from feedwatch.config import OBSERVER_QUEUE_SIZE
from feedwatch.core.errors import NoListenerError
from feedwatch.schemas.messages import Message

logger = logging.getLogger(__name__)

Handler = Callable[[Message], Awaitable[Any]]


class MessageBus:
    def __init__(self, queue_size: int = OBSERVER_QUEUE_SIZE):
        self.queue_size = queue_size
        self._handlers: dict[str, Handler] = {}
        self._observers: set[asyncio.Queue] = set()

    def register(self, message_type: str, handler: Handler) -> None:
        if message_type in self._handlers:
            logger.warning(f"Replacing handler for {message_type}")
        self._handlers[message_type] = handler

    def unregister(self, message_type: str) -> None:
        self._handlers.pop(message_type, None)

    async def send(self, message: Message) -> Any:
        handler = self._handlers.get(message.type)
        if handler is None:
            raise NoListenerError(message.type)
        return await handler(message)

    async def broadcast(self, message: Message) -> None:
        for queue in list(self._observers):
            if queue.full():
                # Slow observer: drop its oldest event
                queue.get_nowait()
            queue.put_nowait(message)

        handler = self._handlers.get(message.type)
        if handler is None:
            logger.debug(f"Broadcast {message.type} had no handler")
            return
        try:
            await handler(message)
        except Exception as e:
            logger.error(f"Handler for broadcast {message.type} failed: {e}", exc_info=True)

    @asynccontextmanager
    async def observe(self) -> AsyncIterator[asyncio.Queue]:
        """Receive every broadcast message while the context is open."""
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.queue_size)
        self._observers.add(queue)
        try:
            yield queue
        finally:
            self._observers.discard(queue)

    @property
    def observer_count(self) -> int:
        return len(self._observers)
