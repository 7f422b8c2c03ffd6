import logging
import threading

from rabbitrelay.rabbitmq.base import PayloadHandler

logger = logging.getLogger(__name__)


class MessageStream:
    """
    Fan-out of delivered payloads to local subscribers.

    Handlers run synchronously, in subscription order, on the thread that
    delivered the message. A failing handler is logged and skipped.
    """

    def __init__(self, name: str = "messages") -> None:
        self._name = name
        self._handlers: list[PayloadHandler] = []
        self._lock = threading.Lock()

    def subscribe(self, handler: PayloadHandler) -> PayloadHandler:
        with self._lock:
            if handler not in self._handlers:
                self._handlers.append(handler)
        return handler

    def unsubscribe(self, handler: PayloadHandler) -> None:
        with self._lock:
            if handler in self._handlers:
                self._handlers.remove(handler)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._handlers)

    def emit(self, payload: bytes) -> None:
        with self._lock:
            handlers = self._handlers.copy()

        for handler in handlers:
            try:
                handler(payload)
            except Exception as e:
                logger.exception("Error in %s subscriber %s: %s", self._name, handler, e)
