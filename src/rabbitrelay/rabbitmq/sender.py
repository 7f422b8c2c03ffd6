"""
RabbitMQ sender implementations.

This module contains senders that deliver messages to one fixed queue or
exchange without ever blocking the caller on a broker outage. Messages for
durable targets that cannot be delivered are kept in a bounded in-memory
queue and resent in order by a periodic retry task.
"""

import logging
import threading
from collections import deque
from typing import Callable, Optional

from amqpstorm import UriConnection

from rabbitrelay.config import ResilienceConfig
from rabbitrelay.exceptions import MessageDiscardedError
from rabbitrelay.rabbitmq.base import MessageSenderInterface, OutboundMessage
from rabbitrelay.rabbitmq.config import BrokerTarget, ExchangeTarget, QueueTarget
from rabbitrelay.rabbitmq.pipe import ExchangePipe, Pipe, QueuePipe
from rabbitrelay.rabbitmq.session import FailureSignal
from rabbitrelay.util import PeriodicTask

logger = logging.getLogger(__name__)


class RetryingSender(MessageSenderInterface):
    """
    Base class for senders with an outbound retry buffer.

    Idle: the outbound queue is empty and every `send` tries the broker
    directly. Buffering: the queue holds messages waiting for the retry task,
    and new messages are appended behind them so the original order is kept.
    """

    PIPE_CLASS: type[Pipe] = None

    def __init__(
        self,
        broker_url: str,
        target: BrokerTarget,
        config: Optional[ResilienceConfig] = None,
        connection_factory: Callable[[str], object] = UriConnection,
    ) -> None:
        self._broker_url = broker_url
        self._target = target
        self._config = config or ResilienceConfig()
        self._connection_factory = connection_factory

        self._pipe: Optional[Pipe] = None
        self._outbound: deque = deque()
        # guards the outbound queue only, never held across broker I/O
        self._lock = threading.RLock()
        # serializes deliveries and guards the pipe
        self._delivery_lock = threading.RLock()

        self._retry_task = PeriodicTask(
            name=f"rmq-retry-{target.name}",
            interval=self._config.retry_interval,
            action=self._retry_send,
        )

        logger.info("%s created for %s", self.__class__.__name__, self._target)

    @property
    def target(self) -> BrokerTarget:
        return self._target

    @property
    def outbound_size(self) -> int:
        with self._lock:
            return len(self._outbound)

    @property
    def is_buffering(self) -> bool:
        return self.outbound_size > 0

    def _is_queue_full(self) -> bool:
        return len(self._outbound) >= self._config.max_outstanding_messages

    def send(self, message: OutboundMessage) -> None:
        """
        Deliver a message now, or buffer it if the target is durable.

        While messages are waiting the call only appends to the outbound
        queue, so it never waits on a retry tick talking to the broker.

        :raises MessageDiscardedError: If messages are already waiting and the
            outbound queue is full. The message is neither queued nor sent.
        """
        with self._lock:
            if self._buffer_if_waiting(message):
                return

        with self._delivery_lock:
            # another send may have started buffering while this one waited
            with self._lock:
                if self._buffer_if_waiting(message):
                    return

            if self._try_send(message):
                return

            with self._lock:
                if self._target.is_durable and not self._is_queue_full():
                    self._outbound.append(message)
                    logger.error(
                        "Error sending message to %s. Saving in memory.", self._target
                    )
                    self._retry_task.start()
                else:
                    logger.error("Error sending message to %s. Discarded.", self._target)

    def _buffer_if_waiting(self, message: OutboundMessage) -> bool:
        if not self._outbound:
            return False
        if self._is_queue_full():
            error = MessageDiscardedError(self._target.name, len(self._outbound))
            logger.error("%s", error)
            raise error
        self._outbound.append(message)
        return True

    def _try_send(self, message: OutboundMessage) -> bool:
        with self._delivery_lock:
            try:
                if self._pipe is None:
                    self._pipe = self.PIPE_CLASS.open(
                        self._broker_url,
                        self._target,
                        on_failure=self._on_session_failure,
                        connection_factory=self._connection_factory,
                    )
                self._pipe.send(message)
                return True
            except Exception as e:
                logger.error("Error sending to %s: %s", self._target, e)
                self._invalidate_pipe()
                return False

    def _retry_send(self) -> None:
        with self._delivery_lock:
            logger.info(
                "Retrying to send to %s. Output queue size: %d",
                self._target,
                self.outbound_size,
            )

            while True:
                with self._lock:
                    if not self._outbound:
                        self._retry_task.stop()
                        return
                    message = self._outbound[0]

                # stays at the head until delivered
                if not self._try_send(message):
                    return

                with self._lock:
                    self._outbound.popleft()

    def _on_session_failure(self, signal: FailureSignal) -> None:
        logger.warning("Sender session for %s lost (%s)", self._target, signal.value)
        with self._delivery_lock:
            if self._pipe is not None and self._pipe.failed:
                self._invalidate_pipe()

    def _invalidate_pipe(self) -> None:
        pipe = self._pipe
        self._pipe = None
        if pipe is not None:
            try:
                pipe.close()
            except Exception as e:
                logger.debug("Error closing failed pipe: %s", e)

    def close(self) -> None:
        """
        Stop the retry task and close the pipe.
        Messages still waiting in the outbound queue are dropped.
        """
        logger.info("Shutting down %s for %s...", self.__class__.__name__, self._target)
        self._retry_task.stop()

        with self._delivery_lock:
            with self._lock:
                if self._outbound:
                    logger.warning(
                        "Dropping %d buffered messages for %s",
                        len(self._outbound),
                        self._target,
                    )
                    self._outbound.clear()

            pipe = self._pipe
            self._pipe = None
            if pipe is not None:
                pipe.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


class QueueSender(RetryingSender):
    """Sends `QueueMessage` payloads straight to one queue."""

    PIPE_CLASS = QueuePipe


class ExchangeSender(RetryingSender):
    """Publishes `ExchangeMessage` payloads to one exchange."""

    PIPE_CLASS = ExchangePipe


def create_queue_sender(
    broker_url: str,
    queue: QueueTarget,
    config: Optional[ResilienceConfig] = None,
) -> QueueSender:
    return QueueSender(broker_url, queue, config=config)


def create_exchange_sender(
    broker_url: str,
    exchange: ExchangeTarget,
    config: Optional[ResilienceConfig] = None,
) -> ExchangeSender:
    return ExchangeSender(broker_url, exchange, config=config)
