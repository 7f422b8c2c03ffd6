"""
RabbitMQ receiver implementations.

This module contains receivers that stay subscribed to one queue or exchange
across broker outages. A periodic health check opens the consuming pipe
whenever none is live, and a session failure simply drops the pipe so the
next check reconnects from scratch.
"""

import logging
import threading
from typing import Callable, Optional

from amqpstorm import UriConnection

from rabbitrelay.config import ResilienceConfig
from rabbitrelay.rabbitmq.base import MessageReceiverInterface
from rabbitrelay.rabbitmq.config import BrokerTarget, ExchangeTarget, QueueTarget
from rabbitrelay.rabbitmq.pipe import ExchangePipe, Pipe, QueuePipe
from rabbitrelay.rabbitmq.session import FailureSignal
from rabbitrelay.rabbitmq.stream import MessageStream
from rabbitrelay.util import PeriodicTask

logger = logging.getLogger(__name__)


class HealthCheckedReceiver(MessageReceiverInterface):
    """
    Base class for receivers with automatic reconnection.

    Every delivery is acknowledged to the broker before its payload is
    emitted on `messages`, so what subscribers do with it has no effect on
    the broker. Deliveries in flight when the connection drops are not retried.
    """

    PIPE_CLASS: type[Pipe] = None

    def __init__(
        self,
        broker_url: str,
        target: BrokerTarget,
        config: Optional[ResilienceConfig] = None,
        connection_factory: Callable[[str], object] = UriConnection,
        auto_start: bool = True,
    ) -> None:
        self._broker_url = broker_url
        self._target = target
        self._config = config or ResilienceConfig()
        self._connection_factory = connection_factory

        self._messages = MessageStream(name=f"{target.name}-messages")
        self._pipe: Optional[Pipe] = None
        self._lock = threading.RLock()
        self._connecting = False
        self._is_shutting_down = False

        self._health_checker = PeriodicTask(
            name=f"rmq-health-check-{target.name}",
            interval=self._config.health_check_interval,
            action=self.health_check,
        )
        if auto_start:
            self._health_checker.start()

        logger.info("%s created for %s", self.__class__.__name__, self._target)

    @property
    def messages(self) -> MessageStream:
        return self._messages

    @property
    def target(self) -> BrokerTarget:
        return self._target

    @property
    def is_connected(self) -> bool:
        with self._lock:
            return self._pipe is not None

    def start(self) -> None:
        """Start the periodic health check if it was not started on construction."""
        self._health_checker.start()

    def health_check(self) -> None:
        """
        Open the consuming pipe if none is live.

        Returns immediately while connected, closed, or while another attempt
        is still in flight.
        """
        # public, so a direct call can overlap a timer tick
        with self._lock:
            if self._pipe is not None or self._connecting or self._is_shutting_down:
                return
            self._connecting = True

        logger.info("Health checker: trying to create receiver for %s", self._target)
        pipe = None
        try:
            pipe = self.PIPE_CLASS.open(
                self._broker_url,
                self._target,
                on_failure=self._on_session_failure,
                connection_factory=self._connection_factory,
            )
            pipe.consume(self._messages.emit)
        except Exception as e:
            logger.error("Error connecting to AMQP broker: %s", e)
            if pipe is not None:
                pipe.close()
            with self._lock:
                self._connecting = False
            return

        with self._lock:
            self._connecting = False
            if self._is_shutting_down or pipe.failed:
                # closed or lost while the attempt was finishing
                discard = True
            else:
                self._pipe = pipe
                discard = False

        if discard:
            pipe.close()
        else:
            logger.info("Receiver connected to %s", self._target)

    def _on_session_failure(self, signal: FailureSignal) -> None:
        logger.error("Channel error on %s (%s)", self._target, signal.value)
        with self._lock:
            pipe = self._pipe
            if pipe is None or not pipe.failed:
                return
            self._pipe = None

        try:
            pipe.close()
        except Exception as e:
            logger.debug("Error closing failed pipe: %s", e)

    def close(self) -> None:
        """
        Stop the health check and close the pipe if connected.
        """
        logger.info("Shutting down %s for %s...", self.__class__.__name__, self._target)
        with self._lock:
            self._is_shutting_down = True

        self._health_checker.stop()

        with self._lock:
            pipe = self._pipe
            self._pipe = None

        if pipe is not None:
            pipe.close()

        logger.info("%s shutdown complete", self.__class__.__name__)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


class QueueReceiver(HealthCheckedReceiver):
    """Consumes from one named queue."""

    PIPE_CLASS = QueuePipe


class ExchangeReceiver(HealthCheckedReceiver):
    """
    Consumes from an exchange through an exclusive server-named queue
    bound with every routing key of the target.
    """

    PIPE_CLASS = ExchangePipe


def create_queue_receiver(
    broker_url: str,
    queue: QueueTarget,
    config: Optional[ResilienceConfig] = None,
) -> QueueReceiver:
    return QueueReceiver(broker_url, queue, config=config)


def create_exchange_receiver(
    broker_url: str,
    exchange: ExchangeTarget,
    config: Optional[ResilienceConfig] = None,
) -> ExchangeReceiver:
    return ExchangeReceiver(broker_url, exchange, config=config)
