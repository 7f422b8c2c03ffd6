"""
Per-target pipes over a channel session.

A pipe declares one target (queue or exchange) on a fresh session and can
then either push messages to it or consume from it. Pipes never recover:
when their session fails the owner discards them and opens a new one.
"""

import abc
import logging
from typing import Callable, Optional

from amqpstorm import Message, UriConnection

from rabbitrelay.config import RelayConfig
from rabbitrelay.rabbitmq.base import (
    ExchangeMessage,
    PayloadHandler,
    QueueMessage,
    encode_body,
)
from rabbitrelay.rabbitmq.config import ExchangeTarget, QueueTarget
from rabbitrelay.rabbitmq.session import ChannelSession, FailureCallback

logger = logging.getLogger(__name__)

PERSISTENT_DELIVERY_MODE = 2


class Pipe(abc.ABC):
    """
    Base class for RabbitMQ pipes.
    Owns its session exclusively and closes it on `close`.
    """

    def __init__(self, session: ChannelSession) -> None:
        self._session = session

    @classmethod
    def open(
        cls,
        broker_url: str,
        target,
        on_failure: Optional[FailureCallback] = None,
        connection_factory: Callable[[str], object] = UriConnection,
    ) -> "Pipe":
        """
        Open a session and declare the target on it.

        If the declaration fails the session is closed before the error propagates.
        """
        session = ChannelSession.open(
            broker_url, on_failure=on_failure, connection_factory=connection_factory
        )
        try:
            pipe = cls(session, target)
            pipe._declare()
        except Exception:
            session.close()
            raise
        return pipe

    @property
    def session(self) -> ChannelSession:
        return self._session

    @property
    def failed(self) -> bool:
        return self._session.failed

    @abc.abstractmethod
    def _declare(self) -> None:
        pass

    @abc.abstractmethod
    def send(self, message) -> None:
        """
        Push a message to the target.

        :raises Exception: Any failure; the session has been signalled if it is broken.
        """
        pass

    @abc.abstractmethod
    def consume(self, handler: PayloadHandler) -> None:
        """
        Start consuming from the target with prefetch 1.

        Every delivery is acknowledged before its body is passed to `handler`.
        """
        pass

    def close(self) -> None:
        self._session.close()

    def _start_consuming(self, queue_name: str, handler: PayloadHandler) -> None:
        channel = self._session.channel
        channel.basic.qos(prefetch_count=RelayConfig.PREFETCH_COUNT)

        def on_message(message: Message) -> None:
            # the broker considers the message delivered from here on
            message.ack()
            body = message.body
            if isinstance(body, str):
                body = body.encode("utf-8")
            handler(body)

        channel.basic.consume(callback=on_message, queue=queue_name, no_ack=False)
        self._session.start_consuming(name=f"consumer-{queue_name}")


class QueuePipe(Pipe):
    def __init__(self, session: ChannelSession, target: QueueTarget) -> None:
        super().__init__(session)
        self._target = target

    @property
    def target(self) -> QueueTarget:
        return self._target

    def _declare(self) -> None:
        options = self._target.options
        self._session.channel.queue.declare(
            queue=self._target.name,
            durable=options.durable,
            exclusive=options.exclusive,
            auto_delete=options.auto_delete,
            arguments=options.arguments,
        )
        logger.info("Queue declared: %s", self._target.name)

    def send(self, message: QueueMessage) -> None:
        self._session.check()
        properties = {}
        if message.persistent:
            properties["delivery_mode"] = PERSISTENT_DELIVERY_MODE
        self._session.channel.basic.publish(
            body=encode_body(message.payload),
            routing_key=self._target.name,
            exchange="",
            properties=properties,
        )
        logger.debug("Message sent to queue %s", self._target.name)

    def consume(self, handler: PayloadHandler) -> None:
        self._start_consuming(self._target.name, handler)
        logger.info(" [*] Waiting for messages in %s", self._target.name)


class ExchangePipe(Pipe):
    def __init__(self, session: ChannelSession, target: ExchangeTarget) -> None:
        super().__init__(session)
        self._target = target

    @property
    def target(self) -> ExchangeTarget:
        return self._target

    def _declare(self) -> None:
        options = self._target.options
        self._session.channel.exchange.declare(
            exchange=self._target.name,
            exchange_type=self._target.exchange_type.value,
            durable=options.durable,
            auto_delete=options.auto_delete,
            arguments=options.arguments,
        )
        logger.info("Exchange declared: %s", self._target.name)

    def send(self, message: ExchangeMessage) -> None:
        self._session.check()
        self._session.channel.basic.publish(
            body=encode_body(message.payload),
            routing_key=message.routing_key,
            exchange=self._target.name,
        )
        logger.debug(
            "Message published to exchange %s with routing key %s",
            self._target.name,
            message.routing_key,
        )

    def consume(self, handler: PayloadHandler) -> None:
        channel = self._session.channel

        # server-named queue, removed by the broker when this connection goes away
        result = channel.queue.declare(queue="", exclusive=True)
        queue_name = result["queue"]
        logger.info("Queue declared: %s", queue_name)

        for routing_key in self._target.routing_keys:
            channel.queue.bind(
                queue=queue_name,
                exchange=self._target.name,
                routing_key=routing_key,
            )
            logger.info(
                "Queue %s bound to exchange %s with routing key '%s'",
                queue_name,
                self._target.name,
                routing_key,
            )

        self._start_consuming(queue_name, handler)
        logger.info(" [*] Waiting for messages in exchange %s", self._target.name)
