import logging

from pydantic import BaseModel

from rabbitrelay.rabbitmq.base import (
    PERSISTENT,
    ExchangeMessage,
    MessageSenderInterface,
    QueueMessage,
)

logger = logging.getLogger(__name__)


class PubServiceInterface:
    def __init__(self, sender: MessageSenderInterface) -> None:
        self._sender = sender
        logger.info(
            "%s initialized with sender %s",
            self.__class__.__name__,
            self._sender,
        )

    def close(self) -> None:
        self._sender.close()


class QueuePubService(PubServiceInterface):
    def publish(self, model: BaseModel, persistent: bool = PERSISTENT) -> None:
        """
        Send a model to the queue of the underlying sender.

        :param model: The model to send, serialized as JSON.
        :param persistent: Whether the broker should write the message to disk.
        """
        message = model.model_dump_json()
        self._sender.send(QueueMessage(payload=message, persistent=persistent))


class ExchangePubService(PubServiceInterface):
    def publish(self, routing_key: str, model: BaseModel) -> None:
        """
        Publish a model to the exchange of the underlying sender.

        :param routing_key: The routing key to publish with.
        :param model: The model to publish, serialized as JSON.
        """
        message = model.model_dump_json()
        self._sender.send(ExchangeMessage(routing_key=routing_key, payload=message))
