"""
Abstract base classes and common types for RabbitMQ messaging.

This module defines the interfaces for message senders and receivers,
along with the outbound message types used across the RabbitMQ implementation.
"""

import abc
import json
from typing import Any, Callable, NamedTuple, Union

from pydantic import BaseModel

PERSISTENT = True
NOT_PERSISTENT = False

# Called with the raw body of every delivered message
PayloadHandler = Callable[[bytes], None]


class QueueMessage(NamedTuple):
    """Message sent straight to a queue."""

    payload: Any
    persistent: bool = NOT_PERSISTENT


class ExchangeMessage(NamedTuple):
    """Message published to an exchange with routing information."""

    routing_key: str
    payload: Any


OutboundMessage = Union[QueueMessage, ExchangeMessage]


def encode_body(payload: Any) -> bytes:
    """
    Convert an outbound payload to the bytes put on the wire.

    :param payload: bytes are sent as-is, str is UTF-8 encoded without JSON
        quoting (`"hi"` goes out as `hi`, not `"hi"`), pydantic models are
        serialized with `model_dump_json`, anything else is JSON encoded.
    :return: The message body.
    """
    if isinstance(payload, (bytes, bytearray)):
        return bytes(payload)
    if isinstance(payload, str):
        return payload.encode("utf-8")
    if isinstance(payload, BaseModel):
        return payload.model_dump_json().encode("utf-8")
    return json.dumps(payload).encode("utf-8")


class MessageSenderInterface(abc.ABC):
    """
    Abstract base class for message senders.
    This class defines the interface for sending messages.
    """

    @abc.abstractmethod
    def send(self, message: OutboundMessage) -> None:
        """
        Send a message to the target of this sender.

        Never blocks waiting for the broker to come back.
        """
        pass

    @abc.abstractmethod
    def close(self) -> None:
        """
        Stop retrying and release the broker connection.
        Buffered messages are not flushed.
        """
        pass


class MessageReceiverInterface(abc.ABC):
    """
    Abstract base class for message receivers.
    This class defines the interface for receiving messages.
    """

    @property
    @abc.abstractmethod
    def messages(self):
        """
        Stream emitting the raw body of every delivered message.
        """
        pass

    @abc.abstractmethod
    def close(self) -> None:
        """
        Stop reconnecting and release the broker connection.
        """
        pass
