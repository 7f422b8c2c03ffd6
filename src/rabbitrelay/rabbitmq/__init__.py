"""
RabbitMQ resilience layer.

This package turns amqpstorm connections into senders and receivers that
survive broker and network outages without the caller reconnecting.

Public API:
    - QueueTarget, ExchangeTarget: Immutable descriptions of what to declare
    - QueueMessage, ExchangeMessage: Outbound message types
    - QueueSender, ExchangeSender: Senders with an in-memory retry buffer
    - QueueReceiver, ExchangeReceiver: Receivers with a reconnecting health check
    - MessageStream: Event stream of delivered payloads
"""

from .base import (
    NOT_PERSISTENT,
    PERSISTENT,
    ExchangeMessage,
    MessageReceiverInterface,
    MessageSenderInterface,
    QueueMessage,
)
from .config import (
    ExchangeOptions,
    ExchangeTarget,
    ExchangeType,
    QueueOptions,
    QueueTarget,
)
from .receiver import (
    ExchangeReceiver,
    HealthCheckedReceiver,
    QueueReceiver,
    create_exchange_receiver,
    create_queue_receiver,
)
from .sender import (
    ExchangeSender,
    QueueSender,
    RetryingSender,
    create_exchange_sender,
    create_queue_sender,
)
from .session import ChannelSession, FailureSignal
from .stream import MessageStream

__all__ = [
    # Abstract base classes
    "MessageSenderInterface",
    "MessageReceiverInterface",
    # Targets
    "QueueOptions",
    "QueueTarget",
    "ExchangeOptions",
    "ExchangeTarget",
    "ExchangeType",
    # Data types
    "QueueMessage",
    "ExchangeMessage",
    "PERSISTENT",
    "NOT_PERSISTENT",
    # Sessions
    "ChannelSession",
    "FailureSignal",
    # Concrete implementations
    "RetryingSender",
    "QueueSender",
    "ExchangeSender",
    "HealthCheckedReceiver",
    "QueueReceiver",
    "ExchangeReceiver",
    "MessageStream",
    # Factories
    "create_queue_sender",
    "create_exchange_sender",
    "create_queue_receiver",
    "create_exchange_receiver",
]
