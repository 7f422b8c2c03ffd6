"""
Shared pytest fixtures and utilities for testing.

This module provides reusable testing utilities that can be used across different test modules.

## Fake Broker Infrastructure

`FakeBroker` stands in for a RabbitMQ server behind amqpstorm's connection
objects. Senders and receivers take a `connection_factory`, so tests pass
`broker.connect` and never open a socket.

- `FakeBroker.connect(url)`: returns a `FakeConnection`, or raises
  `AMQPConnectionError` while `broker.reachable` is False. When
  `broker.connect_gate` is set to a `threading.Event`, connecting blocks on it.
- Publishing routes synchronously: the default exchange delivers to the queue
  named by the routing key, other exchanges deliver to every queue bound with
  an identical routing key. Deliveries to a queue with a consumer call the
  consumer callback on the publishing thread.
- `broker.fail_connections()`: breaks every open connection; blocked
  `start_consuming` calls raise `AMQPConnectionError`.

### Inspection

- `broker.published`: list of `(exchange, routing_key, body, properties)`
- `broker.published_bodies`: just the bodies, in publish order
- `broker.acked`: bodies acknowledged by consumers
- `broker.connect_attempts` / `broker.connections`

## Mock Sender

`MockMessageSender` implements `MessageSenderInterface` and records every
message, for testing services without a broker.
"""

import itertools
import threading
import time
from datetime import timedelta
from typing import Callable, List
from unittest.mock import Mock

import pytest
from amqpstorm import AMQPChannelError, AMQPConnectionError

from rabbitrelay.config import ResilienceConfig
from rabbitrelay.rabbitmq.base import MessageSenderInterface

# long enough that background tasks never fire during a test
MANUAL_INTERVAL = timedelta(hours=1)


def wait_for(predicate: Callable[[], bool], timeout: float = 2.0, interval: float = 0.01) -> bool:
    """Poll `predicate` until it returns True or `timeout` seconds pass."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


class FakeMessage:
    def __init__(self, broker: "FakeBroker", body: bytes):
        self._broker = broker
        self.body = body
        self.acked = False

    def ack(self):
        self.acked = True
        self._broker.acked.append(self.body)


class FakeChannel:
    def __init__(self, connection: "FakeConnection"):
        self.connection = connection
        self.broker = connection.broker
        self.is_open = True
        self._stop = threading.Event()

        self.basic = Mock()
        self.basic.publish.side_effect = self._publish
        self.basic.consume.side_effect = self._consume

        self.queue = Mock()
        self.queue.declare.side_effect = self._declare_queue
        self.queue.bind.side_effect = self._bind

        self.exchange = Mock()

    def check_for_errors(self):
        self.connection.check_for_errors()
        if not self.is_open:
            raise AMQPChannelError("channel was closed")

    def _publish(self, body, routing_key, exchange="", properties=None, **kwargs):
        self.check_for_errors()
        self.broker.route(exchange, routing_key, body, properties)

    def _declare_queue(self, queue="", **kwargs):
        name = queue or self.broker.next_queue_name()
        self.broker.queues.setdefault(name, [])
        return {"queue": name}

    def _bind(self, queue="", exchange="", routing_key="", **kwargs):
        self.broker.bindings.append((exchange, routing_key, queue))

    def _consume(self, callback=None, queue="", no_ack=False, **kwargs):
        self.broker.consumers[queue] = (self, callback)
        for body in self.broker.queues.pop(queue, []):
            callback(FakeMessage(self.broker, body))
        self.broker.queues[queue] = []
        return f"ctag-{queue}"

    def start_consuming(self):
        self._stop.wait()
        if self.connection.failed:
            raise AMQPConnectionError("connection lost")

    def stop_consuming(self):
        self._stop.set()

    def close(self):
        self.is_open = False
        self._stop.set()


class FakeConnection:
    def __init__(self, broker: "FakeBroker", url: str):
        self.broker = broker
        self.url = url
        self.is_open = True
        self.failed = False
        self.channels: List[FakeChannel] = []

    def channel(self):
        channel = FakeChannel(self)
        self.channels.append(channel)
        return channel

    def check_for_errors(self):
        if self.failed:
            raise AMQPConnectionError("connection lost")
        if not self.is_open:
            raise AMQPConnectionError("connection was closed")

    def fail(self):
        self.failed = True
        self.is_open = False
        for channel in self.channels:
            channel.is_open = False
            channel._stop.set()

    def close(self):
        self.is_open = False
        for channel in self.channels:
            channel.close()


class FakeBroker:
    def __init__(self):
        self.reachable = True
        self.connect_gate = None
        self.connect_attempts = 0
        self.connections: List[FakeConnection] = []

        self.published = []
        self.queues = {}
        self.bindings = []
        self.consumers = {}
        self.acked = []

        self._lock = threading.Lock()
        self._queue_counter = itertools.count(1)

    def connect(self, url: str) -> FakeConnection:
        with self._lock:
            self.connect_attempts += 1
        if self.connect_gate is not None:
            self.connect_gate.wait(timeout=5)
        if not self.reachable:
            raise AMQPConnectionError("broker unreachable")
        connection = FakeConnection(self, url)
        with self._lock:
            self.connections.append(connection)
        return connection

    def next_queue_name(self) -> str:
        return f"amq.gen-{next(self._queue_counter)}"

    def route(self, exchange, routing_key, body, properties=None):
        self.published.append((exchange, routing_key, body, properties))
        if exchange == "":
            queues = [routing_key]
        else:
            queues = [
                queue
                for bound_exchange, key, queue in self.bindings
                if bound_exchange == exchange and key == routing_key
            ]
        for queue in queues:
            self._deliver(queue, body)

    def _deliver(self, queue, body):
        consumer = self.consumers.get(queue)
        if consumer is None or not consumer[0].is_open:
            self.queues.setdefault(queue, []).append(body)
            return
        _, callback = consumer
        callback(FakeMessage(self, body))

    def fail_connections(self):
        for connection in self.connections:
            if connection.is_open:
                connection.fail()

    @property
    def published_bodies(self) -> list:
        return [body for _, _, body, _ in self.published]

    @property
    def open_connections(self) -> List[FakeConnection]:
        return [c for c in self.connections if c.is_open]


class MockMessageSender(MessageSenderInterface):
    """
    Mock implementation of MessageSenderInterface for testing.

    This mock tracks all sent messages and allows inspection of what was sent.
    """

    def __init__(self):
        self.sent_messages = []
        self.send_call_count = 0
        self.closed = False

    def send(self, message) -> None:
        self.sent_messages.append(message)
        self.send_call_count += 1

    def close(self) -> None:
        self.closed = True

    def get_last_message(self):
        if not self.sent_messages:
            raise ValueError("No messages have been sent")
        return self.sent_messages[-1]


@pytest.fixture
def broker():
    return FakeBroker()


@pytest.fixture
def manual_config():
    """Config whose background tasks never fire on their own."""
    return ResilienceConfig(
        retry_interval=MANUAL_INTERVAL,
        health_check_interval=MANUAL_INTERVAL,
    )


@pytest.fixture
def mock_message_sender():
    return MockMessageSender()
