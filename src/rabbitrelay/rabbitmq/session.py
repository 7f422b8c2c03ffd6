"""
RabbitMQ channel session with failure signalling.

This module provides a single connection+channel pair that reports every
connection or channel error/close to one failure callback, so owners can drop
the session and open a fresh one instead of repairing it in place.
"""

import logging
import threading
from enum import Enum
from typing import Callable, Optional

from amqpstorm import AMQPChannelError, AMQPConnectionError, AMQPError, UriConnection

from rabbitrelay.exceptions import BrokerConfigurationError, SessionFailedError
from rabbitrelay.util import redact_url

logger = logging.getLogger(__name__)


class FailureSignal(Enum):
    CONNECTION_ERROR = "connection error"
    CONNECTION_CLOSED = "connection closed"
    CHANNEL_ERROR = "channel error"
    CHANNEL_CLOSED = "channel closed"


FailureCallback = Callable[[FailureSignal], None]


class ChannelSession:
    """
    One connection and one channel against a broker URL.

    amqpstorm does not push error or close events, so failures are detected
    by `check` before every publish and by the consumer thread started with
    `start_consuming`. Either way they are routed through `signal`, which logs
    and notifies the failure callback once per session.
    """

    def __init__(self, connection, channel, on_failure: Optional[FailureCallback] = None):
        self._connection = connection
        self._channel = channel
        self._on_failure = on_failure

        self._lock = threading.RLock()
        self._failed = False
        self._closing = False
        self._consumer_thread: Optional[threading.Thread] = None

    @classmethod
    def open(
        cls,
        broker_url: str,
        on_failure: Optional[FailureCallback] = None,
        connection_factory: Callable[[str], object] = UriConnection,
    ) -> "ChannelSession":
        """
        Connect to the broker and open one channel.

        :param broker_url: AMQP URI of the broker.
        :param on_failure: Called with the failure kind when the connection or
            channel errors or closes.
        :param connection_factory: Creates a connection from the URI.
        :raises BrokerConfigurationError: If the URL is empty. Nothing is allocated.
        :raises AMQPError: If the broker is unreachable.
        """
        if not broker_url:
            error = BrokerConfigurationError()
            logger.error("%s", error)
            raise error

        logger.info("[AMQP] connecting to %s", redact_url(broker_url))
        connection = connection_factory(broker_url)
        try:
            channel = connection.channel()
        except Exception:
            try:
                connection.close()
            except Exception as e:
                logger.debug("Error closing connection after channel failure: %s", e)
            raise

        return cls(connection, channel, on_failure)

    @property
    def connection(self):
        return self._connection

    @property
    def channel(self):
        return self._channel

    @property
    def failed(self) -> bool:
        return self._failed

    def signal(self, kind: FailureSignal, error: Optional[BaseException] = None) -> None:
        """
        Report a failure of the connection or channel.

        The callback runs at most once per session and never after `close`.
        """
        if error is not None:
            logger.error("[AMQP] %s: %s", kind.value, error)
        else:
            logger.error("[AMQP] %s", kind.value)

        with self._lock:
            if self._failed or self._closing:
                return
            self._failed = True
            callback = self._on_failure

        if callback is not None:
            callback(kind)

    def check(self) -> None:
        """
        Verify the connection and channel are usable.

        :raises AMQPError: If either reports an error; the failure is signalled first.
        :raises SessionFailedError: If either has been closed.
        """
        try:
            self._connection.check_for_errors()
        except AMQPError as e:
            self.signal(FailureSignal.CONNECTION_ERROR, e)
            raise
        if not self._connection.is_open:
            self.signal(FailureSignal.CONNECTION_CLOSED)
            raise SessionFailedError("connection is closed")

        try:
            self._channel.check_for_errors()
        except AMQPConnectionError as e:
            self.signal(FailureSignal.CONNECTION_ERROR, e)
            raise
        except AMQPError as e:
            self.signal(FailureSignal.CHANNEL_ERROR, e)
            raise
        if not self._channel.is_open:
            self.signal(FailureSignal.CHANNEL_CLOSED)
            raise SessionFailedError("channel is closed")

    def start_consuming(self, name: str = "consumer") -> None:
        """
        Run the channel's consume loop on a daemon thread.

        Consumers must already be registered with `channel.basic.consume`.
        """
        self._consumer_thread = threading.Thread(
            target=self._consuming_loop, name=f"rmq-{name}", daemon=True
        )
        self._consumer_thread.start()

    def _consuming_loop(self) -> None:
        try:
            # blocks until the channel stops consuming or fails
            self._channel.start_consuming()
        except AMQPConnectionError as e:
            if not self._closing:
                self.signal(FailureSignal.CONNECTION_ERROR, e)
            return
        except AMQPChannelError as e:
            if not self._closing:
                self.signal(FailureSignal.CHANNEL_ERROR, e)
            return
        except Exception as e:
            if not self._closing:
                logger.exception("Unexpected error in consuming loop: %s", e)
                self.signal(FailureSignal.CHANNEL_ERROR, e)
            return

        if self._closing:
            return
        if not self._connection.is_open:
            self.signal(FailureSignal.CONNECTION_CLOSED)
        else:
            self.signal(FailureSignal.CHANNEL_CLOSED)

    def close(self) -> None:
        """
        Unregister the failure callback, then close channel and connection.
        """
        with self._lock:
            self._closing = True
            self._on_failure = None

        if self._consumer_thread is not None and self._channel.is_open:
            try:
                self._channel.stop_consuming()
                logger.debug("Stopped consuming")
            except Exception as e:
                logger.debug("Error stopping consuming: %s", e)

        try:
            if self._channel.is_open:
                self._channel.close()
                logger.debug("Channel closed")
        except Exception as e:
            logger.debug("Error closing channel: %s", e)

        try:
            if self._connection.is_open:
                self._connection.close()
                logger.debug("Connection closed")
        except Exception as e:
            logger.debug("Error closing connection: %s", e)

        thread = self._consumer_thread
        self._consumer_thread = None
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=5.0)
