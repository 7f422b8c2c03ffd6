"""
Custom exceptions for the RabbitRelay library.

This module contains all custom exception classes used throughout the library.
"""


class RelayError(Exception):
    """Base class for all RabbitRelay errors."""


class BrokerConfigurationError(RelayError, ValueError):
    """Raised when a session is opened without a usable broker URL."""

    def __init__(self, message: str = None):
        if message is None:
            message = "AMQP broker URL not specified"
        super().__init__(message)


class SessionFailedError(RelayError):
    """Raised when the connection or channel of a session is no longer open."""


class MessageDiscardedError(RelayError):
    """Raised when a message is rejected because the outbound queue is full."""

    def __init__(self, target_name: str, queue_length: int, message: str = None):
        self.target_name = target_name
        self.queue_length = queue_length
        if message is None:
            message = (
                f"Error sending message to {target_name}. Discarded, "
                f"{queue_length} messages already waiting."
            )
        super().__init__(message)
