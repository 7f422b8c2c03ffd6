"""
Configuration constants for the RabbitRelay library.

This module contains centralized defaults for the resilience policies
(outbound buffer capacity, retry and health check intervals) and the
environment variable names understood by the command line interface.
"""

from dataclasses import dataclass
from datetime import timedelta

# Global service name for logging/observability systems
SERVICE_NAME = "rabbitrelay"


class RelayConfig:
    """Centralized constants for RabbitRelay senders and receivers."""

    # Maximum number of messages a sender keeps in memory while the broker is down
    MAX_OUTSTANDING_MESSAGES = 100

    RETRY_INTERVAL: timedelta = timedelta(milliseconds=1000)
    HEALTH_CHECK_INTERVAL: timedelta = timedelta(milliseconds=1000)

    # one unacknowledged message in flight per consumer
    PREFETCH_COUNT = 1

    # Environment variables used by the CLI
    BROKER_URL_ENV = "RABBITRELAY_BROKER_URL"
    APP_ENV_ENV = "APP_ENV"


@dataclass(frozen=True)
class ResilienceConfig:
    """
    Per-instance resilience settings for a sender or receiver.

    Intervals are scoped to the instance holding the config so independent
    targets can run with different timings in the same process.
    """

    max_outstanding_messages: int = RelayConfig.MAX_OUTSTANDING_MESSAGES
    retry_interval: timedelta = RelayConfig.RETRY_INTERVAL
    health_check_interval: timedelta = RelayConfig.HEALTH_CHECK_INTERVAL

    def __post_init__(self):
        if self.max_outstanding_messages < 0:
            raise ValueError(
                f"max_outstanding_messages must be >= 0, got {self.max_outstanding_messages}"
            )
        for name in ("retry_interval", "health_check_interval"):
            interval = getattr(self, name)
            if interval <= timedelta(0):
                raise ValueError(f"{name} must be positive, got {interval}")
