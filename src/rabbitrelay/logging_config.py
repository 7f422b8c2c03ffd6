"""
Centralized logging configuration for RabbitRelay.

This module provides consistent logging setup for the command line tools
and for applications embedding the library that want the same format.
"""

import logging
import os
import sys
from typing import Optional

try:
    from opentelemetry._logs import set_logger_provider
    from opentelemetry.exporter.otlp.proto.grpc._log_exporter import OTLPLogExporter
    from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
    from opentelemetry.sdk._logs import LoggerProvider, LoggingHandler
    from opentelemetry.sdk._logs.export import BatchLogRecordProcessor
    from opentelemetry.sdk.resources import Resource
    from opentelemetry.sdk.trace import TracerProvider
    from opentelemetry.sdk.trace.export import BatchSpanProcessor
    from opentelemetry.trace import set_tracer_provider

    OTEL_AVAILABLE = True
except ImportError:
    OTEL_AVAILABLE = False

from rabbitrelay.config import SERVICE_NAME

logger = logging.getLogger(__name__)


def setup_logging(
    level: int = logging.INFO,
    microservice_name: Optional[str] = None,
    app_env: Optional[str] = None,
    force_setup: bool = False,
    enable_console: bool = True,
    enable_otel: bool = False,
    otel_endpoint: Optional[str] = None,
) -> None:
    """
    Setup logging configuration for RabbitRelay with optional OTEL export.

    Args:
        level: Logging level (default: INFO)
        microservice_name: Name of the component (e.g., 'sender', 'receiver')
        app_env: Application environment (e.g., 'dev', 'staging', 'prod')
        force_setup: Whether to force reconfiguration even if already setup
        enable_console: Whether to enable console logging (default: True)
        enable_otel: Whether to export logs and traces over OTLP (needs the
            `otel` extra installed)
        otel_endpoint: OTLP collector endpoint (defaults to the standard
            OTEL_EXPORTER_OTLP_* env vars)
    """
    root_logger = logging.getLogger()
    if root_logger.handlers and not force_setup:
        # Logging already configured, just ensure our level is set
        root_logger.setLevel(level)
        return

    if force_setup:
        root_logger.handlers.clear()

    if enable_otel and OTEL_AVAILABLE:
        resource = _otel_resource(microservice_name, app_env)
        _setup_otel_logging(resource, otel_endpoint)
        _setup_otel_tracing(resource, otel_endpoint)

    if enable_console:
        _setup_console_logging(microservice_name, app_env)

    root_logger.setLevel(level)

    if enable_otel and not OTEL_AVAILABLE:
        logger.warning(
            "OTEL export requested but opentelemetry is not installed; "
            "install rabbitrelay[otel]"
        )

    # amqpstorm is chatty about heartbeats and channel state at INFO
    logging.getLogger("amqpstorm").setLevel(logging.WARNING)

    logging.getLogger("rabbitrelay").setLevel(level)


def create_formatter(
    microservice_name: Optional[str] = None, app_env: Optional[str] = None
) -> logging.Formatter:
    """
    Create a standardized formatter for RabbitRelay.

    Args:
        microservice_name: Name of the component for log identification
        app_env: Application environment, appended to the component name

    Returns:
        Configured logging formatter
    """
    if microservice_name and app_env:
        service_prefix = f"[{microservice_name}:{app_env}] "
    elif microservice_name:
        service_prefix = f"[{microservice_name}] "
    else:
        service_prefix = ""

    return logging.Formatter(
        f"%(asctime)s - {service_prefix}%(name)s - %(levelname)s - %(message)s"
    )


def _setup_console_logging(
    microservice_name: Optional[str] = None, app_env: Optional[str] = None
) -> None:
    formatter = create_formatter(microservice_name, app_env)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    logging.getLogger().addHandler(handler)


def _otel_resource(
    microservice_name: Optional[str] = None, app_env: Optional[str] = None
) -> "Resource":
    resource_attrs = {
        "service.name": SERVICE_NAME,
        "service.instance.id": os.uname().nodename,
    }
    if microservice_name:
        resource_attrs["service.component"] = microservice_name
    if app_env:
        resource_attrs["deployment.environment"] = app_env
    return Resource.create(resource_attrs)


def _setup_otel_logging(resource: "Resource", otel_endpoint: Optional[str] = None) -> None:
    """
    Ship every record that reaches the root logger to an OTLP collector.

    Args:
        resource: Service identification shared with tracing
        otel_endpoint: Collector endpoint, falls back to OTEL_EXPORTER_OTLP_LOGS_ENDPOINT
    """
    logger_provider = LoggerProvider(resource=resource)
    set_logger_provider(logger_provider)

    exporter = OTLPLogExporter(
        endpoint=otel_endpoint or os.getenv("OTEL_EXPORTER_OTLP_LOGS_ENDPOINT"),
        insecure=True,
    )
    logger_provider.add_log_record_processor(BatchLogRecordProcessor(exporter))

    handler = LoggingHandler(level=logging.NOTSET, logger_provider=logger_provider)
    logging.getLogger().addHandler(handler)


def _setup_otel_tracing(resource: "Resource", otel_endpoint: Optional[str] = None) -> None:
    tracer_provider = TracerProvider(resource=resource)
    set_tracer_provider(tracer_provider)

    traces_endpoint = (
        otel_endpoint
        or os.getenv("OTEL_EXPORTER_OTLP_TRACES_ENDPOINT")
        or os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
    )
    exporter = OTLPSpanExporter(endpoint=traces_endpoint, insecure=True)
    tracer_provider.add_span_processor(BatchSpanProcessor(exporter))
