import json
import logging
import time
from datetime import timedelta

import typer
from typing_extensions import Annotated, Optional

from rabbitrelay.config import SERVICE_NAME, RelayConfig, ResilienceConfig
from rabbitrelay.logging_config import setup_logging
from rabbitrelay.rabbitmq import (
    PERSISTENT,
    ExchangeMessage,
    ExchangeOptions,
    ExchangeTarget,
    ExchangeType,
    QueueMessage,
    QueueOptions,
    QueueTarget,
    create_exchange_receiver,
    create_exchange_sender,
    create_queue_receiver,
    create_queue_sender,
)

app = typer.Typer()
logger = logging.getLogger(__name__)

__GLOBALS = {}

# poll interval while one-shot commands wait for the retry buffer to drain
SEND_DRAIN_INTERVAL = 0.1


def _broker_url() -> str:
    return __GLOBALS["broker_url"]


def _config() -> ResilienceConfig:
    return __GLOBALS["config"]


def _print_payload(payload: bytes) -> None:
    text = payload.decode("utf-8", errors="replace")
    try:
        text = json.dumps(json.loads(text), indent=2)
    except ValueError:
        pass
    typer.echo(text)


def _wait_for_drain(sender, timeout: float) -> None:
    deadline = time.monotonic() + timeout
    while sender.is_buffering and time.monotonic() < deadline:
        time.sleep(SEND_DRAIN_INTERVAL)
    if sender.is_buffering:
        logger.error(
            "Giving up with %d messages still buffered for %s",
            sender.outbound_size,
            sender.target,
        )


def _run_until_interrupted(receiver) -> None:
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")
    finally:
        receiver.close()


@app.command()
def send_queue(
    queue: str,
    message: str,
    durable: Annotated[bool, typer.Option(help="Declare the queue durable")] = True,
    persistent: Annotated[
        bool, typer.Option(help="Mark the message persistent")
    ] = PERSISTENT,
    wait: Annotated[
        float, typer.Option(help="Seconds to keep retrying a buffered message")
    ] = 10.0,
):
    target = QueueTarget(name=queue, options=QueueOptions(durable=durable))
    sender = create_queue_sender(_broker_url(), target, config=_config())
    try:
        sender.send(QueueMessage(payload=message, persistent=persistent))
        _wait_for_drain(sender, wait)
    finally:
        sender.close()


@app.command()
def publish(
    exchange: str,
    routing_key: str,
    message: str,
    exchange_type: Annotated[
        ExchangeType, typer.Option(help="Type used to declare the exchange")
    ] = ExchangeType.TOPIC,
    durable: Annotated[bool, typer.Option(help="Declare the exchange durable")] = True,
    wait: Annotated[
        float, typer.Option(help="Seconds to keep retrying a buffered message")
    ] = 10.0,
):
    target = ExchangeTarget(
        name=exchange,
        exchange_type=exchange_type,
        options=ExchangeOptions(durable=durable),
    )
    sender = create_exchange_sender(_broker_url(), target, config=_config())
    try:
        sender.send(ExchangeMessage(routing_key=routing_key, payload=message))
        _wait_for_drain(sender, wait)
    finally:
        sender.close()


@app.command()
def listen_queue(
    queue: str,
    durable: Annotated[bool, typer.Option(help="Declare the queue durable")] = True,
):
    target = QueueTarget(name=queue, options=QueueOptions(durable=durable))
    receiver = create_queue_receiver(_broker_url(), target, config=_config())
    receiver.messages.subscribe(_print_payload)
    _run_until_interrupted(receiver)


@app.command()
def listen_exchange(
    exchange: str,
    key: Annotated[
        list[str], typer.Option(help="Routing key to bind, may be repeated")
    ],
    exchange_type: Annotated[
        ExchangeType, typer.Option(help="Type used to declare the exchange")
    ] = ExchangeType.TOPIC,
    durable: Annotated[bool, typer.Option(help="Declare the exchange durable")] = True,
):
    target = ExchangeTarget(
        name=exchange,
        exchange_type=exchange_type,
        options=ExchangeOptions(durable=durable),
        routing_keys=key,
    )
    receiver = create_exchange_receiver(_broker_url(), target, config=_config())
    receiver.messages.subscribe(_print_payload)
    _run_until_interrupted(receiver)


@app.callback()
def callback(
    broker_url: Annotated[str, typer.Option(envvar=RelayConfig.BROKER_URL_ENV)],
    app_env: Annotated[Optional[str], typer.Option(envvar=RelayConfig.APP_ENV_ENV)] = None,
    max_outstanding_messages: Annotated[
        int, typer.Option(help="Messages kept in memory while the broker is down")
    ] = RelayConfig.MAX_OUTSTANDING_MESSAGES,
    retry_interval_ms: Annotated[
        int, typer.Option(help="Milliseconds between resend attempts")
    ] = int(RelayConfig.RETRY_INTERVAL.total_seconds() * 1000),
    health_check_interval_ms: Annotated[
        int, typer.Option(help="Milliseconds between reconnect attempts")
    ] = int(RelayConfig.HEALTH_CHECK_INTERVAL.total_seconds() * 1000),
    enable_otel: Annotated[
        bool, typer.Option("--otel", envvar="RABBITRELAY_ENABLE_OTEL", help="Export logs and traces over OTLP")
    ] = False,
    otel_endpoint: Annotated[Optional[str], typer.Option(envvar="OTEL_EXPORTER_OTLP_ENDPOINT")] = None,
    verbose: Annotated[bool, typer.Option("--verbose", "-v")] = False,
):
    # Setup logging first
    setup_logging(
        level=logging.DEBUG if verbose else logging.INFO,
        microservice_name=SERVICE_NAME,
        app_env=app_env,
        enable_otel=enable_otel,
        otel_endpoint=otel_endpoint,
    )

    __GLOBALS["broker_url"] = broker_url
    __GLOBALS["config"] = ResilienceConfig(
        max_outstanding_messages=max_outstanding_messages,
        retry_interval=timedelta(milliseconds=retry_interval_ms),
        health_check_interval=timedelta(milliseconds=health_check_interval_ms),
    )


def main():
    app()


if __name__ == "__main__":
    main()
