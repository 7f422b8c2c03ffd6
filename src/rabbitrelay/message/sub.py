import logging
from typing import Callable, Generic, TypeVar

from pydantic import BaseModel, ValidationError

from rabbitrelay.rabbitmq.stream import MessageStream

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


class ModelSubService(Generic[ModelT]):
    """
    Service for subscribing to messages carrying one pydantic model

    Payloads that do not validate are logged and dropped. They have
    already been acknowledged to the broker.
    """

    def __init__(
        self,
        stream: MessageStream,
        model_class: type[ModelT],
        handler: Callable[[ModelT], None],
    ) -> None:
        self._stream = stream
        self._model_class = model_class
        self._handler = handler
        self._stream.subscribe(self._on_payload)
        logger.info(
            "%s initialized for %s",
            self.__class__.__name__,
            self._model_class.__name__,
        )

    def _on_payload(self, payload: bytes) -> None:
        try:
            model = self._model_class.model_validate_json(payload)
        except ValidationError as e:
            logger.warning(
                "Dropping message that is not a valid %s: %s",
                self._model_class.__name__,
                e,
            )
            return
        self._handler(model)

    def close(self) -> None:
        self._stream.unsubscribe(self._on_payload)
