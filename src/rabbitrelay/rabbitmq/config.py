from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Union


class ExchangeType(Enum):
    DIRECT = "direct"
    TOPIC = "topic"
    HEADERS = "headers"
    FANOUT = "fanout"
    MATCH = "match"


@dataclass(frozen=True)
class QueueOptions:
    # durability must be requested explicitly, it also decides whether failed sends are buffered
    durable: bool = False
    exclusive: bool = False
    auto_delete: bool = False
    arguments: Optional[dict] = None


@dataclass(frozen=True)
class ExchangeOptions:
    durable: bool = False
    auto_delete: bool = False
    arguments: Optional[dict] = None


@dataclass(frozen=True)
class QueueTarget:
    name: str
    options: QueueOptions = field(default_factory=QueueOptions)

    @property
    def is_durable(self) -> bool:
        return self.options.durable is True

    def __str__(self) -> str:
        return f"queue {self.name}"


@dataclass(frozen=True)
class ExchangeTarget:
    name: str
    exchange_type: ExchangeType = ExchangeType.TOPIC
    options: ExchangeOptions = field(default_factory=ExchangeOptions)
    routing_keys: tuple[str, ...] = ()

    def __post_init__(self):
        if isinstance(self.exchange_type, str):
            object.__setattr__(self, "exchange_type", ExchangeType(self.exchange_type))
        if isinstance(self.routing_keys, str):
            object.__setattr__(self, "routing_keys", (self.routing_keys,))
        else:
            object.__setattr__(self, "routing_keys", tuple(self.routing_keys))

    @property
    def is_durable(self) -> bool:
        return self.options.durable is True

    def __str__(self) -> str:
        return f"exchange {self.name} ({self.exchange_type.value})"


BrokerTarget = Union[QueueTarget, ExchangeTarget]
