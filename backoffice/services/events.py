"""Post-commit order events: published only after the transaction is committed."""
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List

logger = logging.getLogger(__name__)


@dataclass
class OrderEvent:
    order_id: int


@dataclass
class ItemAddedToOrder(OrderEvent):
    item_ids: List[int] = field(default_factory=list)


@dataclass
class ItemRemovedFromOrder(OrderEvent):
    item_id: int = 0


@dataclass
class OrderStatusChanged(OrderEvent):
    old_status: str = ""
    new_status: str = ""


class OrderEventBus:
    """In-process dispatcher: subscribe by event type, publish invokes handlers."""

    def __init__(self) -> None:
        self._handlers: Dict[type, List[Callable[[Any], Any]]] = {}

    def subscribe(self, event_type: type, handler: Callable[[Any], Any]) -> None:
        self._handlers.setdefault(event_type, []).append(handler)

    def publish(self, event: OrderEvent) -> None:
        # Handlers cannot affect the outcome of the committed operation
        for handler in self._handlers.get(type(event), []):
            try:
                handler(event)
            except Exception:
                logger.exception(f"Handler {handler!r} failed for {type(event).__name__}")
