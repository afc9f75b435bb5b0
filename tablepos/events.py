import logging
from collections.abc import Callable
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OrderEvent:
    order_id: str
    action: str
    table_label: str | None = None


Listener = Callable[[OrderEvent], None]


class ChangeFeed:
    """Per-order change notifications, published after a commit.

    Listeners registered with ``order_id=None`` receive every event.
    """

    def __init__(self) -> None:
        self._listeners: dict[str | None, list[Listener]] = {}

    def subscribe(self, listener: Listener, order_id: str | None = None) -> Callable[[], None]:
        self._listeners.setdefault(order_id, []).append(listener)

        def unsubscribe() -> None:
            listeners = self._listeners.get(order_id)
            if listeners and listener in listeners:
                listeners.remove(listener)
                if not listeners:
                    del self._listeners[order_id]

        return unsubscribe

    def publish(self, event: OrderEvent) -> None:
        for listener in [*self._listeners.get(event.order_id, []), *self._listeners.get(None, [])]:
            try:
                listener(event)
            except Exception as exc:  # noqa: BLE001
                logger.warning("Order listener failed for %s: %s", event.order_id, exc)
