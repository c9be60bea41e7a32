import logging
from collections import defaultdict
from typing import Any, Callable

logger = logging.getLogger(__name__)

PRODUCT_CREATED = "productCreated"
SALE_MADE = "saleMade"
SALES_UPDATED = "salesUpdated"


class EventBus:
    """In-process publish/subscribe point between the catalog and the transports."""

    def __init__(self):
        self._subscribers = defaultdict(list)

    def subscribe(self, topic: str, handler: Callable[[Any], None]):
        self._subscribers[topic].append(handler)

    def publish(self, topic: str, payload: Any):
        # At-most-once delivery: a failing listener is logged and skipped.
        for handler in list(self._subscribers.get(topic, ())):
            try:
                handler(payload)
            except Exception:
                logger.exception("Listener for %s failed", topic)


def register_socket_handlers(socketio, bus: EventBus):
    def broadcast_product(product):
        socketio.emit(PRODUCT_CREATED, product)

    bus.subscribe(PRODUCT_CREATED, broadcast_product)

    @socketio.on("connect")
    def handle_connect(auth=None):
        logger.info("Cliente conectado")

    @socketio.on("disconnect")
    def handle_disconnect(*args):
        logger.info("Cliente desconectado")

    @socketio.on(SALE_MADE)
    def relay_sale(data=None):
        socketio.emit(SALES_UPDATED, data)
