"""Post-commit order events.

The order engine and the state machine never call notification code
directly. After their transaction commits they build an event payload and
hand it to an ``EventQueue``; whoever consumes the queue runs the handlers.
A failure anywhere past the hand-off is logged and never reaches the caller.
"""

from __future__ import annotations

import datetime as dt
import queue
import threading
from abc import ABC, abstractmethod
from typing import Callable, Dict, Optional

from .log import get_logger
from .models import Order

logger = get_logger(__name__)

ORDER_CREATED = "order.created"
ORDER_STATUS_CHANGED = "order.status_changed"

Handler = Callable[[dict], None]


def _now_iso() -> str:
    return dt.datetime.now(dt.timezone.utc).isoformat().replace("+00:00", "Z")


def order_created_event(order: Order) -> Dict:
    return {
        "event": ORDER_CREATED,
        "occurred_at": _now_iso(),
        "order_id": order.id,
        "order_number": order.order_number,
        "customer_id": order.customer_id,
        "customer_name": order.customer_name,
        "phone": order.phone,
        "total_amount": str(order.total_amount),
        "status": order.status,
        "items": [
            {"product_id": i.product_id, "variant_id": i.variant_id, "quantity": i.quantity}
            for i in order.items
        ],
    }


def status_changed_event(
    order: Order,
    from_status: Optional[str],
    to_status: str,
    *,
    note: Optional[str] = None,
    actor_id: Optional[int] = None,
) -> Dict:
    return {
        "event": ORDER_STATUS_CHANGED,
        "occurred_at": _now_iso(),
        "order_id": order.id,
        "order_number": order.order_number,
        "customer_id": order.customer_id,
        "customer_name": order.customer_name,
        "phone": order.phone,
        "total_amount": str(order.total_amount),
        "from_status": from_status,
        "to_status": to_status,
        "note": note,
        "actor_id": actor_id,
    }


class EventQueue(ABC):
    @abstractmethod
    def publish(self, event: Dict) -> None:
        ...

    def close(self) -> None:
        return None


def _run_handler(handler: Handler, event: Dict) -> None:
    try:
        handler(event)
    except Exception:
        logger.exception("event_handler_failed", event_name=event.get("event"), order_id=event.get("order_id"))


class InlineEventQueue(EventQueue):
    """Runs the handler on the calling thread, after the caller's commit."""

    def __init__(self, handler: Handler) -> None:
        self.handler = handler

    def publish(self, event: Dict) -> None:
        _run_handler(self.handler, event)


class RecordingEventQueue(EventQueue):
    """Keeps events in memory without running anything."""

    def __init__(self) -> None:
        self.events = []

    def publish(self, event: Dict) -> None:
        self.events.append(event)


class ThreadedEventQueue(EventQueue):
    """In-process queue drained by one background worker thread."""

    _STOP = object()

    def __init__(self, handler: Handler, *, name: str = "order-events", daemon: bool = True) -> None:
        self.handler = handler
        self._queue: "queue.Queue" = queue.Queue()
        self._thread = threading.Thread(target=self._run, name=name, daemon=daemon)
        self._thread.start()

    def _run(self) -> None:
        while True:
            event = self._queue.get()
            try:
                if event is self._STOP:
                    return
                _run_handler(self.handler, event)
            except Exception:
                # the worker outlives any single event
                logger.exception("event_worker_error")
            finally:
                self._queue.task_done()

    def publish(self, event: Dict) -> None:
        self._queue.put(event)

    def join(self, timeout: Optional[float] = None) -> bool:
        """Wait until every published event has been handled.

        Returns False if ``timeout`` seconds pass first.
        """
        with self._queue.all_tasks_done:
            return self._queue.all_tasks_done.wait_for(lambda: self._queue.unfinished_tasks == 0, timeout)

    def is_alive(self) -> bool:
        return self._thread.is_alive()

    def close(self) -> None:
        self._queue.put(self._STOP)
        self._thread.join(timeout=5)


class BrokerEventQueue(EventQueue):
    """Publishes to the RabbitMQ topic exchange; a consumer thread runs the handlers."""

    def __init__(self, publish: Optional[Callable[[str, dict], None]] = None) -> None:
        if publish is None:
            from .messaging import publish_event

            publish = publish_event
        self._publish = publish

    def publish(self, event: Dict) -> None:
        self._publish(event["event"], event)


def emit(events: Optional[EventQueue], event: Dict) -> None:
    """Hand an event off; never raises."""
    if events is None:
        return
    try:
        events.publish(event)
    except Exception:
        logger.exception("event_publish_failed", event_name=event.get("event"), order_id=event.get("order_id"))
