from __future__ import annotations

from typing import Any, Callable, Dict

from ..events import ORDER_CREATED, ORDER_STATUS_CHANGED
from ..log import get_logger
from .dispatcher import NotificationDispatcher

logger = get_logger(__name__)


def make_order_event_handler(dispatcher: NotificationDispatcher) -> Callable[[Dict[str, Any]], None]:
    def handle_order_event(payload: Dict[str, Any]) -> None:
        event = payload.get("event") or ""
        order_id = payload.get("order_id")
        order_number = payload.get("order_number")
        phone = payload.get("phone")

        if event == ORDER_CREATED:
            dispatcher.notify_order_confirmation(phone, order_number, payload.get("total_amount"), order_id=order_id)
            dispatcher.notify_admin_new_order(order_number, payload.get("total_amount"), payload.get("customer_name"))
        elif event == ORDER_STATUS_CHANGED:
            dispatcher.notify_status_update(
                phone,
                order_number,
                payload.get("to_status"),
                note=payload.get("note"),
                order_id=order_id,
            )
        else:
            # Unknown event; ignore to avoid spamming
            logger.debug("order_event_ignored", event_name=event)

    return handle_order_event
