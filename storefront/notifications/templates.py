from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, Optional, Tuple

ORDER_CONFIRMATION = "order_confirmation"
ORDER_ACCEPTED = "order_accepted"
ORDER_REJECTED = "order_rejected"
ORDER_PREPARING = "order_preparing"
ORDER_OUT_FOR_DELIVERY = "order_out_for_delivery"
ORDER_DELIVERED = "order_delivered"
ORDER_CANCELLED = "order_cancelled"
ADMIN_NEW_ORDER = "admin_new_order"
STATUS_GENERIC = "status_generic"


def _amount(value: Any) -> str:
    return f"{Decimal(str(value)):.2f}"


def _suffix(value: Optional[str], fmt: str) -> str:
    return fmt.format(value) if value else ""


TEMPLATES = {
    ORDER_CONFIRMATION: lambda p: (
        f"[{p['store_name']}] Order {p['order_number']} received! Total: P{_amount(p['amount'])}. "
        "We'll notify you when accepted. Salamat po!"
    ),
    ORDER_ACCEPTED: lambda p: (
        f"[{p['store_name']}] Good news! Order {p['order_number']} ACCEPTED & being prepared. "
        "We'll update you when out for delivery."
    ),
    ORDER_REJECTED: lambda p: (
        f"Order {p['order_number']} cannot be processed{_suffix(p.get('reason'), ': {}')}. "
        f"Contact {p.get('store_phone', '')} for help. Sorry for inconvenience."
    ),
    ORDER_PREPARING: lambda p: (
        f"[{p['store_name']}] Order {p['order_number']} is being prepared! "
        "We'll notify you when out for delivery."
    ),
    ORDER_OUT_FOR_DELIVERY: lambda p: (
        f"Your order {p['order_number']} is ON THE WAY!{_suffix(p.get('estimate'), ' ETA: {}.')} "
        "Please prepare payment. Thank you!"
    ),
    ORDER_DELIVERED: lambda p: (
        f"Order {p['order_number']} DELIVERED! Thank you for shopping with {p['store_name']}. "
        "We appreciate your business!"
    ),
    ORDER_CANCELLED: lambda p: (
        f"Order {p['order_number']} cancelled{_suffix(p.get('reason'), ': {}')}. "
        f"Questions? Contact {p.get('store_phone', '')}."
    ),
    ADMIN_NEW_ORDER: lambda p: (
        f"NEW ORDER! {p['order_number']} - P{_amount(p['amount'])} from {p.get('customer_name') or 'Customer'}. "
        "Check dashboard now."
    ),
    STATUS_GENERIC: lambda p: (
        p.get("message") or f"[{p['store_name']}] Order {p['order_number']} status: {p['status']}"
    ),
}

# status -> (template key, name of the param the admin note fills)
STATUS_TEMPLATES: Dict[str, Tuple[str, Optional[str]]] = {
    "accepted": (ORDER_ACCEPTED, None),
    "rejected": (ORDER_REJECTED, "reason"),
    "preparing": (ORDER_PREPARING, None),
    "out_for_delivery": (ORDER_OUT_FOR_DELIVERY, "estimate"),
    "delivered": (ORDER_DELIVERED, None),
    "completed": (ORDER_DELIVERED, None),
    "cancelled": (ORDER_CANCELLED, "reason"),
}


def render(template_key: str, params: Dict[str, Any]) -> str:
    try:
        template = TEMPLATES[template_key]
    except KeyError:
        raise ValueError(f"Unknown template: {template_key}") from None
    return template(params)


def status_template(status: str, note: Optional[str] = None) -> Tuple[str, Dict[str, Any]]:
    """Template key and extra params for a customer status update."""
    key, note_param = STATUS_TEMPLATES.get(status, (STATUS_GENERIC, "message"))
    extra: Dict[str, Any] = {"status": status}
    if note_param:
        extra[note_param] = note
    return key, extra
