"""Order placement and order reads.

``create_order`` is all-or-nothing: every line is re-validated against rows
read inside the transaction, each stock target is decremented with one
conditional UPDATE, and the order, its items and the first history row are
written before a single commit. Cache invalidation and notifications happen
only after that commit.
"""

from __future__ import annotations

import datetime as dt
import random
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Iterable, List, Optional, Tuple

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from . import inventory
from .cache import CacheService, safe_invalidate
from .cart import CENTS, INSUFFICIENT_STOCK, check_lines, load_catalog, normalize_lines
from .config import get_settings
from .errors import EmptyOrderError, OrderCreationError, OrderNotFoundError
from .events import EventQueue, emit, order_created_event
from .log import get_logger
from .models import Order, OrderItem, OrderStatusHistory
from .notifications.phone import normalize_phone
from .schemas import OrderStatus

logger = get_logger(__name__)

_rng = random.SystemRandom()


@dataclass
class CustomerInfo:
    customer_name: str
    phone: str
    address: str
    barangay: str
    landmarks: Optional[str] = None
    notes: Optional[str] = None


def generate_order_number(today: Optional[dt.date] = None) -> str:
    """``HW-YYYYMMDD-NNNN``. Random suffix; the unique constraint catches collisions."""
    today = today or dt.datetime.now(dt.timezone.utc).date()
    return f"HW-{today:%Y%m%d}-{_rng.randint(0, 9999):04d}"


def _insert_order(db: Session, order: Order, attempts: int) -> None:
    for attempt in range(1, attempts + 1):
        order.order_number = generate_order_number()
        try:
            with db.begin_nested():
                db.add(order)
                db.flush()
            return
        except IntegrityError:
            if attempt >= attempts:
                raise
            logger.warning("order_number_collision", order_number=order.order_number, attempt=attempt)


def _stock_failure(line: dict, available: int) -> dict:
    label = line["product_name"]
    if line.get("variant_name"):
        label = f"{label} ({line['variant_name']})"
    return {
        "index": line["index"],
        "product_id": line["product_id"],
        "variant_id": line.get("variant_id"),
        "code": INSUFFICIENT_STOCK,
        "message": f"Insufficient stock for {label}. Available: {available}, Requested: {line['quantity']}",
        "requested": line["quantity"],
        "available": available,
    }


def _reserve_stock(db: Session, validated: List[dict]) -> List[inventory.StockTarget]:
    merged = inventory.merge_quantities((line["target"], line["quantity"]) for line in validated)
    targets = inventory.lock_order(merged)
    for target in targets:
        if not inventory.decrement(db, target, merged[target]):
            available = inventory.current_stock(db, target) or 0
            first = next(line for line in validated if line["target"] == target)
            raise OrderCreationError([_stock_failure(first, available)])
    return targets


def create_order(
    db: Session,
    customer: CustomerInfo,
    items: Iterable[Any],
    *,
    customer_id: Optional[int] = None,
    cache: Optional[CacheService] = None,
    events: Optional[EventQueue] = None,
) -> Order:
    lines = normalize_lines(items)
    if not lines:
        raise EmptyOrderError()

    settings = get_settings()
    phone = normalize_phone(customer.phone) or customer.phone.strip()

    try:
        products, variants = load_catalog(db, lines, for_update=True)
        validated, errors = check_lines(lines, products, variants)
        if errors:
            raise OrderCreationError(errors)

        total = sum((line["subtotal"] for line in validated), Decimal("0")).quantize(CENTS)
        touched = _reserve_stock(db, validated)

        order = Order(
            customer_id=customer_id,
            customer_name=customer.customer_name.strip(),
            phone=phone,
            address=customer.address.strip(),
            barangay=customer.barangay.strip(),
            landmarks=customer.landmarks,
            notes=customer.notes,
            total_amount=total,
            status=OrderStatus.PENDING.value,
        )
        _insert_order(db, order, max(1, settings.order_number_attempts))

        for line in validated:
            db.add(
                OrderItem(
                    order=order,
                    product_id=line["product_id"],
                    variant_id=line["variant_id"],
                    product_name=line["product_name"],
                    variant_name=line["variant_name"],
                    quantity=line["quantity"],
                    unit_price=line["unit_price"],
                    subtotal=line["subtotal"],
                )
            )

        db.add(
            OrderStatusHistory(
                order=order,
                from_status=None,
                to_status=OrderStatus.PENDING.value,
                note="Order placed by registered customer" if customer_id else "Order placed by guest customer",
            )
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    inventory.refresh_targets(db, touched)
    logger.info(
        "order_created",
        order_id=order.id,
        order_number=order.order_number,
        total_amount=str(order.total_amount),
        lines=len(validated),
        customer_id=customer_id,
    )

    if cache is not None:
        safe_invalidate(cache.invalidate_catalog)
    emit(events, order_created_event(order))
    return order


# -----------------------------
# Reads
# -----------------------------


def _with_details(stmt):
    return stmt.options(
        selectinload(Order.items),
        selectinload(Order.status_history),
        selectinload(Order.sms_logs),
    )


def get_order(db: Session, order_id: int) -> Optional[Order]:
    return db.execute(_with_details(select(Order).where(Order.id == order_id))).scalar_one_or_none()


def get_order_or_404(db: Session, order_id: int) -> Order:
    order = get_order(db, order_id)
    if order is None:
        raise OrderNotFoundError("Order not found", order_id=order_id)
    return order


def get_order_by_number(db: Session, order_number: str) -> Optional[Order]:
    return db.execute(_with_details(select(Order).where(Order.order_number == order_number))).scalar_one_or_none()


def track_order(db: Session, order_number: str) -> Order:
    order = get_order_by_number(db, order_number)
    if order is None:
        raise OrderNotFoundError("Order not found. Please check your order number.", order_number=order_number)
    return order


def list_orders(
    db: Session,
    *,
    status: Optional[str] = None,
    search: Optional[str] = None,
    start_date: Optional[dt.datetime] = None,
    end_date: Optional[dt.datetime] = None,
    customer_id: Optional[int] = None,
    skip: int = 0,
    limit: int = 20,
) -> Tuple[List[Order], int]:
    filters = []
    if status:
        filters.append(Order.status == status)
    if customer_id is not None:
        filters.append(Order.customer_id == customer_id)
    if search:
        pattern = f"%{search}%"
        filters.append(
            or_(
                Order.order_number.ilike(pattern),
                Order.customer_name.ilike(pattern),
                Order.phone.ilike(pattern),
            )
        )
    if start_date is not None:
        filters.append(Order.created_at >= start_date)
    if end_date is not None:
        filters.append(Order.created_at <= end_date)

    total = db.execute(select(func.count(Order.id)).where(*filters)).scalar_one()
    orders = (
        db.execute(
            select(Order)
            .where(*filters)
            .options(selectinload(Order.items))
            .order_by(Order.created_at.desc(), Order.id.desc())
            .offset(skip)
            .limit(limit)
        )
        .scalars()
        .all()
    )
    return list(orders), int(total)


def get_customer_order(db: Session, order_number: str, customer_id: int) -> Order:
    order = get_order_by_number(db, order_number)
    if order is None or order.customer_id != customer_id:
        raise OrderNotFoundError("Order not found", order_number=order_number)
    return order


def list_customer_orders(db: Session, customer_id: int, *, skip: int = 0, limit: int = 20) -> Tuple[List[Order], int]:
    return list_orders(db, customer_id=customer_id, skip=skip, limit=limit)
