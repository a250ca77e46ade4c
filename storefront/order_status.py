"""Order status transitions.

Every change goes through ``set_order_status``: the status update, its history
row and any stock restoration commit together. The status column is written
with a compare-and-set UPDATE so two concurrent changes to the same order
serialize, and stock comes back at most once per release.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Dict, FrozenSet, Optional

from sqlalchemy import and_, select, update
from sqlalchemy.orm import Session, selectinload
from sqlalchemy.sql import func

from . import inventory
from .cache import CacheService, safe_invalidate
from .errors import (
    InvalidStatusError,
    OrderAlreadyProcessingError,
    OrderNotFoundError,
    StatusConflictError,
    TransitionNotAllowedError,
)
from .events import EventQueue, emit, status_changed_event
from .log import get_logger, log_order_status
from .models import Order, OrderStatusHistory
from .schemas import OrderStatus

logger = get_logger(__name__)

RELEASED_STATUSES: FrozenSet[str] = frozenset({OrderStatus.CANCELLED.value, OrderStatus.REJECTED.value})

_CAS_ATTEMPTS = 3


class TransitionPolicy(ABC):
    @abstractmethod
    def allows(self, from_status: str, to_status: str) -> bool:
        ...


class PermissiveTransitions(TransitionPolicy):
    """Admins may move an order to any status."""

    def allows(self, from_status: str, to_status: str) -> bool:
        return True


class StrictTransitions(TransitionPolicy):
    """Only the nominal lifecycle edges; re-setting the current status is allowed."""

    EDGES: Dict[str, FrozenSet[str]] = {
        "pending": frozenset({"accepted", "rejected", "cancelled"}),
        "accepted": frozenset({"preparing", "cancelled"}),
        "preparing": frozenset({"out_for_delivery", "cancelled"}),
        "out_for_delivery": frozenset({"delivered"}),
        "delivered": frozenset({"completed"}),
        "completed": frozenset(),
        "cancelled": frozenset(),
        "rejected": frozenset(),
    }

    def allows(self, from_status: str, to_status: str) -> bool:
        if from_status == to_status:
            return True
        return to_status in self.EDGES.get(from_status, frozenset())


DEFAULT_POLICY: TransitionPolicy = PermissiveTransitions()


def parse_status(value) -> str:
    if isinstance(value, OrderStatus):
        return value.value
    if isinstance(value, str) and value in OrderStatus.values():
        return value
    raise InvalidStatusError(value, OrderStatus.values())


def _load_order(db: Session, order_id: int) -> Optional[Order]:
    stmt = (
        select(Order)
        .where(Order.id == order_id)
        .options(selectinload(Order.items))
        .execution_options(populate_existing=True)
    )
    return db.execute(stmt).scalar_one_or_none()


def _compare_and_set(db: Session, order_id: int, expected: str, new_status: str) -> bool:
    result = db.execute(
        update(Order)
        .where(and_(Order.id == order_id, Order.status == expected))
        .values(status=new_status, updated_at=func.now())
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def _restore_items(db: Session, order: Order) -> list:
    """Give back every item's quantity; returns the targets actually incremented."""
    merged = inventory.merge_quantities(
        (inventory.target_for(item.product_id, item.variant_id), item.quantity) for item in order.items
    )
    restored = []
    for target in inventory.lock_order(merged):
        if inventory.restore(db, target, merged[target]):
            restored.append(target)
        else:
            logger.warning("stock_restore_skipped", order_id=order.id, target=repr(target))
    return restored


def _transition(
    db: Session,
    order_id: int,
    new_status,
    *,
    actor_id: Optional[int],
    note: Optional[str],
    cache: Optional[CacheService],
    events: Optional[EventQueue],
    policy: Optional[TransitionPolicy],
    required_status: Optional[str] = None,
) -> Order:
    policy = policy or DEFAULT_POLICY

    for _ in range(_CAS_ATTEMPTS):
        try:
            order = _load_order(db, order_id)
            if order is None:
                raise OrderNotFoundError("Order not found", order_id=order_id)
            target_status = parse_status(new_status)
            previous = order.status

            if required_status is not None and previous != required_status:
                raise OrderAlreadyProcessingError(order.order_number, previous)
            if not policy.allows(previous, target_status):
                raise TransitionNotAllowedError(previous, target_status)

            if not _compare_and_set(db, order.id, previous, target_status):
                db.rollback()
                continue

            restored = []
            if target_status in RELEASED_STATUSES and previous not in RELEASED_STATUSES:
                restored = _restore_items(db, order)

            db.add(
                OrderStatusHistory(
                    order_id=order.id,
                    from_status=previous,
                    to_status=target_status,
                    changed_by_id=actor_id,
                    note=note,
                )
            )
            db.commit()
        except Exception:
            db.rollback()
            raise
        break
    else:
        raise StatusConflictError("Order status changed concurrently, please retry", order_id=order_id)

    db.expire(order)
    inventory.refresh_targets(db, restored)

    if restored and cache is not None:
        safe_invalidate(cache.invalidate_catalog)
    log_order_status(order.order_number, previous, target_status, changed_by=actor_id)
    emit(events, status_changed_event(order, previous, target_status, note=note, actor_id=actor_id))
    return order


def set_order_status(
    db: Session,
    order_id: int,
    new_status,
    *,
    actor_id: Optional[int] = None,
    note: Optional[str] = None,
    cache: Optional[CacheService] = None,
    events: Optional[EventQueue] = None,
    policy: Optional[TransitionPolicy] = None,
) -> Order:
    """Move an order to ``new_status`` and record the change.

    Entering ``cancelled`` or ``rejected`` from any other status puts every
    item's quantity back on its product or variant. Raises
    ``OrderNotFoundError``, ``InvalidStatusError`` or
    ``TransitionNotAllowedError``; nothing is written in those cases.
    """
    return _transition(
        db,
        order_id,
        new_status,
        actor_id=actor_id,
        note=note,
        cache=cache,
        events=events,
        policy=policy,
    )


def cancel_own_order(
    db: Session,
    order_number: str,
    customer_id: int,
    *,
    note: Optional[str] = None,
    cache: Optional[CacheService] = None,
    events: Optional[EventQueue] = None,
) -> Order:
    order = db.execute(select(Order.id, Order.customer_id, Order.status).where(Order.order_number == order_number)).first()
    if order is None or order.customer_id != customer_id:
        raise OrderNotFoundError("Order not found", order_number=order_number)
    if order.status != OrderStatus.PENDING.value:
        raise OrderAlreadyProcessingError(order_number, order.status)

    return _transition(
        db,
        order.id,
        OrderStatus.CANCELLED.value,
        actor_id=None,
        note=f"Cancelled by customer: {note}" if note else "Cancelled by customer",
        cache=cache,
        events=events,
        policy=None,
        required_status=OrderStatus.PENDING.value,
    )
