"""Stock counters for products and variants.

An order line draws stock either from its product or, when it names a
variant, from that variant. ``StockTarget`` captures that choice once so the
order engine and the state machine call the same decrement/restore functions
without branching on the variant id.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple, Union

from sqlalchemy import and_, select, update
from sqlalchemy.orm import Session

from .models import Product, ProductVariant


@dataclass(frozen=True)
class ProductTarget:
    product_id: int

    model = Product

    @property
    def row_id(self) -> int:
        return self.product_id


@dataclass(frozen=True)
class VariantTarget:
    variant_id: int

    model = ProductVariant

    @property
    def row_id(self) -> int:
        return self.variant_id


StockTarget = Union[ProductTarget, VariantTarget]


def target_for(product_id: int, variant_id: Optional[int] = None) -> StockTarget:
    if variant_id:
        return VariantTarget(int(variant_id))
    return ProductTarget(int(product_id))


def merge_quantities(lines: Iterable[Tuple[StockTarget, int]]) -> Dict[StockTarget, int]:
    merged: Dict[StockTarget, int] = {}
    for target, qty in lines:
        merged[target] = merged.get(target, 0) + int(qty)
    return merged


def lock_order(targets: Iterable[StockTarget]) -> List[StockTarget]:
    """Stable ordering (products first, then variants, by id) to avoid deadlocks."""
    return sorted(targets, key=lambda t: (0 if isinstance(t, ProductTarget) else 1, t.row_id))


def decrement(db: Session, target: StockTarget, quantity: int) -> bool:
    """Take ``quantity`` units if the target is orderable and has enough stock.

    A single conditional UPDATE; returns False when no row matched, which the
    caller treats as insufficient stock. Does not commit.
    """
    if quantity <= 0:
        raise ValueError("quantity must be > 0")

    model = target.model
    result = db.execute(
        update(model)
        .where(
            and_(
                model.id == target.row_id,
                model.stock_quantity >= quantity,
                model.is_deleted.is_(False),
                model.is_available.is_(True),
            )
        )
        .values(stock_quantity=model.stock_quantity - quantity)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def restore(db: Session, target: StockTarget, quantity: int) -> bool:
    """Give ``quantity`` units back unless the target was soft-deleted or removed.

    Returns True when a row was incremented. Does not commit.
    """
    if quantity <= 0:
        raise ValueError("quantity must be > 0")

    model = target.model
    result = db.execute(
        update(model)
        .where(and_(model.id == target.row_id, model.is_deleted.is_(False)))
        .values(stock_quantity=model.stock_quantity + quantity)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def current_stock(db: Session, target: StockTarget) -> Optional[int]:
    model = target.model
    return db.execute(select(model.stock_quantity).where(model.id == target.row_id)).scalar_one_or_none()


def refresh_targets(db: Session, targets: Iterable[StockTarget]) -> None:
    """Expire cached ORM rows for targets touched by bulk UPDATEs."""
    for target in targets:
        obj = db.identity_map.get(db.identity_key(target.model, target.row_id))
        if obj is not None:
            db.expire(obj)
