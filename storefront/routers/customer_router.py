from typing import Dict

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from .. import orders, schemas
from ..auth import get_current_customer
from ..cache import CacheService
from ..database import get_db
from ..dependencies import get_cache, get_events, to_http_exception
from ..errors import StorefrontError
from ..events import EventQueue
from ..order_status import cancel_own_order

router = APIRouter(
    prefix="/customers",
    tags=["Customers"],
)


@router.get("/orders", response_model=schemas.OrderListResponse)
def my_orders(
    skip: int = 0,
    limit: int = 20,
    current_customer: Dict = Depends(get_current_customer),
    db: Session = Depends(get_db),
):
    rows, total = orders.list_customer_orders(db, current_customer["id"], skip=skip, limit=limit)
    return {"orders": rows, "total": total, "skip": skip, "limit": limit}


@router.get("/orders/{order_number}", response_model=schemas.OrderDetailOut)
def my_order(
    order_number: str,
    current_customer: Dict = Depends(get_current_customer),
    db: Session = Depends(get_db),
):
    try:
        return orders.get_customer_order(db, order_number, current_customer["id"])
    except StorefrontError as e:
        raise to_http_exception(e)


@router.post("/orders/{order_number}/cancel", response_model=schemas.OrderOut)
def cancel_order(
    order_number: str,
    payload: schemas.CancelOrderRequest = None,
    current_customer: Dict = Depends(get_current_customer),
    db: Session = Depends(get_db),
    cache: CacheService = Depends(get_cache),
    events: EventQueue = Depends(get_events),
):
    """Cancel one of the caller's own orders while it is still pending."""
    try:
        return cancel_own_order(
            db,
            order_number,
            current_customer["id"],
            note=payload.reason if payload else None,
            cache=cache,
            events=events,
        )
    except StorefrontError as e:
        raise to_http_exception(e)
