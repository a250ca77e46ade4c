from typing import Dict, Optional

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from .. import cart, orders, schemas
from ..auth import get_optional_customer
from ..cache import CacheService
from ..database import get_db
from ..dependencies import get_cache, get_events, to_http_exception
from ..errors import StorefrontError
from ..events import EventQueue

router = APIRouter(tags=["Orders"])


@router.post("/cart/validate", response_model=schemas.CartValidationOut)
def validate_cart(payload: schemas.CartValidateRequest, db: Session = Depends(get_db)):
    """Check a cart against live prices and stock without reserving anything."""
    try:
        return cart.validate_cart(db, payload.items)
    except StorefrontError as e:
        raise to_http_exception(e)


@router.post("/orders", response_model=schemas.OrderPlaced, status_code=status.HTTP_201_CREATED)
def create_order(
    payload: schemas.OrderCreate,
    customer: Optional[Dict] = Depends(get_optional_customer),
    db: Session = Depends(get_db),
    cache: CacheService = Depends(get_cache),
    events: EventQueue = Depends(get_events),
):
    """Place an order as a guest or, with a customer token, as a registered customer.

    The whole order is rejected if any line fails; the 409 body lists every
    failing line under ``errors``.
    """
    info = orders.CustomerInfo(
        customer_name=payload.customer_name,
        phone=payload.phone,
        address=payload.address,
        barangay=payload.barangay,
        landmarks=payload.landmarks,
        notes=payload.notes,
    )
    try:
        return orders.create_order(
            db,
            info,
            payload.items,
            customer_id=customer["id"] if customer else None,
            cache=cache,
            events=events,
        )
    except StorefrontError as e:
        raise to_http_exception(e)


@router.get("/orders/track/{order_number}", response_model=schemas.OrderTrackOut)
def track_order(order_number: str, db: Session = Depends(get_db)):
    try:
        return orders.track_order(db, order_number)
    except StorefrontError as e:
        raise to_http_exception(e)
