import datetime as dt
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from .. import orders, schemas
from ..auth import get_current_admin
from ..cache import CacheService
from ..database import get_db
from ..dependencies import get_cache, get_dispatcher, get_events, to_http_exception
from ..errors import StorefrontError
from ..events import EventQueue
from ..notifications.dispatcher import NotificationDispatcher, get_sms_logs, get_sms_stats
from ..order_status import parse_status, set_order_status

router = APIRouter(
    prefix="/admin",
    tags=["Admin"],
)


@router.get("/orders", response_model=schemas.OrderListResponse)
def list_orders(
    status_filter: Optional[str] = Query(None, alias="status"),
    search: Optional[str] = None,
    start_date: Optional[dt.datetime] = None,
    end_date: Optional[dt.datetime] = None,
    skip: int = 0,
    limit: int = 20,
    current_admin: Dict = Depends(get_current_admin),
    db: Session = Depends(get_db),
):
    try:
        status_value = parse_status(status_filter) if status_filter else None
    except StorefrontError as e:
        raise to_http_exception(e)

    rows, total = orders.list_orders(
        db,
        status=status_value,
        search=search,
        start_date=start_date,
        end_date=end_date,
        skip=skip,
        limit=limit,
    )
    return {"orders": rows, "total": total, "skip": skip, "limit": limit}


@router.get("/orders/{order_id:int}", response_model=schemas.OrderDetailOut)
def get_order(
    order_id: int,
    current_admin: Dict = Depends(get_current_admin),
    db: Session = Depends(get_db),
):
    try:
        return orders.get_order_or_404(db, order_id)
    except StorefrontError as e:
        raise to_http_exception(e)


@router.patch("/orders/{order_id:int}/status", response_model=schemas.OrderOut)
def update_order_status(
    order_id: int,
    payload: schemas.OrderStatusUpdate,
    current_admin: Dict = Depends(get_current_admin),
    db: Session = Depends(get_db),
    cache: CacheService = Depends(get_cache),
    events: EventQueue = Depends(get_events),
):
    """Move an order to any status.

    Cancelling or rejecting puts the items back in stock. The customer is
    notified after the change is saved.
    """
    try:
        return set_order_status(
            db,
            order_id,
            payload.status,
            actor_id=current_admin["id"],
            note=payload.message,
            cache=cache,
            events=events,
        )
    except StorefrontError as e:
        raise to_http_exception(e)


@router.get("/orders/{order_id:int}/sms-logs", response_model=List[schemas.SmsLogOut])
def order_sms_logs(
    order_id: int,
    current_admin: Dict = Depends(get_current_admin),
    db: Session = Depends(get_db),
):
    try:
        orders.get_order_or_404(db, order_id)
    except StorefrontError as e:
        raise to_http_exception(e)
    return get_sms_logs(db, order_id)


@router.get("/sms/stats", response_model=schemas.SmsStatsOut)
def sms_stats(
    start_date: Optional[dt.datetime] = None,
    end_date: Optional[dt.datetime] = None,
    current_admin: Dict = Depends(get_current_admin),
    db: Session = Depends(get_db),
):
    return get_sms_stats(db, start_date, end_date)


@router.post("/sms", response_model=schemas.SendResultOut, status_code=status.HTTP_202_ACCEPTED)
def send_custom_sms(
    payload: schemas.SmsSendRequest,
    current_admin: Dict = Depends(get_current_admin),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    return dispatcher.send(payload.destination, payload.message, order_id=payload.order_id)
