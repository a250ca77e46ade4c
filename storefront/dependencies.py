from fastapi import HTTPException, Request, status

from .cache import CacheService
from .errors import CONFLICT, NOT_FOUND, StorefrontError
from .events import EventQueue
from .notifications.dispatcher import NotificationDispatcher

_STATUS_BY_KIND = {
    CONFLICT: status.HTTP_409_CONFLICT,
    NOT_FOUND: status.HTTP_404_NOT_FOUND,
}


def http_status_for(exc: StorefrontError) -> int:
    return _STATUS_BY_KIND.get(exc.kind, status.HTTP_400_BAD_REQUEST)


def to_http_exception(exc: StorefrontError) -> HTTPException:
    return HTTPException(status_code=http_status_for(exc), detail=exc.to_dict())


def get_cache(request: Request) -> CacheService:
    return request.app.state.cache


def get_events(request: Request) -> EventQueue:
    return request.app.state.events


def get_dispatcher(request: Request) -> NotificationDispatcher:
    return request.app.state.dispatcher
