"""Outbound customer and admin notifications.

``NotificationDispatcher`` renders a template, picks the channel from the
destination, walks the SMS provider chain with retries and records exactly
one ``SmsLog`` row per logical message. Callers run it after their own
transaction has committed; nothing here raises into them.
"""

from __future__ import annotations

import datetime as dt
import json
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ..config import Settings, get_settings
from ..log import get_logger
from ..models import SmsLog
from . import templates
from .emailer import EmailProvider
from .phone import is_email, validate_phone
from .providers import SendResult, SmsProvider, build_providers

logger = get_logger(__name__)

MODE_DEV = "development"
MODE_TEST = "test"
MODE_LIVE = "live"


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


class NotificationDispatcher:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        settings: Optional[Settings] = None,
        providers: Optional[List[SmsProvider]] = None,
        email: Optional[EmailProvider] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.session_factory = session_factory
        self.settings = settings or get_settings()
        self.providers = providers if providers is not None else build_providers(self.settings)
        self.email = email or EmailProvider(self.settings)
        self.sleep = sleep

    @property
    def mode(self) -> str:
        if not self.settings.sms_enabled:
            return MODE_DEV
        if self.settings.sms_test_mode:
            return MODE_TEST
        return MODE_LIVE

    # -----------------------------
    # Entry points
    # -----------------------------

    def notify(
        self,
        destination: str,
        template_key: str,
        params: Dict[str, Any],
        order_id: Optional[int] = None,
    ) -> Optional[SmsLog]:
        try:
            message = templates.render(template_key, self._template_params(params))
        except Exception:
            logger.exception("notification_render_failed", template=template_key, order_id=order_id)
            return None
        row, _ = self._dispatch(destination, message, order_id)
        return row

    def send(self, destination: str, message: str, order_id: Optional[int] = None) -> SendResult:
        _, result = self._dispatch(destination, message, order_id)
        return result

    def notify_order_confirmation(self, phone: str, order_number: str, amount, order_id=None) -> Optional[SmsLog]:
        return self.notify(
            phone,
            templates.ORDER_CONFIRMATION,
            {"order_number": order_number, "amount": amount},
            order_id=order_id,
        )

    def notify_status_update(
        self,
        phone: str,
        order_number: str,
        status: str,
        note: Optional[str] = None,
        order_id: Optional[int] = None,
    ) -> Optional[SmsLog]:
        key, extra = templates.status_template(status, note)
        return self.notify(phone, key, {"order_number": order_number, **extra}, order_id=order_id)

    def notify_admin_new_order(self, order_number: str, amount, customer_name: Optional[str] = None) -> Optional[SmsLog]:
        admin_phone = self.settings.admin_phone
        if not admin_phone:
            logger.info("admin_notification_skipped", reason="admin phone not configured", order_number=order_number)
            return None
        return self.notify(
            admin_phone,
            templates.ADMIN_NEW_ORDER,
            {"order_number": order_number, "amount": amount, "customer_name": customer_name or "Customer"},
        )

    # -----------------------------
    # Internals
    # -----------------------------

    def _template_params(self, params: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "store_name": self.settings.store_name,
            "store_phone": self.settings.store_phone,
            **params,
        }

    def _dispatch(self, destination: str, message: str, order_id: Optional[int]) -> Tuple[Optional[SmsLog], SendResult]:
        try:
            if is_email(destination):
                return self._dispatch_email(destination, message, order_id)
            return self._dispatch_sms(destination, message, order_id)
        except Exception as e:
            logger.exception("notification_failed", order_id=order_id)
            return None, SendResult(sent=False, error=str(e))

    def _dispatch_email(self, destination: str, message: str, order_id: Optional[int]) -> Tuple[SmsLog, SendResult]:
        with self.session_factory() as db:
            row = self._open_log(db, destination.strip(), message, order_id)
            result = self.email.send(destination, message)
            self._close_log(db, row, result, attempts=1)
        return row, result

    def _dispatch_sms(self, destination: str, message: str, order_id: Optional[int]) -> Tuple[Optional[SmsLog], SendResult]:
        check = validate_phone(destination)
        if not check.valid:
            logger.warning("sms_invalid_phone", phone=destination, error=check.error, order_id=order_id)
            return None, SendResult(sent=False, error=check.error)
        if check.warning:
            logger.warning("sms_unknown_prefix", phone=check.formatted, warning=check.warning)

        with self.session_factory() as db:
            row = self._open_log(db, check.formatted, message, order_id)

            mode = self.mode
            if mode != MODE_LIVE:
                logger.info(
                    "sms_simulated",
                    mode=mode,
                    phone=check.formatted,
                    telco=check.telco,
                    length=len(message),
                    message=message,
                )
                result = SendResult(sent=True, response={"mode": mode, "telco": check.telco})
                self._close_log(db, row, result, attempts=0)
                return row, result

            result, attempts = self._deliver(check.formatted, message)
            self._close_log(db, row, result, attempts=attempts)

        if result.sent:
            logger.info("sms_sent", provider=result.provider, message_id=result.message_id, attempts=attempts, order_id=order_id)
        else:
            logger.error("sms_failed", error=result.error, attempts=attempts, order_id=order_id)
        return row, result

    def _deliver(self, phone: str, message: str) -> Tuple[SendResult, int]:
        """Walk the provider chain, retrying the whole chain with linear backoff."""
        max_retries = max(0, self.settings.sms_max_retries)
        result = SendResult(sent=False, error="No SMS provider configured")

        for attempt in range(1, max_retries + 2):
            result = self._try_chain(phone, message)
            if result.sent:
                return result, attempt
            if attempt <= max_retries:
                delay = self.settings.sms_retry_backoff_seconds * attempt
                logger.warning("sms_retry", attempt=attempt, max_retries=max_retries, delay=delay, error=result.error)
                self.sleep(delay)

        return result, max_retries + 1

    def _try_chain(self, phone: str, message: str) -> SendResult:
        errors = []
        for provider in self.providers:
            if not provider.is_configured():
                logger.debug("sms_provider_skipped", provider=provider.name)
                continue
            try:
                result = provider.send(phone, message)
            except Exception as e:
                logger.exception("sms_provider_error", provider=provider.name)
                result = SendResult(sent=False, provider=provider.name, error=str(e))
            if result.sent:
                return result
            errors.append(f"{provider.name}: {result.error}")
        return SendResult(sent=False, error="; ".join(errors) or "No SMS provider configured")

    def _open_log(self, db: Session, destination: str, message: str, order_id: Optional[int]) -> SmsLog:
        row = SmsLog(
            order_id=order_id,
            destination=destination,
            message=message,
            status="pending",
            attempts=0,
            created_at=_utcnow(),
        )
        db.add(row)
        db.commit()
        return row

    def _close_log(self, db: Session, row: SmsLog, result: SendResult, *, attempts: int) -> None:
        row.attempts = attempts
        row.provider = result.provider
        if result.sent:
            row.status = "sent"
            row.sent_at = _utcnow()
            payload = result.response if isinstance(result.response, dict) else {"response": result.response}
            if result.message_id:
                payload = {**payload, "message_id": result.message_id}
            row.response = json.dumps(payload, default=str)
        else:
            row.status = "failed"
            row.error = result.error
            row.response = result.response_text()
        db.commit()


# -----------------------------
# Reporting
# -----------------------------


def get_sms_logs(db: Session, order_id: int) -> List[SmsLog]:
    stmt = select(SmsLog).where(SmsLog.order_id == order_id).order_by(SmsLog.created_at.desc(), SmsLog.id.desc())
    return list(db.execute(stmt).scalars().all())


def get_sms_stats(db: Session, start: Optional[dt.datetime] = None, end: Optional[dt.datetime] = None) -> Dict[str, Any]:
    filters = []
    if start is not None:
        filters.append(SmsLog.created_at >= start)
    if end is not None:
        filters.append(SmsLog.created_at <= end)

    counts = dict(
        db.execute(select(SmsLog.status, func.count(SmsLog.id)).where(*filters).group_by(SmsLog.status)).all()
    )
    total = sum(counts.values())
    sent = counts.get("sent", 0)
    return {
        "total": total,
        "sent": sent,
        "failed": counts.get("failed", 0),
        "pending": counts.get("pending", 0),
        "success_rate": f"{sent / total * 100:.2f}%" if total else "0%",
    }
