"""
SMS provider clients.

Each provider posts to its HTTP API with ``requests`` and turns the reply into
a ``SendResult``. Providers never raise for a failed delivery; transport
errors come back as ``sent=False`` with the error text.
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import requests

from ..config import Settings
from ..log import get_logger, sanitize_for_logging
from .phone import to_international

logger = get_logger(__name__)

SEMAPHORE_URL = "https://api.semaphore.co/api/v4/messages"
MOVIDER_URL = "https://api.movider.co/v1/sms"
VONAGE_URL = "https://rest.nexmo.com/sms/json"


@dataclass
class SendResult:
    sent: bool
    provider: Optional[str] = None
    message_id: Optional[str] = None
    response: Optional[Any] = None
    error: Optional[str] = None

    def response_text(self) -> Optional[str]:
        if self.response is None:
            return None
        if isinstance(self.response, str):
            return self.response
        return json.dumps(self.response, default=str)


class SmsProvider(ABC):
    name = "base"

    def __init__(self, timeout: float = 30.0) -> None:
        self.timeout = timeout

    def is_configured(self) -> bool:
        return True

    @abstractmethod
    def send(self, phone: str, message: str) -> SendResult:
        ...

    def _post(self, url: str, payload: Dict[str, Any]) -> requests.Response:
        logger.debug("sms_provider_request", provider=self.name, url=url, payload=sanitize_for_logging(payload))
        return requests.post(url, json=payload, timeout=self.timeout)

    def _failed(self, error: str, response: Any = None) -> SendResult:
        return SendResult(sent=False, provider=self.name, response=response, error=error)


class SemaphoreProvider(SmsProvider):
    name = "semaphore"

    def __init__(self, api_key: str, sender_name: str, timeout: float = 30.0) -> None:
        super().__init__(timeout)
        self.api_key = api_key
        self.sender_name = sender_name

    def is_configured(self) -> bool:
        return bool(self.api_key)

    def send(self, phone: str, message: str) -> SendResult:
        try:
            resp = self._post(
                SEMAPHORE_URL,
                {
                    "apikey": self.api_key,
                    "number": to_international(phone),
                    "message": message,
                    "sendername": self.sender_name,
                },
            )
            if not resp.ok:
                return self._failed(f"HTTP {resp.status_code}", resp.text)
            data = resp.json()
        except (requests.exceptions.RequestException, ValueError) as e:
            return self._failed(str(e))

        first = data[0] if isinstance(data, list) and data else data
        if not isinstance(first, dict):
            return self._failed("Unexpected response", data)
        if first.get("status") == "failed" or first.get("error"):
            return self._failed(str(first.get("error") or first.get("message") or "Semaphore rejected the message"), data)

        message_id = first.get("message_id")
        return SendResult(
            sent=True,
            provider=self.name,
            message_id=str(message_id) if message_id is not None else None,
            response=data,
        )


class MoviderProvider(SmsProvider):
    name = "movider"

    def __init__(self, api_key: str, api_secret: str, timeout: float = 30.0) -> None:
        super().__init__(timeout)
        self.api_key = api_key
        self.api_secret = api_secret

    def is_configured(self) -> bool:
        return bool(self.api_key and self.api_secret)

    def send(self, phone: str, message: str) -> SendResult:
        try:
            resp = self._post(
                MOVIDER_URL,
                {
                    "api_key": self.api_key,
                    "api_secret": self.api_secret,
                    "to": "+" + (to_international(phone) or ""),
                    "text": message,
                },
            )
            if not resp.ok:
                return self._failed(f"HTTP {resp.status_code}", resp.text)
            data = resp.json()
        except (requests.exceptions.RequestException, ValueError) as e:
            return self._failed(str(e))

        numbers = data.get("phone_number_list") if isinstance(data, dict) else None
        if not numbers:
            error = data.get("error") if isinstance(data, dict) else None
            if isinstance(error, dict):
                error = error.get("description") or error.get("message")
            return self._failed(str(error or "Movider rejected the message"), data)

        return SendResult(sent=True, provider=self.name, message_id=numbers[0].get("message_id"), response=data)


class VonageProvider(SmsProvider):
    name = "vonage"

    def __init__(self, api_key: str, api_secret: str, sender_name: str, timeout: float = 30.0) -> None:
        super().__init__(timeout)
        self.api_key = api_key
        self.api_secret = api_secret
        self.sender_name = sender_name

    def is_configured(self) -> bool:
        return bool(self.api_key and self.api_secret)

    def send(self, phone: str, message: str) -> SendResult:
        try:
            resp = self._post(
                VONAGE_URL,
                {
                    "api_key": self.api_key,
                    "api_secret": self.api_secret,
                    "from": self.sender_name,
                    "to": to_international(phone),
                    "text": message,
                },
            )
            if not resp.ok:
                return self._failed(f"HTTP {resp.status_code}", resp.text)
            data = resp.json()
        except (requests.exceptions.RequestException, ValueError) as e:
            return self._failed(str(e))

        messages = data.get("messages") if isinstance(data, dict) else None
        if not messages:
            return self._failed("Unexpected response", data)
        first = messages[0]
        if str(first.get("status")) != "0":
            return self._failed(str(first.get("error-text") or "Vonage rejected the message"), data)

        return SendResult(sent=True, provider=self.name, message_id=first.get("message-id"), response=data)


class ConsoleProvider(SmsProvider):
    """Writes the message to the log and reports success."""

    name = "console"

    def send(self, phone: str, message: str) -> SendResult:
        logger.info("sms_console", phone=phone, message=message)
        return SendResult(sent=True, provider=self.name, response={"mode": "console"})


def build_providers(settings: Settings) -> List[SmsProvider]:
    """Provider chain in ``SMS_PROVIDERS`` order. Unknown names are skipped."""
    timeout = settings.sms_timeout_seconds
    factories = {
        "semaphore": lambda: SemaphoreProvider(settings.semaphore_api_key, settings.sms_sender_name, timeout),
        "movider": lambda: MoviderProvider(settings.movider_api_key, settings.movider_api_secret, timeout),
        "vonage": lambda: VonageProvider(
            settings.vonage_api_key, settings.vonage_api_secret, settings.sms_sender_name, timeout
        ),
        "console": ConsoleProvider,
    }
    providers: List[SmsProvider] = []
    for name in settings.sms_providers:
        factory = factories.get(name)
        if factory is None:
            logger.warning("sms_provider_unknown", provider=name)
            continue
        providers.append(factory())
    return providers
