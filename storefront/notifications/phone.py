"""Philippine mobile number handling.

Every number is stored and logged in the local ``09XXXXXXXXX`` form;
providers get the ``639XXXXXXXXX`` international form.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

TELCO_PREFIXES = {
    "GLOBE": (
        "0904", "0905", "0906", "0915", "0916", "0917", "0926", "0927",
        "0935", "0936", "0937", "0945", "0953", "0954", "0955", "0956", "0965",
        "0966", "0967", "0975", "0976", "0977", "0978", "0979", "0994", "0995",
        "0996", "0997",
    ),
    "SMART": (
        "0907", "0908", "0909", "0910", "0911", "0912", "0913", "0914",
        "0918", "0919", "0920", "0921", "0922", "0923", "0924", "0925", "0928",
        "0929", "0930", "0931", "0932", "0933", "0934", "0938", "0939", "0940",
        "0941", "0942", "0943", "0944", "0946", "0947", "0948", "0949", "0950",
        "0951", "0961", "0963", "0968", "0969", "0970", "0971", "0973", "0974",
        "0981", "0989", "0992", "0998", "0999",
    ),
    "DITO": ("0991", "0993"),
}

ALL_VALID_PREFIXES = frozenset(p for prefixes in TELCO_PREFIXES.values() for p in prefixes)

_NON_DIGITS = re.compile(r"\D")


@dataclass(frozen=True)
class PhoneCheck:
    valid: bool
    formatted: Optional[str] = None
    telco: Optional[str] = None
    error: Optional[str] = None
    warning: Optional[str] = None


def normalize_phone(phone) -> Optional[str]:
    """Accepts ``+63 917...``, ``63917...``, ``0917...`` or ``917...``."""
    if phone is None:
        return None
    cleaned = _NON_DIGITS.sub("", str(phone))
    if not cleaned:
        return None

    if cleaned.startswith("63") and len(cleaned) == 12:
        cleaned = "0" + cleaned[2:]

    if cleaned.startswith("9") and len(cleaned) == 10:
        cleaned = "0" + cleaned

    return cleaned


def to_international(phone) -> Optional[str]:
    formatted = normalize_phone(phone)
    if not formatted or len(formatted) != 11:
        return None
    return "63" + formatted[1:]


def telco_for_prefix(prefix: str) -> Optional[str]:
    for network, prefixes in TELCO_PREFIXES.items():
        if prefix in prefixes:
            return network
    return None


def validate_phone(phone) -> PhoneCheck:
    formatted = normalize_phone(phone)

    if not formatted:
        return PhoneCheck(valid=False, error="Phone number is required")

    if len(formatted) != 11:
        return PhoneCheck(
            valid=False,
            error=f"Phone number must be 11 digits (e.g., 09171234567). Got {len(formatted)} digits.",
        )

    if not formatted.startswith("09"):
        return PhoneCheck(valid=False, error="Phone number must start with 09")

    prefix = formatted[:4]
    telco = telco_for_prefix(prefix)
    if telco is None:
        # unknown networks are still attempted
        return PhoneCheck(
            valid=True,
            formatted=formatted,
            telco="UNKNOWN",
            warning=f"Unrecognized network prefix: {prefix}. SMS may still be delivered.",
        )

    return PhoneCheck(valid=True, formatted=formatted, telco=telco)


def is_email(destination: str) -> bool:
    return "@" in (destination or "")
