from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any

from medhub.errors import ServiceError
from medhub.time_utils import parse_iso_date, parse_iso_datetime


# Maximum price: NGN 9,999,999.99 (999,999,999 kobo)
MAX_PRICE_KOBO = 999_999_999
MAX_QUANTITY = 1000

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PHONE_RE = re.compile(r"^(?:\+?234[0-9]{10}|0[0-9]{10})$")
TRACKING_CODE_RE = re.compile(r"^TRK-SESSION-.+-\d+$")
PAYMENT_REFERENCE_PREFIXES = ("order_", "session_")


class ValidationError(ServiceError, ValueError):
    """400-level input problem, with optional per-field messages."""

    status = 400
    code = "validation_error"

    def __init__(self, message: str, errors: dict[str, str] | None = None):
        super().__init__(message, details={"fields": errors} if errors else None)
        self.errors = errors or {}


@dataclass(frozen=True)
class Field:
    """
    One request field:
    - kind: int | float | str | bool | email | phone | enum | datetime | date | list
    - required: missing/None/blank is an error
    - min_value / max_value: inclusive bounds for numbers
    - max_length: for strings
    - choices: allowed values for enum
    """
    kind: str = "str"
    required: bool = False
    min_value: float | None = None
    max_value: float | None = None
    max_length: int | None = None
    choices: tuple[str, ...] | None = None


def is_valid_email(value: str | None) -> bool:
    return bool(value) and bool(EMAIL_RE.match(value))


def normalize_phone(value: str | None) -> str | None:
    """
    Canonical Nigerian number: "+234XXXXXXXXXX".

    Strips everything but digits and '+', then rewrites a leading trunk 0
    or bare 234 country code.
    """
    if not value:
        return None
    cleaned = re.sub(r"[^\d+]", "", value)
    if cleaned.startswith("0"):
        return "+234" + cleaned[1:]
    if cleaned.startswith("234"):
        return "+" + cleaned
    return cleaned


def is_valid_phone(value: str | None) -> bool:
    if not value:
        return False
    return bool(PHONE_RE.match(re.sub(r"[\s-]", "", value)))


def is_valid_payment_reference(value: str | None) -> bool:
    return bool(value) and value.startswith(PAYMENT_REFERENCE_PREFIXES) and len(value) > 10


def is_valid_tracking_code(value: str | None) -> bool:
    return bool(value) and bool(TRACKING_CODE_RE.match(value))


def _coerce_int(key: str, value: Any) -> int:
    # bool is an int subclass; reject it along with floats and scientific notation
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValueError(f"{key} must be an integer")
        if "e" in stripped.lower():
            raise ValueError(f"{key} must be a plain integer (scientific notation not allowed)")
        if "." in stripped:
            raise ValueError(f"{key} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValueError(f"{key} must be an integer")
    if isinstance(value, float):
        raise ValueError(f"{key} must be an integer, not a decimal")
    raise ValueError(f"{key} must be an integer")


def _coerce_value(key: str, field: Field, value: Any):
    kind = field.kind

    if kind == "int":
        result = _coerce_int(key, value)
        if field.min_value is not None and result < field.min_value:
            raise ValueError(f"{key} must be >= {field.min_value}")
        if field.max_value is not None and result > field.max_value:
            raise ValueError(f"{key} must be <= {field.max_value}")
        return result

    if kind == "float":
        if isinstance(value, bool):
            raise ValueError(f"{key} must be a number")
        try:
            result = float(value)
        except (TypeError, ValueError):
            raise ValueError(f"{key} must be a number")
        if field.min_value is not None and result < field.min_value:
            raise ValueError(f"{key} must be >= {field.min_value}")
        if field.max_value is not None and result > field.max_value:
            raise ValueError(f"{key} must be <= {field.max_value}")
        return result

    if kind == "bool":
        if isinstance(value, bool):
            return value
        if isinstance(value, str) and value.strip().lower() in ("true", "1", "yes"):
            return True
        if isinstance(value, str) and value.strip().lower() in ("false", "0", "no"):
            return False
        raise ValueError(f"{key} must be a boolean")

    if kind == "datetime":
        if isinstance(value, datetime):
            return value
        try:
            dt = parse_iso_datetime(str(value))
        except ValueError:
            raise ValueError(f"{key} must be an ISO-8601 datetime")
        if dt is None:
            raise ValueError(f"{key} must be an ISO-8601 datetime")
        return dt

    if kind == "date":
        if isinstance(value, date):
            return value
        try:
            d = parse_iso_date(str(value))
        except ValueError:
            raise ValueError(f"{key} must be a date (YYYY-MM-DD)")
        if d is None:
            raise ValueError(f"{key} must be a date (YYYY-MM-DD)")
        return d

    if kind == "list":
        if not isinstance(value, list):
            raise ValueError(f"{key} must be a list")
        return value

    text = str(value).strip()
    if field.max_length and len(text) > field.max_length:
        raise ValueError(f"{key} exceeds max length {field.max_length}")

    if kind == "email":
        if not is_valid_email(text):
            raise ValueError("Invalid email format")
        return text.lower()

    if kind == "phone":
        if not is_valid_phone(text):
            raise ValueError("Invalid phone number format")
        return normalize_phone(text)

    if kind == "enum":
        if field.choices and text not in field.choices:
            raise ValueError(f"{key} must be one of: {', '.join(field.choices)}")
        return text

    return text


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value.strip() == "")


def validate_request(payload: Any, fields: dict[str, Field]) -> dict:
    """
    Validates + normalizes an incoming JSON body (or query args) against a
    field map. Unknown keys are ignored. Blank optional fields come back as None.

    Collects every field problem before raising, so the client gets the full
    error map in one response.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    cleaned: dict = {}
    errors: dict[str, str] = {}

    for key, field in fields.items():
        raw = payload.get(key)
        if _is_blank(raw):
            if field.required:
                errors[key] = f"{key} is required"
            else:
                cleaned[key] = None
            continue
        try:
            cleaned[key] = _coerce_value(key, field, raw)
        except ValueError as exc:
            errors[key] = str(exc)

    if errors:
        raise ValidationError("Validation failed", errors)
    return cleaned


def require_one_of(cleaned: dict, *keys: str) -> None:
    if not any(cleaned.get(k) is not None for k in keys):
        raise ValidationError(f"One of {', '.join(keys)} is required")


def validate_price_kobo(value: int | None) -> None:
    if value is None:
        return
    if value < 0:
        raise ValidationError("price_kobo must be >= 0", {"price_kobo": "must be >= 0"})
    if value > MAX_PRICE_KOBO:
        raise ValidationError(
            f"price_kobo cannot exceed {MAX_PRICE_KOBO}",
            {"price_kobo": f"cannot exceed {MAX_PRICE_KOBO}"},
        )
