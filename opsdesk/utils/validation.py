"""Request payload validation.

Services validate the whole payload before touching the database and
report every failing field at once:

    v = Validator(data)
    name = v.text("client_name", required=True, min_len=2, max_len=255)
    email = v.email("client_email")
    v.raise_if_invalid()

Each accessor returns the cleaned value (or None) and records a message in
``v.errors`` on failure.
"""

from __future__ import annotations

import re
from decimal import Decimal, InvalidOperation
from urllib.parse import urlparse

from email_validator import EmailNotValidError, validate_email

from opsdesk.core.exceptions import ValidationError

# Kenyan mobile numbers: +2547XXXXXXXX, 07XXXXXXXX, 7XXXXXXXX (and the 1xx range)
PHONE_RE = re.compile(r"^(\+254|0)?[17]\d{8}$")

_MISSING = object()

# Largest value a Numeric(12, 2) column holds
MAX_AMOUNT = Decimal("9999999999.99")


def normalize_email(value: str) -> str:
    """Validate syntax and return the lower-cased address.

    Raises ValueError with a readable message on invalid input.
    """
    try:
        return validate_email(str(value).strip(), check_deliverability=False).normalized.lower()
    except EmailNotValidError as exc:
        raise ValueError(str(exc)) from exc


class Validator:
    """Accumulates field errors over one payload."""

    def __init__(self, data: dict | None):
        self.data = data if isinstance(data, dict) else {}
        self.errors: dict[str, str] = {}

    # ── internals ────────────────────────────────────────────────────────

    def _raw(self, name):
        value = self.data.get(name, _MISSING)
        if value is None or (isinstance(value, str) and not value.strip()):
            return _MISSING
        return value

    def _fail(self, name, message):
        self.errors.setdefault(name, message)
        return None

    def _required(self, name, required):
        if required:
            self._fail(name, f"{name} is required")
        return None

    # ── scalar fields ────────────────────────────────────────────────────

    def text(self, name, *, required=False, min_len=None, max_len=None, default=None):
        raw = self._raw(name)
        if raw is _MISSING:
            return self._required(name, required) if required else default
        if not isinstance(raw, str):
            return self._fail(name, f"{name} must be a string")
        value = raw.strip()
        if min_len is not None and len(value) < min_len:
            return self._fail(name, f"{name} must be at least {min_len} characters")
        if max_len is not None and len(value) > max_len:
            return self._fail(name, f"{name} must be at most {max_len} characters")
        return value

    def email(self, name, *, required=True):
        raw = self._raw(name)
        if raw is _MISSING:
            return self._required(name, required)
        try:
            return normalize_email(raw)
        except ValueError:
            return self._fail(name, "Valid email is required")

    def phone(self, name, *, required=False):
        raw = self._raw(name)
        if raw is _MISSING:
            return self._required(name, required)
        value = re.sub(r"[\s-]", "", str(raw))
        if not PHONE_RE.match(value):
            return self._fail(name, "Valid phone number is required")
        return value

    def choice(self, name, choices, *, required=False, default=None):
        raw = self._raw(name)
        if raw is _MISSING:
            return self._required(name, required) if required else default
        if raw not in choices:
            return self._fail(name, f"{name} must be one of: {', '.join(sorted(choices))}")
        return raw

    def integer(self, name, *, required=False, min_value=None, max_value=None, default=None):
        raw = self._raw(name)
        if raw is _MISSING:
            return self._required(name, required) if required else default
        if isinstance(raw, bool):
            return self._fail(name, f"{name} must be an integer")
        try:
            value = int(raw)
        except (TypeError, ValueError, OverflowError):
            return self._fail(name, f"{name} must be an integer")
        if isinstance(raw, float) and raw != value:
            return self._fail(name, f"{name} must be an integer")
        if min_value is not None and value < min_value:
            return self._fail(name, f"{name} must be at least {min_value}")
        if max_value is not None and value > max_value:
            return self._fail(name, f"{name} must be at most {max_value}")
        return value

    def amount(self, name, *, required=False, min_value=0, max_value=MAX_AMOUNT, default=None):
        raw = self._raw(name)
        if raw is _MISSING:
            return self._required(name, required) if required else default
        value = to_amount(raw)
        if value is None:
            return self._fail(name, f"{name} must be a number")
        if min_value is not None and value < min_value:
            return self._fail(name, f"{name} must be a non-negative number")
        if max_value is not None and value > max_value:
            return self._fail(name, f"{name} must be at most {max_value}")
        return value

    def boolean(self, name, *, default=False):
        raw = self.data.get(name, default)
        if isinstance(raw, bool):
            return raw
        if raw in (0, 1, "0", "1", "true", "false"):
            return raw in (1, "1", "true")
        return self._fail(name, f"{name} must be a boolean")

    def url(self, name, *, required=False):
        raw = self._raw(name)
        if raw is _MISSING:
            return self._required(name, required)
        value = str(raw).strip()
        parsed = urlparse(value)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            return self._fail(name, f"{name} must be a valid URL")
        return value

    def datetime(self, name, *, required=False):
        from opsdesk.utils.helpers import parse_datetime

        raw = self._raw(name)
        if raw is _MISSING:
            return self._required(name, required)
        try:
            return parse_datetime(raw)
        except (TypeError, ValueError):
            return self._fail(name, f"{name} must be an ISO-8601 datetime")

    # ── structured fields ────────────────────────────────────────────────

    def string_list(self, name, *, required=False, min_items=0, max_len=255):
        raw = self.data.get(name)
        if raw is None:
            if required or min_items:
                return self._fail(name, f"At least {max(min_items, 1)} {name} item is required")
            return []
        if not isinstance(raw, list):
            return self._fail(name, f"{name} must be a list")
        values = []
        for item in raw:
            if not isinstance(item, str) or not item.strip():
                return self._fail(name, f"{name} must contain non-empty strings")
            if len(item.strip()) > max_len:
                return self._fail(name, f"{name} entries must be at most {max_len} characters")
            values.append(item.strip())
        if len(values) < min_items:
            return self._fail(name, f"At least {min_items} {name} item is required")
        return values

    def mapping(self, name, *, required=False):
        raw = self.data.get(name)
        if raw is None:
            return self._required(name, required) if required else {}
        if not isinstance(raw, dict):
            return self._fail(name, f"{name} must be an object")
        return raw

    # ── result ───────────────────────────────────────────────────────────

    def add_error(self, name, message):
        self._fail(name, message)

    @property
    def ok(self) -> bool:
        return not self.errors

    def raise_if_invalid(self, message="Validation failed"):
        if self.errors:
            raise ValidationError(message, details=dict(self.errors))


def to_amount(value) -> Decimal | None:
    """Coerce a JSON number or numeric string into a 2-dp Decimal."""
    if isinstance(value, bool):
        return None
    try:
        amount = Decimal(str(value).strip())
        if not amount.is_finite():
            return None
        return amount.quantize(Decimal("0.01"))
    except (InvalidOperation, ValueError):
        return None
