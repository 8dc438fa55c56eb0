"""
Deterministic naming for order numbers and stored artifacts.

Both helpers are pure: equal inputs always yield equal names, which is
what makes overwrite-on-upload idempotent per order number.
"""

import re
from datetime import datetime, timedelta, timezone

_UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9_-]")

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

PDF_FILENAME_PREFIX = "begleitschein_"


def sanitize_identifier(identifier: str) -> str:
    """
    Replace every character outside ``[A-Za-z0-9_-]`` with ``_``.

    Example: ``"BR/12 34"`` becomes ``"BR_12_34"``.
    """
    return _UNSAFE_FILENAME_CHARS.sub("_", identifier)


def pdf_filename(identifier: str) -> str:
    return f"{PDF_FILENAME_PREFIX}{sanitize_identifier(identifier)}.pdf"


def epoch_millis(timestamp: datetime) -> int:
    """
    Integer milliseconds since the Unix epoch.

    Naive timestamps are interpreted as UTC.
    """
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=timezone.utc)
    return (timestamp - _EPOCH) // timedelta(milliseconds=1)


def derive_order_number(timestamp: datetime, prefix: str = "BR") -> str:
    """
    Derive an order number from a submission timestamp.

    Uses the last eight digits of the epoch-millisecond value, so the
    same timestamp always produces the same order number.
    """
    return f"{prefix}-{str(epoch_millis(timestamp))[-8:]}"
