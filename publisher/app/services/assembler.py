"""
Begleitschein template assembly.

This module turns validated submission data into HTML markup. It is a
pure function boundary: no I/O beyond loading the packaged templates,
no clock access, no hidden state. Equal inputs produce byte-identical
markup, which is what the snapshot tests rely on.

Two output modes exist:

    fragment   The structural content block only (page 1, page-break
               marker, page 2). Used for staging inside a surface that
               carries its own style rules.

    full       The same block wrapped in a self-contained HTML document
               with the embedded stylesheet and a title naming the
               order number.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Any, Optional
from zoneinfo import ZoneInfo

from jinja2 import Environment, FileSystemLoader, StrictUndefined
from markupsafe import Markup

from publisher.app.schemas.submission import SubmissionData
from publisher.app.utils.naming import derive_order_number

TEMPLATE_ROOT = (
    Path(__file__).resolve().parent.parent / "templates" / "begleitschein"
)

PLACEHOLDER = "–"

DELIVERY_LABELS = {
    "versand": "Versand",
    "shipping": "Versand",
    "abholung": "Abholung",
    "pickup": "Abholung",
    "abgabe": "Abgabe vor Ort",
    "dropoff": "Abgabe vor Ort",
}


class AssemblyMode(str, Enum):
    FRAGMENT = "fragment"
    FULL = "full"


# ------------------------------------------------------------------
# Presentation filters
# ------------------------------------------------------------------

def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def or_placeholder(value: Any) -> Any:
    return PLACEHOLDER if _is_blank(value) else value


def german_number(value: Optional[float], digits: int = 2) -> str:
    """Format ``1234.5`` as ``1.234,50``."""
    formatted = f"{value:,.{digits}f}"
    return formatted.replace(",", "\x00").replace(".", ",").replace("\x00", ".")


def kilograms(value: Optional[float]) -> str:
    return PLACEHOLDER if value is None else f"{german_number(value)} kg"


def euros(value: Optional[float]) -> str:
    return PLACEHOLDER if value is None else f"{german_number(value)} €"


def delivery_label(value: Optional[str]) -> str:
    if _is_blank(value):
        return PLACEHOLDER
    return DELIVERY_LABELS.get(value.strip().lower(), value)


def _build_environment() -> Environment:
    env = Environment(
        loader=FileSystemLoader(TEMPLATE_ROOT),
        undefined=StrictUndefined,
        autoescape=True,
        trim_blocks=True,
        lstrip_blocks=True,
    )
    env.filters["or_placeholder"] = or_placeholder
    env.filters["kilograms"] = kilograms
    env.filters["euros"] = euros
    env.filters["delivery_label"] = delivery_label
    return env


_ENV = _build_environment()


# ------------------------------------------------------------------
# Public API
# ------------------------------------------------------------------

@lru_cache(maxsize=1)
def load_stylesheet() -> str:
    """Stylesheet of the Begleitschein, including its web-font import."""
    return (TEMPLATE_ROOT / "styles.css").read_text(encoding="utf-8")


def format_timestamp(timestamp: datetime, tz_name: str = "Europe/Berlin") -> str:
    """
    Render a timestamp as ``dd.mm.yyyy, HH:MM`` in the given timezone.

    Naive timestamps are interpreted as UTC.
    """
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=timezone.utc)
    return timestamp.astimezone(ZoneInfo(tz_name)).strftime("%d.%m.%Y, %H:%M")


def assemble(
    data: SubmissionData,
    identifier: Optional[str],
    formatted_timestamp: Optional[str],
    mode: AssemblyMode = AssemblyMode.FULL,
    *,
    asset_data_url: Optional[str] = None,
    order_number_prefix: str = "BR",
) -> str:
    """
    Build the Begleitschein markup.

    Args:
        data:
            Submission data. Missing optional fields render as a
            placeholder.
        identifier:
            Order number. When omitted it is derived from
            ``data.submission_date``.
        formatted_timestamp:
            Display date. When omitted it is formatted from
            ``data.submission_date``.
        mode:
            ``FRAGMENT`` for the content block, ``FULL`` for a
            self-contained document.
        asset_data_url:
            Optional raster asset (QR code) embedded on page 1.
    """
    if _is_blank(identifier):
        identifier = (
            derive_order_number(data.submission_date, order_number_prefix)
            if data.submission_date is not None
            else PLACEHOLDER
        )

    if _is_blank(formatted_timestamp):
        formatted_timestamp = (
            format_timestamp(data.submission_date)
            if data.submission_date is not None
            else PLACEHOLDER
        )

    fragment = _ENV.get_template("fragment.html.jinja").render(
        data=data,
        order_number=identifier,
        formatted_date=formatted_timestamp,
        asset_data_url=asset_data_url or "",
    )

    if AssemblyMode(mode) is AssemblyMode.FRAGMENT:
        return fragment

    return _ENV.get_template("document.html.jinja").render(
        order_number=identifier,
        styles=Markup(load_stylesheet()),
        body=Markup(fragment),
    )
