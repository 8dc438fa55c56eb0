from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class Severity(str, Enum):
    """
    Display severity of a status notice.

    ``destructive`` matches the toast variant the web client renders
    for failed exports.
    """

    INFO = "info"
    WARNING = "warning"
    DESTRUCTIVE = "destructive"


class StatusNotice(BaseModel):
    """
    A human-readable message about a publish attempt.

    Notices are:
    - intended for display only
    - emitted on failure, never on success
    - not authoritative (the Coordinator status is)
    """

    title: str
    description: str
    severity: Severity = Severity.DESTRUCTIVE
    order_number: str | None = None
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
    )
