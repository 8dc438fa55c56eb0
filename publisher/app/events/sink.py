from __future__ import annotations

import logging
from typing import Protocol

from publisher.app.events.models import Severity, StatusNotice

logger = logging.getLogger("publisher.events")


class StatusSink(Protocol):
    """
    Interface for surfacing publish failures to a human.

    Implementations must be:
    - non-blocking (or minimally blocking)
    - fail-safe (notification failures must not change the outcome)
    """

    async def notify(self, notice: StatusNotice) -> None:
        ...


class NullStatusSink:
    """
    A safe no-op sink.

    Used when:
    - no UI is attached
    - tests that do not care about notices
    """

    async def notify(self, notice: StatusNotice) -> None:
        return


class LoggingStatusSink:
    """
    Writes notices to the service log.

    Used by the HTTP surface, where the caller reads the status
    projection instead of a toast.
    """

    _LEVELS = {
        Severity.INFO: logging.INFO,
        Severity.WARNING: logging.WARNING,
        Severity.DESTRUCTIVE: logging.ERROR,
    }

    async def notify(self, notice: StatusNotice) -> None:
        logger.log(
            self._LEVELS[notice.severity],
            "status_notice",
            extra={
                "title": notice.title,
                "description": notice.description,
                "order_number": notice.order_number,
            },
        )
