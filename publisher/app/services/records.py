from __future__ import annotations

import logging
from typing import Any, Dict, Protocol

import httpx

from publisher.app.config import Settings
from publisher.app.errors import PersistenceError
from publisher.app.services.supabase import error_message, supabase_headers

logger = logging.getLogger("publisher.records")


class RecordSink(Protocol):
    """Keyed record updater."""

    async def update_by_key(
        self,
        table: str,
        key_column: str,
        key: str,
        values: Dict[str, Any],
    ) -> None:
        """Update the matching row; raises ``PersistenceError`` on failure."""
        ...


class SupabaseRecords:
    """
    PostgREST client for single-row updates.

    A request that matches no row is a failure: the caller asked to
    record a URL against an order that does not exist.
    """

    def __init__(self, http_client: httpx.AsyncClient, settings: Settings) -> None:
        self.client = http_client
        self.settings = settings
        self.base_url = settings.supabase_base_url

    async def update_by_key(
        self,
        table: str,
        key_column: str,
        key: str,
        values: Dict[str, Any],
    ) -> None:
        headers = {
            **supabase_headers(self.settings),
            "Content-Type": "application/json",
            "Prefer": "return=representation",
        }

        try:
            response = await self.client.patch(
                f"{self.base_url}/rest/v1/{table}",
                params={key_column: f"eq.{key}"},
                json=values,
                headers=headers,
            )
        except httpx.HTTPError as exc:
            raise PersistenceError(f"Record update failed: {exc}") from exc

        if response.is_error:
            logger.error(
                "record_update_rejected",
                extra={
                    "table": table,
                    "key": key,
                    "status_code": response.status_code,
                    "response_body": response.text,
                },
            )
            raise PersistenceError(error_message(response))

        try:
            rows = response.json()
        except ValueError as exc:
            raise PersistenceError(
                "Record update returned an unreadable response."
            ) from exc

        if not rows:
            raise PersistenceError(
                f"No record in '{table}' matches {key_column}={key}."
            )

        logger.info(
            "record_updated",
            extra={
                "table": table,
                "key": key,
                "rows": len(rows),
            },
        )
