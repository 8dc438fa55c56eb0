from __future__ import annotations

import logging
from typing import Optional, Protocol
from urllib.parse import quote

import httpx

from publisher.app.config import Settings
from publisher.app.errors import UploadError
from publisher.app.services.supabase import error_message, supabase_headers

logger = logging.getLogger("publisher.storage")


class StorageSink(Protocol):
    """Durable blob store with public URL retrieval."""

    async def upload(
        self,
        bucket: str,
        filename: str,
        data: bytes,
        *,
        content_type: str,
        overwrite: bool,
    ) -> None:
        """Store ``data``; raises ``UploadError`` when rejected."""
        ...

    async def get_public_url(self, bucket: str, filename: str) -> Optional[str]:
        ...


class SupabaseStorage:
    """
    Supabase Storage client.

    Uploads go through the authenticated object endpoint; public URLs
    are derived locally for public buckets, as the Supabase client
    libraries do.
    """

    def __init__(self, http_client: httpx.AsyncClient, settings: Settings) -> None:
        self.client = http_client
        self.settings = settings
        self.base_url = settings.supabase_base_url

    def _object_url(self, bucket: str, filename: str) -> str:
        return f"{self.base_url}/storage/v1/object/{bucket}/{quote(filename)}"

    async def upload(
        self,
        bucket: str,
        filename: str,
        data: bytes,
        *,
        content_type: str,
        overwrite: bool,
    ) -> None:
        headers = {
            **supabase_headers(self.settings),
            "Content-Type": content_type,
            "x-upsert": "true" if overwrite else "false",
            "cache-control": "max-age=3600",
        }

        try:
            response = await self.client.post(
                self._object_url(bucket, filename),
                content=data,
                headers=headers,
            )
        except httpx.HTTPError as exc:
            raise UploadError(f"Upload to storage failed: {exc}") from exc

        if response.is_error:
            logger.error(
                "storage_upload_rejected",
                extra={
                    "bucket": bucket,
                    "object_name": filename,
                    "status_code": response.status_code,
                    "response_body": response.text,
                },
            )
            raise UploadError(error_message(response))

        logger.info(
            "storage_upload_completed",
            extra={
                "bucket": bucket,
                "object_name": filename,
                "size_bytes": len(data),
            },
        )

    async def get_public_url(self, bucket: str, filename: str) -> Optional[str]:
        if not bucket or not filename:
            return None
        return (
            f"{self.base_url}/storage/v1/object/public/"
            f"{bucket}/{quote(filename)}"
        )
