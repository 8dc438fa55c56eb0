"""
Publish coordinator for Begleitschein PDFs.

The coordinator owns the full lifecycle of one logical publish request:

    1. Input validation (no side effects)
    2. Single-flight / idempotence gate
    3. Assemble → stage → wait for assets → rasterize → finalize
    4. Upload (overwrite on conflict)
    5. Public URL resolution
    6. Record persistence
    7. Terminal status transition and failure notice

It MUST NOT:
- retry any step
- roll back an upload when persistence fails
- let a pipeline exception escape to the caller

Status is owned exclusively by the coordinator instance and is only ever
exposed as an immutable PublishStatus snapshot.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from datetime import datetime, timezone
from typing import Callable, Dict, FrozenSet, Optional

import anyio.to_thread

from publisher.app.config import Settings
from publisher.app.errors import (
    AddressResolutionError,
    InvalidTransitionError,
    PublishError,
    RenderError,
    ValidationError,
)
from publisher.app.events import NullStatusSink, StatusNotice, StatusSink
from publisher.app.rendering.host import RenderHost
from publisher.app.rendering.rasterizer import rasterize
from publisher.app.rendering.readiness import wait_until_ready
from publisher.app.rendering.surface import stage_surface
from publisher.app.schemas.status import PublishState, PublishStatus
from publisher.app.schemas.submission import SubmissionData
from publisher.app.services.assembler import (
    AssemblyMode,
    assemble,
    format_timestamp,
    load_stylesheet,
)
from publisher.app.services.pdf_postprocess import finalize_pdf
from publisher.app.services.records import RecordSink
from publisher.app.services.storage import StorageSink
from publisher.app.utils.naming import pdf_filename

logger = logging.getLogger("publisher.coordinator")

PDF_CONTENT_TYPE = "application/pdf"

FAILURE_TITLE = "Fehler beim Begleitschein-Export"
FALLBACK_FAILURE_MESSAGE = "Die PDF-Datei konnte nicht erstellt werden."
MISSING_INPUT_MESSAGE = "Fehlende Daten für PDF-Generierung."

# Every state has an entry; anything not listed is rejected.
TRANSITIONS: Dict[PublishState, FrozenSet[PublishState]] = {
    PublishState.IDLE: frozenset({PublishState.UPLOADING}),
    PublishState.UPLOADING: frozenset({PublishState.SUCCESS, PublishState.FAILED}),
    PublishState.SUCCESS: frozenset({PublishState.IDLE}),
    PublishState.FAILED: frozenset({PublishState.UPLOADING, PublishState.IDLE}),
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PublishCoordinator:
    """
    Single-flight render-and-publish pipeline for one logical request.

    State machine:
        idle → uploading → {success, failed}

    ``success`` is sticky until ``reset()``: repeated calls return the
    cached URL. ``failed`` accepts a new explicit call.
    """

    def __init__(
        self,
        *,
        settings: Settings,
        render_host: RenderHost,
        storage: StorageSink,
        records: RecordSink,
        status_sink: Optional[StatusSink] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._settings = settings
        self._render_host = render_host
        self._storage = storage
        self._records = records
        self._status_sink = status_sink or NullStatusSink()
        self._clock = clock

        self._state = PublishState.IDLE
        self._status = PublishStatus()

    # ------------------------------------------------------------------
    # Status projection
    # ------------------------------------------------------------------

    @property
    def state(self) -> PublishState:
        return self._state

    @property
    def status(self) -> PublishStatus:
        return self._status

    def reset(self) -> PublishStatus:
        """
        Return a finished instance to ``idle`` for a new attempt.

        Raises:
            InvalidTransitionError: while an attempt is in flight.
        """
        if self._state is not PublishState.IDLE:
            self._transition(PublishState.IDLE)
        self._status = PublishStatus()
        return self._status

    def _transition(
        self,
        target: PublishState,
        *,
        url: Optional[str] = None,
        error: Optional[str] = None,
    ) -> None:
        if target not in TRANSITIONS[self._state]:
            raise InvalidTransitionError(
                f"Cannot transition from '{self._state.value}' to '{target.value}'."
            )

        self._state = target
        self._status = PublishStatus(
            uploading=target is PublishState.UPLOADING,
            success=target is PublishState.SUCCESS,
            error=error if target is PublishState.FAILED else None,
            url=url if target is PublishState.SUCCESS else None,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def publish(
        self,
        data: Optional[SubmissionData],
        identifier: Optional[str],
        asset_data_url: Optional[str] = None,
    ) -> Optional[str]:
        """
        Render, upload and record the Begleitschein for ``identifier``.

        Returns the public URL, or None on validation failure or when
        the attempt failed. Failure detail is available via ``status``.
        """

        # ----------------------------------------------------------
        # 1. Validation (no side effects)
        # ----------------------------------------------------------
        try:
            self._validate(data, identifier)
        except ValidationError as exc:
            logger.warning(
                "publish_input_invalid",
                extra={"order_number": identifier, "reason": str(exc)},
            )
            # A held success keeps its terminal flag alone.
            if self._state is not PublishState.SUCCESS:
                self._status = self._status.model_copy(
                    update={"error": MISSING_INPUT_MESSAGE}
                )
            return None

        # ----------------------------------------------------------
        # 2. Single-flight and idempotence gate
        # ----------------------------------------------------------
        if self._state is PublishState.UPLOADING:
            logger.info(
                "publish_already_in_flight",
                extra={"order_number": identifier},
            )
            return self._status.url

        if self._state is PublishState.SUCCESS and self._status.url:
            logger.info(
                "publish_already_completed",
                extra={"order_number": identifier, "url": self._status.url},
            )
            return self._status.url

        # ----------------------------------------------------------
        # 3. Attempt start
        # ----------------------------------------------------------
        self._transition(PublishState.UPLOADING)
        logger.info("publish_started", extra={"order_number": identifier})

        try:
            url = await self._run_pipeline(data, identifier, asset_data_url)

        except asyncio.CancelledError:
            self._transition(PublishState.FAILED, error="Export abgebrochen.")
            logger.warning("publish_cancelled", extra={"order_number": identifier})
            raise

        except Exception as exc:
            message = str(exc) or FALLBACK_FAILURE_MESSAGE
            logger.exception(
                "publish_failed",
                extra={
                    "order_number": identifier,
                    "exception_type": type(exc).__name__,
                },
            )
            self._transition(PublishState.FAILED, error=message)
            await self._notify_failure(identifier, message)
            return None

        self._transition(PublishState.SUCCESS, url=url)
        logger.info(
            "publish_completed",
            extra={"order_number": identifier, "url": url},
        )
        return url

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    @staticmethod
    def _validate(data: Optional[SubmissionData], identifier: Optional[str]) -> None:
        if data is None:
            raise ValidationError("Submission data is missing.")
        if identifier is None or not str(identifier).strip():
            raise ValidationError("Order number is missing.")

    async def _run_pipeline(
        self,
        data: SubmissionData,
        identifier: str,
        asset_data_url: Optional[str],
    ) -> str:
        settings = self._settings

        if data.submission_date is None:
            data = data.model_copy(update={"submission_date": self._clock()})

        pdf_bytes = await self._render(data, identifier, asset_data_url)

        if len(pdf_bytes) < settings.min_pdf_bytes:
            logger.warning(
                "pdf_suspiciously_small",
                extra={
                    "order_number": identifier,
                    "size_bytes": len(pdf_bytes),
                    "threshold_bytes": settings.min_pdf_bytes,
                },
            )

        # ----------------------------------------------------------
        # Upload (overwrite on conflict)
        # ----------------------------------------------------------
        filename = pdf_filename(identifier)
        await self._storage.upload(
            settings.storage_bucket,
            filename,
            pdf_bytes,
            content_type=PDF_CONTENT_TYPE,
            overwrite=True,
        )

        # ----------------------------------------------------------
        # Public address
        # ----------------------------------------------------------
        url = await self._storage.get_public_url(settings.storage_bucket, filename)
        if not url:
            raise AddressResolutionError(
                f"Konnte keine öffentliche URL für {filename} erhalten."
            )

        # ----------------------------------------------------------
        # Persistence (no rollback of the upload on failure)
        # ----------------------------------------------------------
        await self._records.update_by_key(
            settings.record_table,
            settings.record_key_column,
            identifier,
            {settings.record_url_column: url},
        )

        return url

    async def _render(
        self,
        data: SubmissionData,
        identifier: str,
        asset_data_url: Optional[str],
    ) -> bytes:
        settings = self._settings
        page_size = settings.page_size

        markup = assemble(
            data,
            identifier,
            format_timestamp(data.submission_date, settings.display_timezone),
            AssemblyMode.FRAGMENT,
            asset_data_url=asset_data_url,
            order_number_prefix=settings.order_number_prefix,
        )

        try:
            async with stage_surface(
                self._render_host,
                markup,
                load_stylesheet(),
                page_size,
                strip_imports=settings.strip_css_imports,
            ) as surface:
                readiness = await wait_until_ready(self._render_host, surface)
                raw_pdf = await rasterize(
                    self._render_host,
                    surface,
                    page_size,
                    settings.render_scale,
                )

            pdf_bytes = await anyio.to_thread.run_sync(
                functools.partial(
                    finalize_pdf,
                    raw_pdf,
                    title=f"Begleitschein - {identifier}",
                    page_size=page_size,
                )
            )
        except PublishError:
            raise
        except Exception as exc:
            raise RenderError(f"PDF rendering failed: {exc}") from exc

        logger.info(
            "pdf_rendered",
            extra={
                "order_number": identifier,
                "size_bytes": len(pdf_bytes),
                "assets_total": readiness.total,
                "assets_failed": readiness.failed,
            },
        )
        return pdf_bytes

    async def _notify_failure(self, identifier: str, message: str) -> None:
        try:
            await self._status_sink.notify(
                StatusNotice(
                    title=FAILURE_TITLE,
                    description=message,
                    order_number=identifier,
                )
            )
        except Exception:
            # Notification must never change the outcome
            logger.warning(
                "status_notice_failed",
                extra={"order_number": identifier},
            )
