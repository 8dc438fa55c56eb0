"""
Begleitschein publish endpoints.

Clients supply submission data and, optionally, a QR-code data URL.
Rendering, upload and record persistence are performed exclusively by
this service; the response carries the coordinator's status projection.

Order numbers travel in the request body or query string, never in the
path, so identifiers containing ``/`` or spaces are accepted as-is.
"""

import logging
from typing import Annotated, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query, Request, status
from fastapi.responses import HTMLResponse, JSONResponse
from pydantic import BaseModel, Field

from publisher.app.config import Settings
from publisher.app.coordinator.coordinator import PublishCoordinator
from publisher.app.coordinator.registry import PublisherRegistry
from publisher.app.errors import InvalidTransitionError
from publisher.app.schemas.status import PublishState, PublishStatus
from publisher.app.schemas.submission import SubmissionData
from publisher.app.services.assembler import AssemblyMode, assemble, format_timestamp

logger = logging.getLogger("publisher.api")

router = APIRouter(prefix="/begleitschein", tags=["Begleitschein"])


# =============================================================================
# Request / response models
# =============================================================================

class PublishRequest(BaseModel):
    order_number: str = Field(..., description="Ankaufsnummer; used as record key")
    submission: SubmissionData
    asset_data_url: Optional[str] = Field(
        None,
        description="Optional raster asset (QR code) as a data URL",
    )


class ResetRequest(BaseModel):
    order_number: str


class PreviewRequest(BaseModel):
    submission: SubmissionData
    order_number: Optional[str] = None
    asset_data_url: Optional[str] = None


class PublishResponse(BaseModel):
    order_number: str
    url: Optional[str] = None
    status: PublishStatus


# =============================================================================
# Dependency providers
# =============================================================================

def get_registry(request: Request) -> PublisherRegistry:
    registry = getattr(request.app.state, "registry", None)
    if registry is None:
        raise RuntimeError("publisher registry not initialized")
    return registry


def get_app_settings(request: Request) -> Settings:
    settings = getattr(request.app.state, "settings", None)
    if settings is None:
        raise RuntimeError("settings not initialized")
    return settings


def _known_coordinator(
    registry: PublisherRegistry,
    order_number: str,
) -> PublishCoordinator:
    coordinator = registry.get(order_number)
    if coordinator is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No publish attempt for '{order_number}'.",
        )
    return coordinator


# =============================================================================
# POST /begleitschein/preview
# =============================================================================

@router.post(
    "/preview",
    summary="Render the self-contained Begleitschein HTML document",
    response_class=HTMLResponse,
)
async def preview_document(
    payload: Annotated[PreviewRequest, Body(...)],
    settings: Annotated[Settings, Depends(get_app_settings)],
) -> HTMLResponse:
    submission = payload.submission
    formatted = (
        format_timestamp(submission.submission_date, settings.display_timezone)
        if submission.submission_date is not None
        else None
    )
    html = assemble(
        submission,
        payload.order_number,
        formatted,
        AssemblyMode.FULL,
        asset_data_url=payload.asset_data_url,
        order_number_prefix=settings.order_number_prefix,
    )
    return HTMLResponse(content=html)


# =============================================================================
# POST /begleitschein
# =============================================================================

@router.post(
    "",
    summary="Render, upload and record the Begleitschein PDF",
    response_model=PublishResponse,
    responses={
        202: {"description": "An attempt for this order is already in flight"},
        422: {"description": "Missing submission data or order number"},
        502: {"description": "Rendering, upload or persistence failed"},
    },
)
async def publish_document(
    payload: Annotated[PublishRequest, Body(...)],
    registry: Annotated[PublisherRegistry, Depends(get_registry)],
):
    order_number = payload.order_number
    if not order_number.strip():
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="Order number is missing.",
        )

    coordinator = registry.get_or_create(order_number)
    url = await coordinator.publish(
        payload.submission,
        order_number,
        payload.asset_data_url,
    )

    body = PublishResponse(
        order_number=order_number,
        url=url,
        status=coordinator.status,
    )

    if url is not None:
        return body

    if coordinator.state is PublishState.UPLOADING:
        return JSONResponse(
            status_code=status.HTTP_202_ACCEPTED,
            content=body.model_dump(mode="json"),
        )

    logger.warning(
        "publish_request_failed",
        extra={
            "order_number": order_number,
            "error": coordinator.status.error,
        },
    )
    return JSONResponse(
        status_code=status.HTTP_502_BAD_GATEWAY,
        content=body.model_dump(mode="json"),
    )


# =============================================================================
# GET /begleitschein/status
# =============================================================================

@router.get(
    "/status",
    summary="Current publish status for an order",
    response_model=PublishStatus,
)
async def get_status(
    order_number: Annotated[str, Query(min_length=1)],
    registry: Annotated[PublisherRegistry, Depends(get_registry)],
) -> PublishStatus:
    return _known_coordinator(registry, order_number).status


# =============================================================================
# POST /begleitschein/reset
# =============================================================================

@router.post(
    "/reset",
    summary="Reset a finished attempt so the order can be published again",
    response_model=PublishStatus,
)
async def reset_status(
    payload: Annotated[ResetRequest, Body(...)],
    registry: Annotated[PublisherRegistry, Depends(get_registry)],
) -> PublishStatus:
    coordinator = _known_coordinator(registry, payload.order_number)

    try:
        reset = coordinator.reset()
    except InvalidTransitionError as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(exc),
        ) from exc

    # Idle coordinators are not retained.
    registry.discard(payload.order_number)
    return reset
