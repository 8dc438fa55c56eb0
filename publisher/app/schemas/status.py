from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict


class PublishState(str, Enum):
    """
    Lifecycle of one publish attempt.

    ``success`` and ``failed`` are terminal for the attempt.
    """

    IDLE = "idle"
    UPLOADING = "uploading"
    SUCCESS = "success"
    FAILED = "failed"


class PublishStatus(BaseModel):
    """
    Immutable projection of a Coordinator's current or most recent attempt.

    Callers only ever receive snapshots; mutating one has no effect on
    the Coordinator.
    """

    uploading: bool = False
    success: bool = False
    error: Optional[str] = None
    url: Optional[str] = None

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
    )
