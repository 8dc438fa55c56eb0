"""
Submission payload for a Begleitschein.

The web client posts camelCase keys (``totalWeight``, ``submissionDate``);
both spellings are accepted. Every field except the identity block is
optional and renders as a placeholder when absent.
"""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CartItem(BaseModel):
    """A single purchased position."""

    name: str = ""
    quantity: Optional[int] = Field(None, ge=0)
    weight: Optional[float] = Field(None, ge=0, description="Weight in kg")
    price: Optional[float] = Field(None, description="Line price in EUR")

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )


class SubmissionData(BaseModel):
    """
    Caller-supplied record of one purchase submission.
    """

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------
    name: str = ""
    email: str = ""
    address: str = ""

    # ------------------------------------------------------------------
    # Quantities
    # ------------------------------------------------------------------
    total_weight: Optional[float] = Field(None, ge=0)
    cart_items: List[CartItem] = Field(default_factory=list)
    total_price: Optional[float] = None

    # ------------------------------------------------------------------
    # Delivery metadata
    # ------------------------------------------------------------------
    delivery_type: Optional[str] = None
    pickup_date: Optional[str] = None
    time_slot: Optional[str] = None
    notes: Optional[str] = None
    payment_reference: Optional[str] = None

    submission_date: Optional[datetime] = None

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="ignore",
    )
