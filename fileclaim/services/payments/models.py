"""
Payment provider DTOs.
"""
from __future__ import annotations

from decimal import Decimal

from pydantic import BaseModel, Field


class PaymentOrder(BaseModel):
    """Provider order, reduced to what claim verification needs."""

    id: str
    status: str
    amount: Decimal | None = None
    currency: str | None = None
    custom_id: str | None = Field(
        None,
        description="Buyer-side reference; used as the requested catalog item id",
    )

    model_config = {"frozen": True}
