"""
DTO claims: CatalogItem, TokenRecord, ClaimRecord and the workflow results.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterator, Literal

from pydantic import BaseModel, Field


# ----- Catalog -----


class CatalogItem(BaseModel):
    """One sellable file. Immutable once loaded."""

    id: str = Field(..., min_length=1)
    path: str = Field(..., min_length=1)
    weight: float = Field(1, ge=0)
    active: bool = True
    category: str | None = None

    model_config = {"frozen": True}


CatalogSource = Literal["kv", "file", "default"]


class CatalogLoadResult(BaseModel):
    """Tagged result of load(): the items and which source produced them."""

    items: tuple[CatalogItem, ...]
    source: CatalogSource

    model_config = {"frozen": True}

    @property
    def is_fallback(self) -> bool:
        return self.source == "default"


# ----- Ledger records (stored as JSON in the KV store) -----


class TokenRecord(BaseModel):
    """Stored under token:<token>. Existence = unused and unexpired."""

    token: str
    path: str
    item_id: str
    created_at: float = Field(..., description="Unix seconds")
    expires_at: float = Field(..., description="Unix seconds; store TTL ends at the same moment")
    transaction_ref: str

    model_config = {"frozen": True}


class ClaimRecord(BaseModel):
    """Stored under claim:<transaction_ref>. Written once, never updated."""

    transaction_ref: str
    token: str
    item_id: str
    issued_at: float
    expires_at: float

    model_config = {"frozen": True}

    def ttl_remaining(self, now: float) -> int:
        """Whole seconds left, rounded up: a link minted this second reports the full TTL."""
        return max(0, math.ceil(self.expires_at - now))


# ----- Workflow results -----


class ClaimResult(BaseModel):
    download_url: str
    item_id: str
    ttl_remaining: int
    token: str
    replayed: bool = Field(
        False,
        description="True = an existing live claim was returned instead of minting",
    )

    model_config = {"frozen": True}


@dataclass(frozen=True)
class Delivery:
    """A redeemed token ready to stream. chunks is single-use."""

    item_id: str
    filename: str
    content_type: str
    size: int
    chunks: Iterator[bytes]
