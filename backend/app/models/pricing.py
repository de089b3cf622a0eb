"""Lane price catalog models."""
from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field, field_validator


class PriceRecord(BaseModel):
    """One subcontractor's contract price for a lane and truck type."""

    origin: str
    destination: str
    truck_type: str
    subcontractor: str
    base_price: float = Field(default=0.0, ge=0)
    selling_base_price: float = Field(default=0.0, ge=0)
    drop_off_fee: Optional[float] = Field(default=None, ge=0)
    payment_type: Optional[str] = None
    credit_days: Optional[int] = Field(default=None, ge=0)

    @field_validator("origin", "destination", "truck_type", "subcontractor", mode="before")
    @classmethod
    def _strip_text(cls, value):
        if isinstance(value, str):
            return value.strip()
        return value


class PriceCatalogReplaceRequest(BaseModel):
    """Whole-list replacement of the price catalog."""

    records: List[PriceRecord]


class PriceQuoteRequest(BaseModel):
    """Lookup for one lane, optionally scoped to a subcontractor."""

    origin: str
    destination: str
    truck_type: str
    subcontractor: Optional[str] = None
    drop_count: int = Field(default=0, ge=0)


class PriceQuote(BaseModel):
    """Resolved price plus every candidate offering the lane."""

    available: bool
    selected: Optional[PriceRecord] = None
    candidates: List[PriceRecord] = Field(default_factory=list)
    drop_count: int = 0
    total_cost: float = 0.0
    total_revenue: float = 0.0
    message: str = ""
