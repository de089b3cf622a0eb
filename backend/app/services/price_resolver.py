"""Lane price resolution against the subcontractor price catalog.

Matching is exact string equality on (origin, destination, truck_type) after
trimming surrounding whitespace. "No price" is a normal business outcome and is
reported as ``None``, never as an exception.
"""
from __future__ import annotations

from typing import Iterable, List, Optional

from app.models.pricing import PriceQuote, PriceRecord

TIE_BREAK_CHEAPEST = "cheapest"
TIE_BREAK_CATALOG_ORDER = "catalog_order"

NO_PRICING_MESSAGE = "Pricing not yet available for this lane."


def _clean(value: Optional[str]) -> str:
    return str(value or "").strip()


def find_matches(
    catalog: Iterable[PriceRecord],
    origin: str,
    destination: str,
    truck_type: str,
) -> List[PriceRecord]:
    """Return every record offering the lane, in catalog order."""
    lane = (_clean(origin), _clean(destination), _clean(truck_type))
    return [
        record
        for record in catalog
        if (_clean(record.origin), _clean(record.destination), _clean(record.truck_type)) == lane
    ]


def _default_pick(matches: List[PriceRecord], tie_break: str) -> PriceRecord:
    if tie_break == TIE_BREAK_CATALOG_ORDER:
        return matches[0]
    # min() keeps the earliest record among equal prices
    return min(matches, key=lambda record: (record.base_price, record.selling_base_price))


def resolve_price(
    catalog: Iterable[PriceRecord],
    origin: str,
    destination: str,
    truck_type: str,
    subcontractor: Optional[str] = None,
    tie_break: str = TIE_BREAK_CHEAPEST,
) -> Optional[PriceRecord]:
    """Pick the price record for a lane.

    A record whose subcontractor equals ``subcontractor`` wins when one exists.
    Otherwise the default pick among all lane matches is returned; it is a
    convenience for callers, who should show every candidate when there is
    more than one.
    """
    matches = find_matches(catalog, origin, destination, truck_type)
    if not matches:
        return None

    wanted = _clean(subcontractor)
    if wanted:
        for record in matches:
            if _clean(record.subcontractor) == wanted:
                return record

    return _default_pick(matches, tie_break)


def resolve_for_subcontractor(
    catalog: Iterable[PriceRecord],
    origin: str,
    destination: str,
    truck_type: str,
    subcontractor: str,
) -> Optional[PriceRecord]:
    """Strict lookup: only a record belonging to ``subcontractor`` counts."""
    wanted = _clean(subcontractor)
    if not wanted:
        return None
    for record in find_matches(catalog, origin, destination, truck_type):
        if _clean(record.subcontractor) == wanted:
            return record
    return None


def drop_fee(record: PriceRecord) -> float:
    return float(record.drop_off_fee or 0.0)


def total_cost(record: PriceRecord, drop_count: int = 0) -> float:
    """Amount owed to the subcontractor including flat per-drop fees."""
    return float(record.base_price) + max(0, int(drop_count)) * drop_fee(record)


def total_revenue(record: PriceRecord, drop_count: int = 0) -> float:
    """Amount billed to the customer. Drop fees pass through without markup."""
    return float(record.selling_base_price) + max(0, int(drop_count)) * drop_fee(record)


def quote(
    catalog: Iterable[PriceRecord],
    origin: str,
    destination: str,
    truck_type: str,
    subcontractor: Optional[str] = None,
    drop_count: int = 0,
    tie_break: str = TIE_BREAK_CHEAPEST,
) -> PriceQuote:
    records = list(catalog)
    candidates = find_matches(records, origin, destination, truck_type)
    selected = resolve_price(records, origin, destination, truck_type, subcontractor, tie_break=tie_break)
    if selected is None:
        return PriceQuote(available=False, drop_count=drop_count, message=NO_PRICING_MESSAGE)

    message = "Price found."
    if len(candidates) > 1 and not _clean(subcontractor):
        message = f"{len(candidates)} subcontractors offer this lane; default pick shown."
    return PriceQuote(
        available=True,
        selected=selected,
        candidates=candidates,
        drop_count=drop_count,
        total_cost=total_cost(selected, drop_count),
        total_revenue=total_revenue(selected, drop_count),
        message=message,
    )
