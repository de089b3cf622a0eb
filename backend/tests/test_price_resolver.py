"""Unit tests for lane price resolution and derived totals."""
from __future__ import annotations

from app.models.pricing import PriceRecord
from app.services import price_resolver
from app.services.price_resolver import (
    TIE_BREAK_CATALOG_ORDER,
    TIE_BREAK_CHEAPEST,
    resolve_for_subcontractor,
    resolve_price,
    total_cost,
    total_revenue,
)


def _record(subcontractor: str, base: float, selling: float = 0.0, **kwargs) -> PriceRecord:
    lane = {"origin": "A", "destination": "B", "truck_type": "6w"}
    lane.update(kwargs.pop("lane", {}))
    return PriceRecord(subcontractor=subcontractor, base_price=base, selling_base_price=selling, **lane, **kwargs)


def test_no_match_returns_none():
    catalog = [_record("X", 1000, 1200)]
    assert resolve_price(catalog, "A", "C", "6w") is None
    assert resolve_price([], "A", "B", "6w") is None


def test_exact_match_after_trimming_whitespace():
    catalog = [_record("X", 1000, 1200)]
    record = resolve_price(catalog, "  A ", "B  ", " 6w")
    assert record is not None
    assert record.subcontractor == "X"


def test_matching_is_case_sensitive():
    catalog = [_record("X", 1000, 1200)]
    assert resolve_price(catalog, "a", "B", "6w") is None
    assert resolve_price(catalog, "A", "B", "6W") is None


def test_subcontractor_preference_wins_over_cheaper_record():
    catalog = [_record("X", 900, 1000), _record("Y", 1500, 1800)]
    record = resolve_price(catalog, "A", "B", "6w", subcontractor="Y")
    assert record.subcontractor == "Y"


def test_unknown_subcontractor_falls_back_to_default_pick():
    catalog = [_record("X", 900, 1000), _record("Y", 800, 1000)]
    record = resolve_price(catalog, "A", "B", "6w", subcontractor="Z")
    assert record.subcontractor == "Y"


def test_cheapest_tie_break_keeps_catalog_order_among_equal_prices():
    catalog = [_record("X", 1000, 1200), _record("Y", 700, 900), _record("Z", 700, 900)]
    assert resolve_price(catalog, "A", "B", "6w", tie_break=TIE_BREAK_CHEAPEST).subcontractor == "Y"


def test_catalog_order_tie_break_returns_first_match():
    catalog = [_record("X", 1000, 1200), _record("Y", 700, 900)]
    assert resolve_price(catalog, "A", "B", "6w", tie_break=TIE_BREAK_CATALOG_ORDER).subcontractor == "X"


def test_strict_subcontractor_lookup_does_not_fall_back():
    catalog = [_record("X", 1000, 1200)]
    assert resolve_for_subcontractor(catalog, "A", "B", "6w", "Y") is None
    assert resolve_for_subcontractor(catalog, "A", "B", "6w", "X").base_price == 1000


def test_drop_fee_applies_to_both_cost_and_revenue():
    record = _record("X", 21000, 25000, drop_off_fee=1000)
    assert total_cost(record, 0) == 21000
    assert total_cost(record, 3) == 24000
    assert total_revenue(record, 3) == 28000


def test_missing_drop_fee_counts_as_zero():
    record = _record("X", 5000, 6000)
    assert total_cost(record, 4) == 5000
    assert total_revenue(record, 4) == 6000


def test_quote_lists_every_candidate_and_totals_for_default_pick():
    catalog = [
        _record("X", 1000, 1200, drop_off_fee=100),
        _record("Y", 800, 1100, drop_off_fee=50),
        _record("W", 300, 400, lane={"destination": "C"}),
    ]
    quote = price_resolver.quote(catalog, "A", "B", "6w", drop_count=2)
    assert quote.available is True
    assert [record.subcontractor for record in quote.candidates] == ["X", "Y"]
    assert quote.selected.subcontractor == "Y"
    assert quote.total_cost == 900
    assert quote.total_revenue == 1200
    assert "2 subcontractors" in quote.message


def test_quote_without_match_is_a_normal_outcome():
    quote = price_resolver.quote([_record("X", 1000)], "A", "Z", "6w")
    assert quote.available is False
    assert quote.selected is None
    assert quote.message == price_resolver.NO_PRICING_MESSAGE
