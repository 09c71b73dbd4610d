"""Tests for core/trade_history/normalizer.py - raw rows to HistoryEntry."""
from __future__ import annotations

import pytest

from core.trade_history.models import HistoryEntry, Price
from core.trade_history.normalizer import canonical_timestamp, normalize, normalize_rows

pytestmark = pytest.mark.unit


class TestCanonicalTimestamp:
    """Time canonicalization to ms epoch."""

    def test_seconds_epoch_is_scaled(self):
        assert canonical_timestamp(1_700_000_000) == 1_700_000_000_000

    def test_ms_epoch_is_kept(self):
        assert canonical_timestamp(1_700_000_000_000) == 1_700_000_000_000

    def test_small_values_are_seconds(self):
        assert canonical_timestamp(100) == 100_000

    @pytest.mark.parametrize("raw", [None, 0, -5, float("nan"), float("inf"), "", "   ", True, [], {}])
    def test_unusable_values_are_zero(self, raw):
        assert canonical_timestamp(raw) == 0

    def test_digit_string_is_numeric(self):
        assert canonical_timestamp("1700000000") == 1_700_000_000_000

    def test_iso_string_with_z(self):
        assert canonical_timestamp("2025-01-01T00:00:00Z") == 1_735_689_600_000

    def test_naive_iso_string_is_utc(self):
        assert canonical_timestamp("2025-01-01T00:00:00") == 1_735_689_600_000

    def test_iso_string_with_offset(self):
        assert canonical_timestamp("2025-01-01T01:00:00+01:00") == 1_735_689_600_000

    def test_garbage_string_is_zero(self):
        assert canonical_timestamp("yesterday-ish") == 0

    @pytest.mark.parametrize("raw", [10**400, -(10**400), "9" * 5000, "\u00b2"])
    def test_out_of_range_values_are_zero(self, raw):
        assert canonical_timestamp(raw) == 0


class TestNormalize:
    """Field extraction from the various row shapes."""

    def test_full_row(self):
        entry = normalize({
            "item_id": "abc",
            "time": 1_700_000_000,
            "price": {"amount": 3, "currency": "divine", "raw": "~price 3 divine"},
            "item": {"name": "Foo", "typeLine": "Ring"},
            "note": "sold fast",
        })

        assert entry == HistoryEntry(
            item_id="abc",
            timestamp=1_700_000_000_000,
            price=Price(3.0, "divine"),
            item={"name": "Foo", "typeLine": "Ring"},
            note="sold fast",
        )

    def test_item_id_camel_case(self):
        assert normalize({"itemId": "x1"}).item_id == "x1"

    def test_item_id_from_legacy_item_field(self):
        entry = normalize({"item": {"id": "legacy", "name": "Foo"}})
        assert entry.item_id == "legacy"

    def test_time_falls_back_to_listed_at_then_date(self):
        assert normalize({"listedAt": 200}).timestamp == 200_000
        assert normalize({"date": "2025-01-01T00:00:00Z"}).timestamp == 1_735_689_600_000

    def test_item_nested_under_data(self):
        entry = normalize({"data": {"item": {"typeLine": "Chaos Orb"}}})
        assert entry.item == {"typeLine": "Chaos Orb"}
        assert entry.is_complete

    def test_non_mapping_item_becomes_none(self):
        entry = normalize({"item": "not an item"})
        assert entry.item is None
        assert not entry.is_complete

    def test_inline_price_fields(self):
        assert normalize({"amount": "2.5", "currency": "exalted"}).price == Price(2.5, "exalted")

    @pytest.mark.parametrize("price", [
        {"amount": "lots", "currency": "divine"},
        {"amount": 1},
        {"amount": float("inf"), "currency": "divine"},
        {"amount": 1, "currency": ""},
        {"amount": 10**400, "currency": "divine"},
        "1 divine",
    ])
    def test_unusable_price_is_absent(self, price):
        assert normalize({"price": price}).price is None

    def test_note_falls_back_to_price_raw(self):
        assert normalize({"price": {"raw": "~b/o 1 div"}}).note == "~b/o 1 div"

    def test_empty_row_degrades_without_raising(self):
        entry = normalize({})
        assert entry == HistoryEntry()
        assert entry.dedup_key == "##0"

    @pytest.mark.parametrize("raw", [None, ["x"], "row", 42])
    def test_non_mapping_row_degrades_without_raising(self, raw):
        assert normalize(raw) == HistoryEntry()

    def test_huge_time_and_amount_degrade(self):
        entry = normalize({"item_id": "a", "time": 10**400, "price": {"amount": 10**400, "currency": "divine"}})

        assert entry.timestamp == 0
        assert entry.price is None
        assert entry.item_id == "a"


class TestDedupKey:

    def test_uses_item_id_when_present(self):
        entry = normalize({"item_id": "a", "time": 100, "item": {"name": "Foo"}})
        assert entry.dedup_key == "a##100000"

    def test_falls_back_to_name_then_type(self):
        assert normalize({"time": 100, "item": {"name": "Foo"}}).dedup_key == "Foo##100000"
        assert normalize({"time": 100, "item": {"name": "", "typeLine": "Bar"}}).dedup_key == "Bar##100000"
        assert normalize({"time": 100, "item": {"baseType": "Baz"}}).dedup_key == "Baz##100000"

    def test_incomplete_without_id(self):
        assert normalize({"time": 100}).dedup_key == "##100000"


class TestNormalizeRows:

    def test_skips_non_mapping_rows(self):
        batch = normalize_rows([{"item_id": "a"}, "junk", None, 42, {"item_id": "b"}])

        assert [e.item_id for e in batch.entries] == ["a", "b"]
        assert batch.malformed == 3

    def test_row_that_fails_unexpectedly_is_skipped(self):
        class Exploding(dict):
            def get(self, *args, **kwargs):
                raise RuntimeError("boom")

        batch = normalize_rows([Exploding(), {"item_id": "ok"}])

        assert [e.item_id for e in batch.entries] == ["ok"]
        assert batch.malformed == 1

    def test_empty_input(self):
        batch = normalize_rows([])
        assert batch.entries == []
        assert batch.malformed == 0
