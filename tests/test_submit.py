"""Tests for price submissions and outlier flagging."""

from __future__ import annotations

from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from blitzprices.parser import to_community_row
from blitzprices.submit import MSG_FLAGGED, MSG_OK, SubmissionError, SubmissionGuard
from blitzprices.upserter import COMMUNITY_PRICES_KEY, BatchUpserter


@pytest.fixture
def seeded_db(fake_db):
    fake_db.seed("price_aggregates", [
        {"name_normalized": "2x4 stud 8 ft", "region": "TX", "avg_cost": "100.00"},
        {"name_normalized": "2x4 stud 8 ft", "region": "CA", "avg_cost": "5.00"},
    ])
    return fake_db


def _submit(db, **overrides):
    params = {
        "name": "2x4  Stud 8 ft",
        "category": "materials",
        "unit": "each",
        "cost": 100,
        "region": "tx",
    }
    params.update(overrides)
    return SubmissionGuard(db).submit(**params)


class TestOutlierBoundaries:

    @pytest.mark.parametrize("cost, expected", [
        (301, True),
        (300, False),
        (299, False),
        (100, False),
        (31, False),
        (30, True),
        (29.99, True),
        (0, True),
    ])
    def test_boundaries(self, seeded_db, cost, expected):
        resp = _submit(seeded_db, cost=cost)
        assert resp["is_outlier"] is expected
        assert resp["success"] is True
        assert resp["message"] == (MSG_FLAGGED if expected else MSG_OK)

    def test_float_cost_at_low_boundary(self):
        guard = SubmissionGuard(MagicMock())
        # 0.3 * 100 in binary floating point is 30.000000000000004
        assert guard.is_outlier(Decimal("30"), Decimal("100")) is True
        assert guard.is_outlier(Decimal("30.01"), Decimal("100")) is False

    def test_outlier_still_inserted(self, seeded_db):
        resp = _submit(seeded_db, cost=1000)
        stored = seeded_db.rows("community_prices")
        assert len(stored) == 1
        assert stored[0]["is_outlier"] is True
        assert resp["id"] == stored[0]["id"]

    def test_no_aggregate_is_not_outlier(self, fake_db):
        resp = _submit(fake_db, name="Brand New Item", cost=99999)
        assert resp["is_outlier"] is False

    def test_lookup_scoped_by_region(self, seeded_db):
        # 100 is normal in TX but 20x the CA average
        assert _submit(seeded_db, region="CA")["is_outlier"] is True


class TestStoredRecord:

    def test_fields(self, seeded_db):
        _submit(seeded_db, zip_code="78701", trade="framing", upc="012345678905", sku="161640")
        (row,) = seeded_db.rows("community_prices")
        assert row["name"] == "2x4 Stud 8 ft"
        assert row["name_normalized"] == "2x4 stud 8 ft"
        assert row["region"] == "TX"
        assert row["source"] == "manual"
        assert row["cost"] == 100.0
        assert row["zip_code"] == "78701"
        assert row["trade"] == "framing"

    def test_explicit_source(self, fake_db):
        _submit(fake_db, source="price_tag_scan")
        assert fake_db.rows("community_prices")[0]["source"] == "price_tag_scan"

    def test_insert_error_propagates(self, seeded_db):
        seeded_db.fail_on["community_prices"] = RuntimeError("new row violates check constraint")
        with pytest.raises(RuntimeError, match="check constraint"):
            _submit(seeded_db)


class TestValidation:

    @pytest.mark.parametrize("overrides, message", [
        ({"name": ""}, "required"),
        ({"name": None}, "required"),
        ({"category": None}, "required"),
        ({"unit": ""}, "required"),
        ({"cost": None}, "required"),
        ({"region": " "}, "required"),
        ({"category": "lumber"}, "Invalid category"),
        ({"unit": "yard"}, "Invalid unit"),
        ({"cost": -0.01}, "Cost must be a positive number"),
        ({"cost": "abc"}, "Cost must be a positive number"),
        ({"cost": float("nan")}, "Cost must be a positive number"),
        ({"cost": True}, "Cost must be a positive number"),
        ({"source": "scraper_amazon"}, "Invalid source"),
        ({"region": "Texas"}, "Invalid region"),
        ({"region": "T1"}, "Invalid region"),
    ])
    def test_rejected_before_any_store_call(self, overrides, message):
        db = MagicMock()
        with pytest.raises(SubmissionError, match=message):
            _submit(db, **overrides)
        db.table.assert_not_called()
        db.rpc.assert_not_called()

    def test_order_category_before_unit(self):
        db = MagicMock()
        with pytest.raises(SubmissionError, match="Invalid category"):
            _submit(db, category="lumber", unit="yard", cost=-1)

    def test_order_unit_before_cost(self):
        db = MagicMock()
        with pytest.raises(SubmissionError, match="Invalid unit"):
            _submit(db, unit="yard", cost=-1)

    def test_zero_cost_allowed(self, fake_db):
        assert _submit(fake_db, cost=0)["success"] is True

    def test_job_unit(self, fake_db):
        _submit(fake_db, category="fees", unit="job", cost=150)
        assert fake_db.rows("community_prices")[0]["unit"] == "job"


class TestRepeatContributions:

    def test_same_item_twice_gives_two_rows(self, fake_db):
        first = _submit(fake_db, name="PVC Elbow", cost=1)
        second = _submit(fake_db, name="PVC Elbow", cost=1.1)

        stored = fake_db.rows("community_prices")
        assert len(stored) == 2
        assert first["id"] != second["id"]
        assert all(row.get("dedupe_key") is None for row in stored)

    def test_submission_alongside_scraped_row(self, fake_db, make_item):
        scraped = to_community_row(make_item(name="PVC Elbow", price=1.0), "TX")
        BatchUpserter(fake_db, "community_prices", COMMUNITY_PRICES_KEY).upsert_batch([scraped])

        _submit(fake_db, name="PVC Elbow", cost=1.05)
        # a later scrape still upserts its own row in place
        rescraped = to_community_row(make_item(name="PVC Elbow", price=1.2), "TX")
        BatchUpserter(fake_db, "community_prices", COMMUNITY_PRICES_KEY).upsert_batch([rescraped])

        costs = sorted(row["cost"] for row in fake_db.rows("community_prices"))
        assert costs == [1.05, 1.2]

    def test_outlier_for_existing_key_inserted(self, seeded_db):
        _submit(seeded_db, cost=100)
        resp = _submit(seeded_db, cost=1000)

        assert resp["is_outlier"] is True
        assert len(seeded_db.rows("community_prices")) == 2
