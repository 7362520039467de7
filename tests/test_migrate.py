"""Tests for the catalog import (migrate) command."""

from __future__ import annotations

import json
import logging

import pytest

from blitzprices.migrate import MigrationError, load_records, migrate, run_migration
from blitzprices.upserter import PRODUCTS_KEY, BatchUpserter


@pytest.fixture
def env(monkeypatch):
    monkeypatch.setenv("SUPABASE_URL", "https://example.supabase.co")
    monkeypatch.setenv("SUPABASE_SERVICE_KEY", "service-key")


@pytest.fixture
def no_env(monkeypatch):
    for var in ("SUPABASE_URL", "SUPABASE_SERVICE_KEY", "SUPABASE_KEY"):
        monkeypatch.delenv(var, raising=False)


def _records(make_catalog_record, n_valid, n_invalid=0):
    records = [make_catalog_record() for _ in range(n_valid)]
    records += [make_catalog_record(product_name=None) for _ in range(n_invalid)]
    return records


def _no_sleep(_seconds):
    return None


class TestLoadRecords:

    def test_array(self, tmp_path, make_catalog_record):
        path = tmp_path / "plumbing.json"
        path.write_text(json.dumps(_records(make_catalog_record, 3)))
        assert len(load_records(path)) == 3

    def test_single_object_wrapped(self, tmp_path, make_catalog_record):
        path = tmp_path / "one.json"
        path.write_text(json.dumps(make_catalog_record()))
        assert len(load_records(path)) == 1

    def test_missing_file(self, tmp_path):
        with pytest.raises(MigrationError, match="File not found"):
            load_records(tmp_path / "nope.json")

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text("[{")
        with pytest.raises(MigrationError, match="Error parsing JSON"):
            load_records(path)


class TestMigrate:

    def test_counts(self, fake_db, make_catalog_record):
        records = _records(make_catalog_record, 120, n_invalid=5)
        upserter = BatchUpserter(fake_db, "products", PRODUCTS_KEY)

        stats = migrate(records, upserter, sleep=_no_sleep)

        assert stats.total == 125
        assert stats.processed == 120
        assert stats.successful == 120
        assert stats.failed == 0
        assert stats.skipped == 5
        assert len(fake_db.rows("products")) == 120
        assert [e["reason"] for e in stats.errors] == ["Missing product_name"] * 5

    def test_dry_run_parity(self, fake_db, make_catalog_record):
        records = _records(make_catalog_record, 73, n_invalid=4)
        live = migrate(records, BatchUpserter(fake_db, "products", PRODUCTS_KEY), sleep=_no_sleep)
        dry = migrate(
            records, BatchUpserter(None, "products", PRODUCTS_KEY, dry_run=True), sleep=_no_sleep,
        )

        assert (dry.total, dry.processed, dry.successful, dry.failed, dry.skipped) == (
            live.total, live.processed, live.successful, live.failed, live.skipped,
        )

    def test_skipped_is_distinct_from_failed(self, fake_db, make_catalog_record):
        fake_db.fail_on["products"] = RuntimeError("duplicate key value violates unique constraint")
        records = _records(make_catalog_record, 60, n_invalid=2)

        stats = migrate(records, BatchUpserter(fake_db, "products", PRODUCTS_KEY), sleep=_no_sleep)

        assert stats.failed == 60
        assert stats.successful == 0
        assert stats.skipped == 2
        batch_errors = [e for e in stats.errors if e.get("batch")]
        assert len(batch_errors) == 2

    def test_delay_between_batches(self, fake_db, make_catalog_record):
        delays = []
        migrate(
            _records(make_catalog_record, 120),
            BatchUpserter(fake_db, "products", PRODUCTS_KEY),
            sleep=delays.append,
        )
        # two full batches of 50; the remainder is flushed at the end
        assert delays == [0.1, 0.1]

    def test_progress_logged_every_hundred(self, fake_db, make_catalog_record, caplog):
        with caplog.at_level(logging.INFO, logger="migrate"):
            migrate(
                _records(make_catalog_record, 250),
                BatchUpserter(fake_db, "products", PRODUCTS_KEY),
                sleep=_no_sleep,
            )
        progress = [r.getMessage() for r in caplog.records if "Processed" in r.getMessage()]
        assert progress == [
            "  Processed 100/250 (40.0%) - 100 ok, 0 failed, 0 skipped",
            "  Processed 200/250 (80.0%) - 200 ok, 0 failed, 0 skipped",
        ]

    def test_non_object_record_skipped(self, fake_db, make_catalog_record):
        stats = migrate(
            [make_catalog_record(), "garbage", 42],
            BatchUpserter(fake_db, "products", PRODUCTS_KEY),
            sleep=_no_sleep,
        )
        assert stats.skipped == 2
        assert stats.errors[0]["product_id"] == "unknown"


class TestRunMigration:

    def test_missing_file_exits(self, tmp_path, env):
        with pytest.raises(SystemExit) as exc:
            run_migration(tmp_path / "missing.json")
        assert exc.value.code == 1

    def test_invalid_json_exits(self, tmp_path, env):
        path = tmp_path / "bad.json"
        path.write_text("not json")
        with pytest.raises(SystemExit) as exc:
            run_migration(path, dry_run=True)
        assert exc.value.code == 1

    def test_missing_env_exits_even_for_dry_run(self, tmp_path, no_env, make_catalog_record):
        path = tmp_path / "ok.json"
        path.write_text(json.dumps([make_catalog_record()]))
        with pytest.raises(SystemExit) as exc:
            run_migration(path, dry_run=True)
        assert exc.value.code == 1

    def test_legacy_key_name_accepted(self, tmp_path, monkeypatch, make_catalog_record):
        monkeypatch.setenv("SUPABASE_URL", "https://example.supabase.co")
        monkeypatch.delenv("SUPABASE_SERVICE_KEY", raising=False)
        monkeypatch.setenv("SUPABASE_KEY", "anon-key")
        path = tmp_path / "ok.json"
        path.write_text(json.dumps([make_catalog_record()]))

        stats = run_migration(path, dry_run=True, sleep=_no_sleep)
        assert stats.successful == 1

    def test_final_report(self, tmp_path, env, fake_db, make_catalog_record, caplog):
        records = _records(make_catalog_record, 3, n_invalid=12)
        path = tmp_path / "mixed.json"
        path.write_text(json.dumps(records))

        with caplog.at_level(logging.INFO, logger="migrate"):
            stats = run_migration(path, db=fake_db, sleep=_no_sleep)

        assert stats.successful == 3
        assert stats.skipped == 12
        assert "Errors (first 10):" in caplog.text
        assert "... and 2 more" in caplog.text
