"""
Tests for database.py.

Covers:
  - DB path defaults to data/ subdirectory
  - Schema creation (init_db is idempotent)
  - Detection CRUD: insert, get, update (column-scoped), list, delete
  - transition_detection: CAS success, stale status, illegal transition
  - Metadata upsert: one row per key, overwrite in place, cascade on delete
  - Concurrent column-scoped updates do not clobber each other
"""
from __future__ import annotations

import asyncio
from pathlib import Path

import pytest
import pytest_asyncio

import database as db
from models import Category, DetectionRecord, DetectionStatus, InvalidTransitionError

_S = DetectionStatus


@pytest_asyncio.fixture(autouse=True)
async def init(tmp_data_dir):
    """Initialise the DB schema before every test."""
    await db.init_db()


async def make_detection(**kwargs) -> DetectionRecord:
    record = DetectionRecord(**kwargs)
    await db.insert_detection(record)
    return record


# ── DB path ────────────────────────────────────────────────────────────────────

class TestDbPath:
    def test_db_path_inside_data_dir(self, tmp_data_dir):
        assert Path(db.DB_PATH).parent == tmp_data_dir


# ── init_db ────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
class TestInitDb:
    async def test_idempotent(self):
        """Calling init_db twice must not raise."""
        await db.init_db()
        await db.init_db()

    async def test_db_file_created(self, tmp_data_dir):
        assert Path(db.DB_PATH).exists()


# ── Detections ─────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
class TestDetections:
    async def test_insert_and_get(self):
        rec = await make_detection(
            owner_id="u1",
            input_images=["data:image/jpeg;base64,AA", "data:image/png;base64,BB"],
            input_description="blue jacket",
        )
        got = await db.get_detection(rec.id)
        assert got.id == rec.id
        assert got.status is _S.PENDING
        assert got.owner_id == "u1"
        assert got.input_images == rec.input_images
        assert got.input_description == "blue jacket"
        assert got.user_confirmed is False
        assert got.warnings == []

    async def test_get_missing_returns_none(self):
        assert await db.get_detection("nope") is None

    async def test_update_writes_only_named_columns(self):
        rec = await make_detection(brand="Apple")
        assert await db.update_detection(rec.id, average_price=99.5, specs_match=True, warnings=["w1"])
        got = await db.get_detection(rec.id)
        assert got.brand == "Apple"
        assert got.average_price == 99.5
        assert got.specs_match is True
        assert got.warnings == ["w1"]

    async def test_update_unknown_column_rejected(self):
        rec = await make_detection()
        with pytest.raises(ValueError, match="Unknown detection column"):
            await db.update_detection(rec.id, status="completed")

    async def test_update_missing_row_returns_false(self):
        assert await db.update_detection("nope", brand="x") is False

    async def test_enum_and_datetime_roundtrip(self):
        rec = await make_detection()
        await db.transition_detection(
            rec.id, _S.PENDING, _S.CATEGORY_DETECTED,
            category=Category.FASHION, category_confidence=82.0,
        )
        got = await db.get_detection(rec.id)
        assert got.category is Category.FASHION
        assert got.created_at.tzinfo is not None

    async def test_list_filters(self):
        a = await make_detection(owner_id="u1")
        await make_detection(owner_id="u2")
        await db.transition_detection(a.id, _S.PENDING, _S.FAILED, error_message="x")
        assert [r.id for r in await db.list_detections(owner_id="u1")] == [a.id]
        failed = await db.list_detections(status=_S.FAILED)
        assert [r.id for r in failed] == [a.id]
        assert len(await db.list_detections()) == 2

    async def test_concurrent_column_updates_both_land(self):
        rec = await make_detection()
        await asyncio.gather(
            db.update_detection(rec.id, authenticity_status="Authentic", verification_confidence=90),
            db.update_detection(rec.id, average_price=120.0, item_count=4),
        )
        got = await db.get_detection(rec.id)
        assert got.authenticity_status == "Authentic"
        assert got.average_price == 120.0
        assert got.item_count == 4


# ── Transitions ────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
class TestTransitions:
    async def test_valid_transition_writes_fields(self):
        rec = await make_detection()
        ok = await db.transition_detection(
            rec.id, _S.PENDING, _S.CATEGORY_DETECTED, category=Category.ELECTRONICS,
        )
        assert ok
        got = await db.get_detection(rec.id)
        assert got.status is _S.CATEGORY_DETECTED
        assert got.category is Category.ELECTRONICS

    async def test_stale_from_status_writes_nothing(self):
        rec = await make_detection()
        ok = await db.transition_detection(
            rec.id, _S.CATEGORY_DETECTED, _S.IDENTIFIED, brand="Sony",
        )
        assert ok is False
        got = await db.get_detection(rec.id)
        assert got.status is _S.PENDING
        assert got.brand is None

    async def test_illegal_transition_raises(self):
        rec = await make_detection()
        with pytest.raises(InvalidTransitionError):
            await db.transition_detection(rec.id, _S.PENDING, _S.COMPLETED)

    async def test_terminal_status_cannot_move(self):
        rec = await make_detection()
        await db.transition_detection(rec.id, _S.PENDING, _S.FAILED)
        with pytest.raises(InvalidTransitionError):
            await db.transition_detection(rec.id, _S.FAILED, _S.PENDING)


# ── Metadata ───────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
class TestMetadata:
    async def test_upsert_inserts_rows(self):
        rec = await make_detection()
        n = await db.upsert_metadata(rec.id, [
            ("storage", "128GB", "string", "electronics", "identification"),
            ("ram", "8", "number", "electronics", "identification"),
        ])
        assert n == 2
        rows = await db.get_metadata(rec.id)
        assert [r["metadata_key"] for r in rows] == ["storage", "ram"]

    async def test_upsert_same_key_overwrites_in_place(self):
        rec = await make_detection()
        await db.upsert_metadata(rec.id, [("storage", "128GB", "string", None, "identification")])
        await db.upsert_metadata(rec.id, [("storage", "256GB", "string", None, "user_edit")])
        rows = await db.get_metadata(rec.id)
        assert len(rows) == 1
        assert rows[0]["metadata_value"] == "256GB"
        assert rows[0]["source"] == "user_edit"

    async def test_concurrent_upserts_same_key_one_row(self):
        rec = await make_detection()
        await asyncio.gather(*(
            db.upsert_metadata(rec.id, [("shared", str(i), "number", None, "pricing")])
            for i in range(5)
        ))
        rows = await db.get_metadata(rec.id)
        assert len(rows) == 1

    async def test_filter_by_category(self):
        rec = await make_detection()
        await db.upsert_metadata(rec.id, [
            ("size", "M", "string", "fashion", "identification"),
            ("storage", "64GB", "string", "electronics", "identification"),
        ])
        rows = await db.get_metadata(rec.id, category="fashion")
        assert [r["metadata_key"] for r in rows] == ["size"]

    async def test_get_metadata_value(self):
        rec = await make_detection()
        await db.upsert_metadata(rec.id, [("carrier", "Unlocked", "string", None, "identification")])
        row = await db.get_metadata_value(rec.id, "carrier")
        assert row["metadata_value"] == "Unlocked"
        assert await db.get_metadata_value(rec.id, "missing") is None

    async def test_find_detection_ids(self):
        a = await make_detection()
        b = await make_detection()
        await db.upsert_metadata(a.id, [("carrier", "Verizon", "string", "electronics", "identification")])
        await db.upsert_metadata(b.id, [("carrier", "AT&T", "string", "electronics", "identification")])
        assert await db.find_detection_ids_by_metadata("carrier", "Verizon") == [a.id]
        assert await db.find_detection_ids_by_metadata("carrier", "Verizon", category="fashion") == []

    async def test_delete_cascades(self):
        rec = await make_detection()
        await db.upsert_metadata(rec.id, [("k", "v", "string", None, "identification")])
        assert await db.delete_detection(rec.id)
        assert await db.get_detection(rec.id) is None
        assert await db.get_metadata(rec.id) == []
