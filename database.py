"""
database.py — async SQLite persistence via aiosqlite.

Tables:
  detections        — one row per analysis run (core fields + status)
  product_metadata  — schema-free attributes, one live row per (detection, key)

The DB file is created automatically on first run. Every operation opens its
own connection, so verification and pricing can write concurrently; they
touch disjoint columns and SQLite's write lock serialises the statements.
"""
from __future__ import annotations

import asyncio
import json
import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, AsyncIterator, Iterable, Optional

import aiosqlite

from models import (
    Category,
    DetectionRecord,
    DetectionStatus,
    check_transition,
)

logger = logging.getLogger(__name__)

# Store the DB in a dedicated data/ directory so a single volume mount
# (./data:/app/data) keeps both the database and the log file.
_DATA_DIR = Path(os.getenv("DATA_DIR", "data"))
_DATA_DIR.mkdir(parents=True, exist_ok=True)

DB_PATH = str(_DATA_DIR / "analyzer.db")
_lock = asyncio.Lock()          # serialise schema creation


# ── Schema ────────────────────────────────────────────────────────────────────

_SCHEMA = """
CREATE TABLE IF NOT EXISTS detections (
    id                      TEXT PRIMARY KEY,
    status                  TEXT NOT NULL DEFAULT 'pending',
    owner_id                TEXT,               -- NULL = anonymous run
    category                TEXT,
    category_confidence     REAL,

    identified_product      TEXT,
    brand                   TEXT,
    model                   TEXT,
    color_variants          TEXT,
    condition_rating        TEXT,
    confidence_score        REAL,
    estimated_year          TEXT,
    short_description       TEXT,

    authenticity_status     TEXT,
    verification_confidence REAL,
    specs_match             INTEGER,
    warnings                TEXT NOT NULL DEFAULT '[]',
    verification_summary    TEXT,
    verification_error      TEXT,

    average_price           REAL,
    min_price               REAL,
    max_price               REAL,
    currency                TEXT,
    item_count              INTEGER,
    pricing_updated_at      TEXT,
    pricing_error           TEXT,

    input_images            TEXT NOT NULL DEFAULT '[]',
    input_description       TEXT,
    user_confirmed          INTEGER NOT NULL DEFAULT 0,
    confirmed_at            TEXT,
    error_message           TEXT,
    created_at              TEXT NOT NULL,
    updated_at              TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_detections_owner_status    ON detections (owner_id, status);
CREATE INDEX IF NOT EXISTS idx_detections_category_brand  ON detections (category, brand, created_at);
CREATE INDEX IF NOT EXISTS idx_detections_status_created  ON detections (status, created_at);

-- Uniqueness of (detection_id, metadata_key) is kept by upsert_metadata,
-- not by a constraint.
CREATE TABLE IF NOT EXISTS product_metadata (
    id             INTEGER PRIMARY KEY AUTOINCREMENT,
    detection_id   TEXT    NOT NULL REFERENCES detections (id) ON DELETE CASCADE,
    metadata_key   TEXT    NOT NULL,
    metadata_value TEXT,
    value_type     TEXT    NOT NULL DEFAULT 'string',
    category       TEXT,
    source         TEXT    NOT NULL DEFAULT 'identification',
    created_at     TEXT    NOT NULL,
    updated_at     TEXT    NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_metadata_detection_key ON product_metadata (detection_id, metadata_key);
CREATE INDEX IF NOT EXISTS idx_metadata_category      ON product_metadata (category);
"""

# Columns that may be written through update_detection / transition_detection
_WRITABLE = frozenset({
    "owner_id", "category", "category_confidence",
    "identified_product", "brand", "model", "color_variants", "condition_rating",
    "confidence_score", "estimated_year", "short_description",
    "authenticity_status", "verification_confidence", "specs_match", "warnings",
    "verification_summary", "verification_error",
    "average_price", "min_price", "max_price", "currency", "item_count",
    "pricing_updated_at", "pricing_error",
    "input_images", "input_description", "user_confirmed", "confirmed_at",
    "error_message",
})


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _to_db(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, bool):
        return 1 if value else 0
    if isinstance(value, (list, tuple)):
        return json.dumps(list(value))
    return value


def _parse_dt(raw: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(raw) if raw else None


def _row_to_record(r: aiosqlite.Row) -> DetectionRecord:
    return DetectionRecord(
        id=r["id"],
        status=DetectionStatus(r["status"]),
        owner_id=r["owner_id"],
        category=Category(r["category"]) if r["category"] else None,
        category_confidence=r["category_confidence"],
        identified_product=r["identified_product"],
        brand=r["brand"],
        model=r["model"],
        color_variants=r["color_variants"],
        condition_rating=r["condition_rating"],
        confidence_score=r["confidence_score"],
        estimated_year=r["estimated_year"],
        short_description=r["short_description"],
        authenticity_status=r["authenticity_status"],
        verification_confidence=r["verification_confidence"],
        specs_match=None if r["specs_match"] is None else bool(r["specs_match"]),
        warnings=json.loads(r["warnings"] or "[]"),
        verification_summary=r["verification_summary"],
        verification_error=r["verification_error"],
        average_price=r["average_price"],
        min_price=r["min_price"],
        max_price=r["max_price"],
        currency=r["currency"],
        item_count=r["item_count"],
        pricing_updated_at=_parse_dt(r["pricing_updated_at"]),
        pricing_error=r["pricing_error"],
        input_images=json.loads(r["input_images"] or "[]"),
        input_description=r["input_description"],
        user_confirmed=bool(r["user_confirmed"]),
        confirmed_at=_parse_dt(r["confirmed_at"]),
        error_message=r["error_message"],
        created_at=datetime.fromisoformat(r["created_at"]),
        updated_at=datetime.fromisoformat(r["updated_at"]),
    )


def _assignments(fields: dict[str, Any]) -> tuple[str, list[Any]]:
    unknown = set(fields) - _WRITABLE
    if unknown:
        raise ValueError(f"Unknown detection column(s): {', '.join(sorted(unknown))}")
    names = list(fields)
    sql = ", ".join(f"{n} = ?" for n in names)
    return sql, [_to_db(fields[n]) for n in names]


@asynccontextmanager
async def _connect() -> AsyncIterator[aiosqlite.Connection]:
    async with aiosqlite.connect(DB_PATH) as db:
        db.row_factory = aiosqlite.Row
        await db.execute("PRAGMA foreign_keys = ON")
        yield db


async def init_db() -> None:
    """Create tables if they don't exist. Safe to call multiple times."""
    async with _lock:
        async with aiosqlite.connect(DB_PATH) as db:
            await db.executescript(_SCHEMA)
            await db.commit()
    logger.info("Database initialised at %s", DB_PATH)


# ── Detection operations ──────────────────────────────────────────────────────

async def insert_detection(record: DetectionRecord) -> DetectionRecord:
    """Insert a new detection row. Raises aiosqlite.IntegrityError on duplicate id."""
    data = {k: _to_db(v) for k, v in record.to_dict().items()}
    cols = ", ".join(data)
    marks = ", ".join("?" for _ in data)
    async with _connect() as db:
        await db.execute(f"INSERT INTO detections ({cols}) VALUES ({marks})", list(data.values()))
        await db.commit()
    return record


async def get_detection(detection_id: str) -> Optional[DetectionRecord]:
    async with _connect() as db:
        async with db.execute("SELECT * FROM detections WHERE id = ?", (detection_id,)) as cur:
            row = await cur.fetchone()
    return _row_to_record(row) if row else None


async def update_detection(detection_id: str, **fields: Any) -> bool:
    """
    Write only the named columns (plus updated_at) in one statement.
    Returns True if the row exists.
    """
    if not fields:
        return False
    sql, params = _assignments(fields)
    async with _connect() as db:
        cursor = await db.execute(
            f"UPDATE detections SET {sql}, updated_at = ? WHERE id = ?",
            [*params, _now(), detection_id],
        )
        await db.commit()
        return cursor.rowcount > 0


async def transition_detection(
    detection_id: str,
    from_status: DetectionStatus,
    to_status: DetectionStatus,
    **fields: Any,
) -> bool:
    """
    Compare-and-set status change, writing `fields` in the same statement.

    Raises InvalidTransitionError for a move not in the transition table.
    Returns False (and writes nothing) when the row is no longer in from_status.
    """
    check_transition(from_status, to_status)
    sql, params = _assignments(fields) if fields else ("", [])
    prefix = f"{sql}, " if sql else ""
    async with _connect() as db:
        cursor = await db.execute(
            f"UPDATE detections SET {prefix}status = ?, updated_at = ? "
            "WHERE id = ? AND status = ?",
            [*params, to_status.value, _now(), detection_id, DetectionStatus(from_status).value],
        )
        await db.commit()
        changed = cursor.rowcount > 0
    if changed:
        logger.info("Detection %s: %s → %s", detection_id, from_status.value, to_status.value)
    else:
        logger.warning(
            "Detection %s: transition %s → %s skipped (status moved)",
            detection_id, from_status.value, to_status.value,
        )
    return changed


async def list_detections(
    owner_id: Optional[str] = None,
    status: Optional[DetectionStatus] = None,
    limit: int = 50,
) -> list[DetectionRecord]:
    """Newest first, optionally filtered by owner and/or status."""
    clauses, params = [], []
    if owner_id is not None:
        clauses.append("owner_id = ?")
        params.append(owner_id)
    if status is not None:
        clauses.append("status = ?")
        params.append(DetectionStatus(status).value)
    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
    async with _connect() as db:
        async with db.execute(
            f"SELECT * FROM detections {where} ORDER BY created_at DESC LIMIT ?",
            [*params, limit],
        ) as cur:
            rows = await cur.fetchall()
    return [_row_to_record(r) for r in rows]


async def delete_detection(detection_id: str) -> bool:
    """Delete a detection; its metadata rows go with it (ON DELETE CASCADE)."""
    async with _connect() as db:
        cursor = await db.execute("DELETE FROM detections WHERE id = ?", (detection_id,))
        await db.commit()
        return cursor.rowcount > 0


# ── Metadata operations ───────────────────────────────────────────────────────

async def upsert_metadata(
    detection_id: str,
    rows: Iterable[tuple[str, Optional[str], str, Optional[str], str]],
) -> int:
    """
    Upsert (key, value_text, value_type, category, source) rows.

    One row per (detection, key): an existing row is overwritten in place,
    otherwise a new one is inserted. The whole batch runs in one
    BEGIN IMMEDIATE transaction so two concurrent writers of the same key
    can't both take the insert path. Returns the number of rows written.
    """
    rows = list(rows)
    if not rows:
        return 0
    now = _now()
    async with _connect() as db:
        await db.execute("BEGIN IMMEDIATE")
        try:
            for key, value, value_type, category, source in rows:
                async with db.execute(
                    "SELECT id FROM product_metadata WHERE detection_id = ? AND metadata_key = ? "
                    "ORDER BY id LIMIT 1",
                    (detection_id, key),
                ) as cur:
                    existing = await cur.fetchone()
                if existing:
                    await db.execute(
                        """UPDATE product_metadata
                           SET metadata_value = ?, value_type = ?, category = ?,
                               source = ?, updated_at = ?
                           WHERE id = ?""",
                        (value, value_type, category, source, now, existing["id"]),
                    )
                else:
                    await db.execute(
                        """INSERT INTO product_metadata
                           (detection_id, metadata_key, metadata_value, value_type,
                            category, source, created_at, updated_at)
                           VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                        (detection_id, key, value, value_type, category, source, now, now),
                    )
            await db.commit()
        except Exception:
            await db.rollback()
            raise
    return len(rows)


async def get_metadata(detection_id: str, category: Optional[str] = None) -> list[dict]:
    """All metadata rows for a detection in insertion order, as plain dicts."""
    sql = "SELECT * FROM product_metadata WHERE detection_id = ?"
    params: list[Any] = [detection_id]
    if category is not None:
        sql += " AND category = ?"
        params.append(category)
    async with _connect() as db:
        async with db.execute(sql + " ORDER BY id", params) as cur:
            rows = await cur.fetchall()
    return [dict(r) for r in rows]


async def get_metadata_value(detection_id: str, key: str) -> Optional[dict]:
    async with _connect() as db:
        async with db.execute(
            "SELECT * FROM product_metadata WHERE detection_id = ? AND metadata_key = ? "
            "ORDER BY updated_at DESC, id DESC LIMIT 1",
            (detection_id, key),
        ) as cur:
            row = await cur.fetchone()
    return dict(row) if row else None


async def find_detection_ids_by_metadata(
    key: str,
    value_text: str,
    category: Optional[str] = None,
) -> list[str]:
    """Detection ids having `key` stored with exactly `value_text`."""
    sql = (
        "SELECT DISTINCT detection_id FROM product_metadata "
        "WHERE metadata_key = ? AND metadata_value = ?"
    )
    params: list[Any] = [key, value_text]
    if category is not None:
        sql += " AND category = ?"
        params.append(category)
    async with _connect() as db:
        async with db.execute(sql, params) as cur:
            rows = await cur.fetchall()
    return [r["detection_id"] for r in rows]
