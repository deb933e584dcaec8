"""
metadata_store.py — schema-free product attributes (entity-attribute-value).

Whatever a stage returns beyond the fixed detection columns is stored here,
one row per key, with a type tag so reads give back the original shape:

  string   → str as-is
  number   → int / float (JSON number text)
  boolean  → "true" / "false"
  json     → dict / list (JSON text)

Writes are last-write-wins per (detection, key): the row's source tag shows
which stage or edit wrote the current value.
"""
from __future__ import annotations

import json
import logging
import math
from datetime import datetime
from typing import Any, Iterable, Optional

import database
from models import DetectionNotFoundError, MetadataAttribute, MetadataSource, ValueType

logger = logging.getLogger(__name__)

# Keys that live in detection columns (or are workflow fields) and never go to metadata
CORE_FIELDS: frozenset[str] = frozenset({
    "id", "uuid", "status", "category", "category_confidence", "categoryConfidence",
    "identified_product", "brand", "model", "color_variants", "condition_rating",
    "confidence_score", "estimated_year", "short_description",
    "authenticity_status", "verification_confidence", "specs_match",
    "authenticity_warnings", "warnings", "verification_summary",
    "average_price", "min_price", "max_price", "price_currency", "currency",
    "ebay_items_count", "item_count", "pricing_updated_at", "estimated_price",
})


# ── Type tagging ──────────────────────────────────────────────────────────────

def infer_value_type(value: Any) -> ValueType:
    # bool before number: bool is a subclass of int
    if isinstance(value, bool):
        return ValueType.BOOLEAN
    if isinstance(value, (int, float)):
        return ValueType.NUMBER
    if isinstance(value, (dict, list, tuple)):
        return ValueType.JSON
    return ValueType.STRING


def encode_value(value: Any) -> tuple[str, ValueType]:
    """Encode a value as (text, tag). Raises ValueError for NaN / infinity."""
    value_type = infer_value_type(value)
    if value_type is ValueType.BOOLEAN:
        return ("true" if value else "false"), value_type
    if value_type is ValueType.NUMBER:
        if isinstance(value, float) and not math.isfinite(value):
            raise ValueError(f"Cannot store non-finite number {value!r}")
        return json.dumps(value), value_type
    if value_type is ValueType.JSON:
        return json.dumps(list(value) if isinstance(value, tuple) else value), value_type
    return str(value), value_type


def decode_value(text: Optional[str], value_type: ValueType | str) -> Any:
    """Inverse of encode_value, dispatching on every tag."""
    if text is None:
        return None
    tag = ValueType(value_type)
    if tag is ValueType.STRING:
        return text
    if tag is ValueType.NUMBER:
        number = json.loads(text)
        if not isinstance(number, (int, float)) or isinstance(number, bool):
            raise ValueError(f"Stored number is not numeric: {text!r}")
        return number
    if tag is ValueType.BOOLEAN:
        return text == "true"
    if tag is ValueType.JSON:
        return json.loads(text)
    raise ValueError(f"Unhandled value type {tag!r}")


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _row_to_attribute(row: dict) -> MetadataAttribute:
    return MetadataAttribute(
        id=row["id"],
        detection_id=row["detection_id"],
        key=row["metadata_key"],
        value=decode_value(row["metadata_value"], row["value_type"]),
        value_type=ValueType(row["value_type"]),
        category=row["category"],
        source=MetadataSource(row["source"]),
        created_at=datetime.fromisoformat(row["created_at"]),
        updated_at=datetime.fromisoformat(row["updated_at"]),
    )


async def _write(
    detection_id: str,
    attributes: dict[str, Any],
    category: Optional[str],
    source: MetadataSource,
    skip: Iterable[str],
) -> dict[str, Any]:
    skip = set(skip)
    rows, stored = [], {}
    for key, value in attributes.items():
        if key in skip or _is_blank(value):
            continue
        try:
            text, value_type = encode_value(value)
        except ValueError as exc:
            logger.warning("Skipping metadata %s for %s: %s", key, detection_id, exc)
            continue
        rows.append((key, text, value_type.value, category, MetadataSource(source).value))
        stored[key] = value
    if rows:
        await database.upsert_metadata(detection_id, rows)
        logger.info(
            "Stored %d metadata field(s) for %s (source=%s)",
            len(rows), detection_id, MetadataSource(source).value,
        )
    return stored


# ── Writes ────────────────────────────────────────────────────────────────────

async def store_attributes(
    detection_id: str,
    attributes: dict[str, Any],
    category: Optional[str] = None,
    source: MetadataSource = MetadataSource.IDENTIFICATION,
    exclude_keys: Iterable[str] = (),
) -> dict[str, Any]:
    """
    Store every non-core, non-blank attribute; returns what was stored.
    Calling twice with the same data leaves one row per key.
    """
    return await _write(
        detection_id, attributes, category, source,
        skip=CORE_FIELDS.union(exclude_keys),
    )


async def update_attributes(
    detection_id: str,
    updates: dict[str, Any],
    category: Optional[str] = None,
    source: MetadataSource = MetadataSource.USER_EDIT,
) -> dict[str, Any]:
    """Overwrite specific attributes (user edits). Core keys are not filtered here."""
    return await _write(detection_id, updates, category, source, skip=())


# ── Reads ─────────────────────────────────────────────────────────────────────

async def get_attribute_rows(
    detection_id: str, category: Optional[str] = None
) -> list[MetadataAttribute]:
    return [_row_to_attribute(r) for r in await database.get_metadata(detection_id, category)]


async def get_attributes(detection_id: str) -> dict[str, Any]:
    """Flat key → decoded value mapping."""
    return {a.key: a.value for a in await get_attribute_rows(detection_id)}


async def get_attributes_by_category(detection_id: str, category: str) -> dict[str, Any]:
    return {a.key: a.value for a in await get_attribute_rows(detection_id, category)}


async def get_attribute(detection_id: str, key: str) -> Any:
    row = await database.get_metadata_value(detection_id, key)
    return decode_value(row["metadata_value"], row["value_type"]) if row else None


async def find_by_attribute(key: str, value: Any, category: Optional[str] = None) -> list[str]:
    """Detection ids whose `key` attribute equals `value`."""
    text, _ = encode_value(value)
    return await database.find_detection_ids_by_metadata(key, text, category)


async def get_full_record(detection_id: str) -> dict[str, Any]:
    """
    Detection columns merged with all attributes into one flat dict.
    Attributes fill in keys only; they never replace a detection column.
    """
    record = await database.get_detection(detection_id)
    if record is None:
        raise DetectionNotFoundError(detection_id)
    full = record.to_dict()
    for key, value in (await get_attributes(detection_id)).items():
        full.setdefault(key, value)
    return full
