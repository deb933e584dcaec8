"""
report.py — final analysis report for a completed detection.

The report is the full record (detection columns + metadata) with two extras:
  analysis_metadata  timestamp, analyser version, model, per-stage timings
  summary            plain-text summary laid out per category
"""
from __future__ import annotations

from typing import Any, Optional

import config
from models import Category, utcnow
from validators import coerce_number

_RULE = "=" * 70


def format_duration(seconds: float) -> str:
    """0.25 → '250ms', 12.34 → '12.3 seconds', 125 → '2 minutes 5 seconds'."""
    if seconds < 1:
        return f"{seconds * 1000:.0f}ms"
    if seconds < 60:
        return f"{seconds:.1f} seconds"
    minutes = int(seconds // 60)
    secs = int(seconds % 60)
    return (
        f"{minutes} minute{'s' if minutes > 1 else ''} "
        f"{secs} second{'' if secs == 1 else 's'}"
    )


def _val(report: dict, *keys: str, default: str = "N/A") -> Any:
    for key in keys:
        value = report.get(key)
        if value not in (None, "", [], {}):
            return value
    return default


def _join(values: Any) -> str:
    if isinstance(values, (list, tuple)):
        return ", ".join(str(v) for v in values)
    return str(values)


def _confidence(report: dict) -> str:
    value = coerce_number(report.get("confidence_score"), 0.0)
    return f"{value:g}%"


# ── Sections ──────────────────────────────────────────────────────────────────

def _verification_lines(report: dict, heading: str) -> list[str]:
    if not report.get("authenticity_status"):
        if report.get("verification_error"):
            return [heading, f"Not available: {report['verification_error']}", ""]
        return []
    lines = [heading, f"Status: {report['authenticity_status']}"]
    confidence = coerce_number(report.get("verification_confidence"))
    if confidence is not None:
        lines.append(f"Verification Confidence: {confidence:g}%")
    if report.get("specs_match") is not None:
        lines.append(f"Specs Match Official: {'Yes' if report['specs_match'] else 'No'}")
    if report.get("authentic_markers_found"):
        lines.append(f"Authentic Markers: {_join(report['authentic_markers_found'])}")
    if report.get("red_flags_found"):
        lines.append(f"Red Flags: {_join(report['red_flags_found'])}")
    if report.get("warnings"):
        lines.append(f"Warnings: {_join(report['warnings'])}")
    lines.append("")
    return lines


def _pricing_lines(report: dict) -> list[str]:
    count = report.get("item_count") or 0
    recommended = report.get("recommended_price")
    lines: list[str] = []
    if count:
        currency = report.get("currency") or "USD"
        lines += [
            "PRICING ANALYSIS",
            f"Market Average: {report.get('average_price'):.2f} {currency} ({count} listing(s))",
            f"Market Range: {report.get('min_price'):.2f} – {report.get('max_price'):.2f} {currency}",
        ]
    elif isinstance(recommended, dict):
        lines += [
            "PRICING ANALYSIS",
            f"Recommended Price: {_val(recommended, 'typical_resale_price')}",
            f"Price Range: {_val(recommended, 'price_range')}",
            f"Market Confidence: {_val(recommended, 'confidence')}",
        ]
    elif report.get("pricing_error"):
        return ["PRICING ANALYSIS", f"Not available: {report['pricing_error']}", ""]
    if lines:
        lines.append("")
    return lines


def _electronics_summary(report: dict) -> list[str]:
    return [
        "ELECTRONICS PRODUCT ANALYSIS SUMMARY",
        _RULE,
        "",
        f"Product: {_val(report, 'brand', default='Unknown')} {_val(report, 'model', default='Unknown')}",
        f"Storage: {_val(report, 'storage', 'storage_capacity')} | RAM: {_val(report, 'ram')}",
        f"Condition: {_val(report, 'condition_rating', default='Unknown')}",
        f"Identification Confidence: {_confidence(report)}",
        "",
        *_verification_lines(report, "VERIFICATION RESULTS"),
        *_pricing_lines(report),
    ]


def _fashion_summary(report: dict) -> list[str]:
    item = _val(report, "specific_category", "category_type", default="Item")
    return [
        "FASHION PRODUCT ANALYSIS SUMMARY",
        _RULE,
        "",
        f"Product: {_val(report, 'brand', default='Unknown')} {item}",
        f"Gender Category: {_val(report, 'gender_category', default='unisex')}",
        f"Size: {_val(report, 'size')}",
        f"Condition: {_val(report, 'condition_rating', default='Unknown')}",
        f"Identification Confidence: {_confidence(report)}",
        "",
        *_verification_lines(report, "AUTHENTICATION RESULTS"),
        *_pricing_lines(report),
    ]


def _other_summary(report: dict) -> list[str]:
    lines = [
        "PRODUCT ANALYSIS SUMMARY",
        _RULE,
        "",
        f"Product: {_val(report, 'identified_product', default='Unknown Product')}",
        f"Condition: {_val(report, 'condition_rating', default='Unknown')}",
        f"Confidence: {_confidence(report)}",
        "",
    ]
    if report.get("short_description"):
        lines += [f"Description: {report['short_description']}", ""]
    return lines + _verification_lines(report, "VERIFICATION RESULTS") + _pricing_lines(report)


def build_summary(report: dict, category: Category | str) -> str:
    builders = {
        Category.ELECTRONICS: _electronics_summary,
        Category.FASHION: _fashion_summary,
    }
    lines = builders.get(Category(category), _other_summary)(report)
    return "\n".join(lines + [_RULE])


# ── Report ────────────────────────────────────────────────────────────────────

def build_report(
    full_record: dict[str, Any],
    timings: Optional[dict[str, float]] = None,
    model_used: str = "unknown",
) -> dict[str, Any]:
    category = full_record.get("category") or Category.OTHER.value
    report = dict(full_record)
    report["analysis_metadata"] = {
        "timestamp": utcnow().isoformat(),
        "analyzer_version": config.ANALYZER_VERSION,
        "model_used": model_used,
        "execution_times": {
            stage: format_duration(secs) for stage, secs in (timings or {}).items()
        },
        "total_time": format_duration(sum((timings or {}).values())),
        "product_category": category,
    }
    report["summary"] = build_summary(report, category)
    return report
