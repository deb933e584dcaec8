"""
validators.py — heuristic checks over stage output.

Model output is advisory: numbers and booleans may arrive as strings, fields
may be missing. Every check re-coerces what it reads and never raises on
malformed input.

The four identification checks are independent and pure:
  detect_multiple_products    indicator phrases / "X and Y" product names
  check_image_clarity         low confidence or image-quality complaints
  check_confidence_threshold  category minimum (config.MIN_CONFIDENCE_*)
  detect_contradictions       image_text_match flag / conflict language

validate_stage1_comprehensive() runs all four; validate_fashion_stage1()
adds the brand and missing-detail rules. A failed result halts the pipeline
with suggestions for the user; it is a gate, not a retry.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Optional, Sequence

import config
from models import Category

logger = logging.getLogger(__name__)


# ── Coercion ──────────────────────────────────────────────────────────────────

def coerce_number(value: Any, default: Optional[float] = None) -> Optional[float]:
    """Number from int/float/numeric string ("85", "85%", "$1,299.00"); bools are not numbers."""
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else default
    if isinstance(value, str):
        cleaned = value.strip().replace(",", "").lstrip("$").rstrip("%").strip()
        try:
            number = float(cleaned)
        except ValueError:
            return default
        return number if math.isfinite(number) else default
    return default


def coerce_bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("true", "yes", "1"):
            return True
        if lowered in ("false", "no", "0"):
            return False
    return None


def coerce_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, (list, tuple)):
        return "; ".join(str(v) for v in value)
    return str(value)


def coerce_str_list(value: Any) -> list[str]:
    """List of non-empty strings; a lone string becomes a one-item list. 'none' entries dropped."""
    if value is None:
        return []
    items = value if isinstance(value, (list, tuple)) else [value]
    out = []
    for item in items:
        text = coerce_text(item).strip()
        if text and text.lower() not in ("none", "n/a"):
            out.append(text)
    return out


def _confidence(data: dict) -> float:
    return coerce_number(data.get("confidence_score"), 0.0) or 0.0


def min_confidence_for(category: Category | str) -> int:
    return {
        Category.ELECTRONICS: config.MIN_CONFIDENCE_ELECTRONICS,
        Category.FASHION: config.MIN_CONFIDENCE_FASHION,
        Category.OTHER: config.MIN_CONFIDENCE_OTHER,
    }.get(Category(category), config.MIN_CONFIDENCE_OTHER)


# ── Result types ──────────────────────────────────────────────────────────────

@dataclass
class MultipleProductCheck:
    multiple_detected: bool
    error_message: Optional[str] = None
    details: dict = field(default_factory=dict)


@dataclass
class ClarityCheck:
    clear: bool
    confidence: float
    issues: list[str] = field(default_factory=list)
    error_message: Optional[str] = None
    suggestions: list[str] = field(default_factory=list)


@dataclass
class ConfidenceCheck:
    passes: bool
    confidence: float
    required: float
    error_message: Optional[str] = None
    suggestions: list[str] = field(default_factory=list)


@dataclass
class ContradictionCheck:
    contradictions_found: bool
    message: Optional[str] = None
    details: Optional[str] = None


@dataclass
class ValidationIssue:
    type: str
    message: str
    details: dict = field(default_factory=dict)


@dataclass
class ValidationResult:
    valid: bool
    errors: list[ValidationIssue] = field(default_factory=list)
    suggestions: list[str] = field(default_factory=list)
    confidence: float = 0.0
    warnings: list[str] = field(default_factory=list)
    missing_details: list[str] = field(default_factory=list)

    @property
    def error_types(self) -> list[str]:
        return [e.type for e in self.errors]

    def to_dict(self) -> dict:
        return {
            "valid": self.valid,
            "errors": [
                {"type": e.type, "message": e.message, "details": e.details} for e in self.errors
            ],
            "suggestions": list(self.suggestions),
            "confidence": self.confidence,
            "warnings": list(self.warnings),
            "missing_details": list(self.missing_details),
        }


@dataclass
class SimpleValidation:
    """Result of a schema-style check: errors block, warnings don't."""
    valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


# ── The four identification checks ────────────────────────────────────────────

_MULTI_PRODUCT_INDICATORS = (
    "multiple products", "different products", "two products",
    "several devices", "various items",
)

_CLARITY_KEYWORDS = (
    "blurry", "unclear", "poor quality", "cannot see", "not visible",
    "too dark", "too bright", "obstructed", "need better", "need clearer",
    "difficult to identify",
)
_CLARITY_MIN_CONFIDENCE = 50
CLARITY_SUGGESTIONS = (
    "Upload clearer, well-lit photos",
    "Include close-up of product logo/branding",
    "Include screenshot of device settings (for phones/tablets)",
    "Show model number if visible",
)

CONFIDENCE_SUGGESTIONS = (
    "Upload additional clearer images",
    "Provide text description with product details",
    "Include images showing model number or specifications",
)

_CONTRADICTION_KEYWORDS = (
    "contradiction", "mismatch", "differs from", "inconsistent",
    "does not match", "conflict",
)

# Confusion notes naming look-alike models rather than a second item in frame
_LOOKALIKE_MARKERS = (
    "confused with", "mistaken for", "similar to", "resembles", "looks like",
    "look-alike", "lookalike", "could be", "may be", "might be",
)
_NO_CONFUSION = ("none", "n/a", "na", "no", "nothing", "null")

SINGLE_PRODUCT_SUGGESTION = "Upload images of only ONE product"
MATCH_TEXT_SUGGESTION = "Verify your text description matches the images"


def _describes_frame(confusion: str) -> bool:
    text = confusion.strip().lower().rstrip(".")
    if not text or text in _NO_CONFUSION:
        return False
    return not any(marker in text for marker in _LOOKALIKE_MARKERS)


def detect_multiple_products(data: dict) -> MultipleProductCheck:
    confusion = coerce_text(data.get("possible_confusion"))
    feedback = coerce_text(data.get("clarity_feedback"))
    haystacks = (confusion.lower(), feedback.lower())

    for indicator in _MULTI_PRODUCT_INDICATORS:
        if any(indicator in text for text in haystacks):
            return MultipleProductCheck(
                multiple_detected=True,
                error_message="Multiple products detected in images",
                details={"possible_confusion": confusion, "clarity_feedback": feedback},
            )

    # Two items joined by a conjunction. A confusion note only counts when it
    # describes what is in frame, not which models this one resembles.
    candidates = [("identified_product", coerce_text(data.get("identified_product")))]
    if _describes_frame(confusion):
        candidates.append(("possible_confusion", confusion))
    for label, text in candidates:
        if " and " in text.lower() or " & " in text:
            return MultipleProductCheck(
                multiple_detected=True,
                error_message=f"Multiple products detected: {text}",
                details={label: text},
            )

    return MultipleProductCheck(multiple_detected=False)


def check_image_clarity(data: dict) -> ClarityCheck:
    confidence = _confidence(data)
    feedback = coerce_text(data.get("clarity_feedback")).lower()
    issues = [kw for kw in _CLARITY_KEYWORDS if kw in feedback]

    if confidence < _CLARITY_MIN_CONFIDENCE or issues:
        return ClarityCheck(
            clear=False,
            confidence=confidence,
            issues=issues,
            error_message="Images are not clear enough for accurate identification",
            suggestions=list(CLARITY_SUGGESTIONS),
        )
    return ClarityCheck(clear=True, confidence=confidence)


def check_confidence_threshold(data: dict, min_confidence: float = 50) -> ConfidenceCheck:
    confidence = _confidence(data)
    if confidence < min_confidence:
        return ConfidenceCheck(
            passes=False,
            confidence=confidence,
            required=min_confidence,
            error_message=(
                f"Confidence too low ({confidence:g}%). Minimum required: {min_confidence:g}%"
            ),
            suggestions=list(CONFIDENCE_SUGGESTIONS),
        )
    return ConfidenceCheck(passes=True, confidence=confidence, required=min_confidence)


def detect_contradictions(data: dict) -> ContradictionCheck:
    feedback = coerce_text(data.get("clarity_feedback"))

    # Structured flag first; "false" strings count too
    if coerce_bool(data.get("image_text_match")) is False:
        return ContradictionCheck(
            contradictions_found=True,
            message="User text contradicts image analysis",
            details=feedback,
        )

    lowered = feedback.lower()
    if any(kw in lowered for kw in _CONTRADICTION_KEYWORDS):
        return ContradictionCheck(
            contradictions_found=True,
            message="Potential contradictions detected",
            details=feedback,
        )
    return ContradictionCheck(contradictions_found=False)


# ── Aggregates ────────────────────────────────────────────────────────────────

def _dedupe(items: Sequence[str]) -> list[str]:
    return list(dict.fromkeys(items))


def validate_stage1_comprehensive(data: dict, min_confidence: float = 50) -> ValidationResult:
    """Valid iff all four checks pass. Suggestions are merged in order without duplicates."""
    errors: list[ValidationIssue] = []
    suggestions: list[str] = []

    multi = detect_multiple_products(data)
    if multi.multiple_detected:
        errors.append(ValidationIssue(
            "multiple_products", multi.error_message or "Multiple products detected", multi.details,
        ))
        suggestions.append(SINGLE_PRODUCT_SUGGESTION)

    clarity = check_image_clarity(data)
    if not clarity.clear:
        errors.append(ValidationIssue(
            "unclear_images", clarity.error_message or "Images are unclear",
            {"issues": clarity.issues},
        ))
        suggestions.extend(clarity.suggestions)

    threshold = check_confidence_threshold(data, min_confidence)
    if not threshold.passes:
        errors.append(ValidationIssue(
            "low_confidence", threshold.error_message or "Low confidence",
            {"confidence": threshold.confidence, "required": threshold.required},
        ))
        suggestions.extend(threshold.suggestions)

    contradiction = detect_contradictions(data)
    if contradiction.contradictions_found:
        errors.append(ValidationIssue(
            "text_image_mismatch", contradiction.message or "Contradiction detected",
            {"feedback": contradiction.details},
        ))
        suggestions.append(MATCH_TEXT_SUGGESTION)

    return ValidationResult(
        valid=not errors,
        errors=errors,
        suggestions=_dedupe(suggestions),
        confidence=_confidence(data),
    )


_MISSING_MARKERS = ("", "unknown", "n/a", "none", "null")
_MISSING_BRAND_MARKERS = _MISSING_MARKERS + (
    "unbranded", "brand not clearly visible", "not visible",
)
_FASHION_DETAIL_FIELDS = ("size", "material_composition", "specific_category", "color_variants")


def _is_missing(value: Any, markers: Sequence[str] = _MISSING_MARKERS) -> bool:
    text = coerce_text(value).strip().lower()
    return text in markers or "not visible" in text


def validate_fashion_stage1(data: dict, min_confidence: float = 40) -> ValidationResult:
    """
    Comprehensive checks plus:
      • missing_brand unless config.FASHION_ALLOW_MISSING_BRAND
      • too_many_missing_details when missing detail fields (plus any the model
        listed in missing_details) exceed config.FASHION_MAX_MISSING_DETAILS
    A missing size is only a warning: size tags are often not photographed.
    """
    result = validate_stage1_comprehensive(data, min_confidence)
    suggestions = list(result.suggestions)

    if not config.FASHION_ALLOW_MISSING_BRAND and _is_missing(data.get("brand"), _MISSING_BRAND_MARKERS):
        result.errors.append(ValidationIssue(
            "missing_brand", "Brand is required for fashion authentication",
            {"brand": coerce_text(data.get("brand"))},
        ))
        suggestions.append("Include close-up of product logo/branding")

    missing = [f for f in _FASHION_DETAIL_FIELDS if _is_missing(data.get(f))]
    for reported in coerce_str_list(data.get("missing_details")):
        if reported not in missing:
            missing.append(reported)
    result.missing_details = missing

    if "size" in missing:
        result.warnings.append("Size not detected - this is common if size tag is not visible")

    cap = config.FASHION_MAX_MISSING_DETAILS
    if len(missing) > cap:
        result.errors.append(ValidationIssue(
            "too_many_missing_details",
            f"Too many missing details ({len(missing)}, maximum {cap})",
            {"missing_details": missing},
        ))
        suggestions.append("Include photos of the size tag and care label")

    gender = coerce_text(data.get("gender_category") or data.get("gender")).strip()
    valid_genders = {g.lower() for g in config.FASHION_VALID_GENDERS} | {"male", "female"}
    if gender and gender.lower() not in valid_genders:
        result.warnings.append(f"Invalid gender: {gender}")

    result.suggestions = _dedupe(suggestions)
    result.valid = not result.errors
    return result


def validate_identification(data: dict, category: Category | str) -> ValidationResult:
    """Pick the category's validator and threshold."""
    minimum = min_confidence_for(category)
    if Category(category) is Category.FASHION:
        return validate_fashion_stage1(data, minimum)
    return validate_stage1_comprehensive(data, minimum)


# ── Other stages ──────────────────────────────────────────────────────────────

def validate_category_response(data: dict, min_confidence: float = 50) -> SimpleValidation:
    """Category is required and must be a known value; low confidence only warns."""
    errors: list[str] = []
    warnings: list[str] = []

    category = coerce_text(data.get("category")).strip().lower()
    if not category:
        errors.append("Missing required field: category")
    elif category not in {c.value for c in Category}:
        valid = ", ".join(c.value for c in Category)
        errors.append(f"Invalid category: {category}. Must be one of: {valid}")

    confidence = coerce_number(data.get("confidence_score"))
    if confidence is None:
        errors.append("Missing or invalid confidence_score")
    elif confidence < min_confidence:
        warnings.append(f"Low confidence score: {confidence:g}% (threshold: {min_confidence:g}%)")

    if not data.get("detected_product_type"):
        warnings.append("Missing detected_product_type")

    return SimpleValidation(valid=not errors, errors=errors, warnings=warnings)


VALID_AUTHENTICITY_STATUSES = (
    "Authentic", "Suspicious", "Unknown", "Likely Genuine", "Possible Fake",
)


def validate_verification_response(data: dict) -> SimpleValidation:
    errors: list[str] = []
    warnings: list[str] = []

    status = data.get("authenticity_status") or data.get("verification_status")
    if not status:
        errors.append("Missing authenticity_status")
    elif status not in VALID_AUTHENTICITY_STATUSES:
        warnings.append(f"Unusual authenticity status: {status}")

    if coerce_number(data.get("verification_confidence")) is None:
        errors.append("Missing or invalid verification_confidence")
    if coerce_bool(data.get("specs_match")) is None:
        warnings.append("Missing specs_match boolean")

    concerns = coerce_str_list(data.get("authenticity_warnings") or data.get("warnings"))
    if concerns:
        warnings.append(f"{len(concerns)} authenticity concern(s) detected")

    return SimpleValidation(valid=not errors, errors=errors, warnings=warnings)


@dataclass
class ImageValidation:
    valid: bool
    error: Optional[str] = None
    message: Optional[str] = None


def validate_uploaded_images(uploads: Sequence[Any]) -> ImageValidation:
    """Count, size and mime checks over ImageUpload-like objects (data, mime_type, filename)."""
    if len(uploads) < config.MIN_IMAGES:
        return ImageValidation(False, "no_images", f"Please upload at least {config.MIN_IMAGES} image(s)")
    if len(uploads) > config.MAX_IMAGES:
        return ImageValidation(
            False, "too_many_images",
            f"Maximum {config.MAX_IMAGES} images allowed. You uploaded {len(uploads)}.",
        )
    max_bytes = config.MAX_FILE_SIZE_MB * 1024 * 1024
    for upload in uploads:
        name = getattr(upload, "filename", None) or "image"
        if len(upload.data) > max_bytes:
            return ImageValidation(
                False, "file_too_large",
                f'Image "{name}" is too large. Maximum size: {config.MAX_FILE_SIZE_MB:g}MB',
            )
        if not upload.data:
            return ImageValidation(False, "empty_file", f'Image "{name}" is empty')
        if upload.mime_type not in config.ALLOWED_MIME_TYPES:
            return ImageValidation(
                False, "unsupported_type", f'Image "{name}" has unsupported type {upload.mime_type}',
            )
    return ImageValidation(True)


# ── Presentation helpers ──────────────────────────────────────────────────────

def extract_product_summary(data: dict, category: Category | str) -> str:
    def get(key: str, default: str) -> str:
        return coerce_text(data.get(key)) or default

    category = Category(category)
    if category is Category.ELECTRONICS:
        return (f"{get('brand', 'Unknown')} {get('model', 'Unknown')} - "
                f"{get('storage', 'N/A')} storage, {get('condition_rating', 'Unknown')} condition")
    if category is Category.FASHION:
        return (f"{get('brand', 'Unknown')} {get('identified_product', 'item')} - "
                f"{get('color_variants', 'Unknown')} color, {get('condition_rating', 'Unknown')} condition")
    return f"{get('identified_product', 'Unknown product')} - {get('condition_rating', 'Unknown')} condition"


_BRAND_TIER_CONTEXT = {
    "ultra-luxury": "This is an ultra-luxury brand. Authentication is critical due to high counterfeit risk.",
    "luxury": "This is a luxury brand. Careful authentication recommended.",
    "premium designer": "This is a premium designer brand. Authentication adds value.",
    "fast fashion": "This is a fast fashion brand. Focus on condition over authenticity.",
    "vintage": "This is a vintage item. Age and condition are key factors.",
    "unbranded": "This is an unbranded item. Authentication not applicable.",
}


def brand_tier_context(data: dict) -> Optional[str]:
    tier = coerce_text(data.get("brand_tier")).strip().lower()
    return _BRAND_TIER_CONTEXT.get(tier)
