"""
Tests for validators.py.

Covers:
  - coercion helpers (numbers / booleans / lists from loose model output)
  - detect_multiple_products, check_image_clarity, check_confidence_threshold,
    detect_contradictions
  - validate_stage1_comprehensive: error types, merged suggestions
  - validate_fashion_stage1: brand rule, missing-detail cap, size warning
  - validate_identification: per-category threshold
  - category / verification response checks, upload checks, summaries
"""
from __future__ import annotations

import pytest

import config
from image_store import ImageUpload
from models import Category
from validators import (
    brand_tier_context,
    check_confidence_threshold,
    check_image_clarity,
    coerce_bool,
    coerce_number,
    coerce_str_list,
    detect_contradictions,
    detect_multiple_products,
    extract_product_summary,
    min_confidence_for,
    validate_category_response,
    validate_fashion_stage1,
    validate_identification,
    validate_stage1_comprehensive,
    validate_uploaded_images,
    validate_verification_response,
)


def good_electronics(**overrides) -> dict:
    data = {
        "identified_product": "Apple iPhone 13",
        "brand": "Apple",
        "model": "iPhone 13",
        "confidence_score": 88,
        "clarity_feedback": "Clear, well-lit photos",
        "possible_confusion": "Could be iPhone 13 mini",
        "image_text_match": True,
    }
    data.update(overrides)
    return data


def good_fashion(**overrides) -> dict:
    data = {
        "identified_product": "Denim jacket",
        "brand": "Levi's",
        "size": "M",
        "material_composition": "100% cotton",
        "specific_category": "Trucker jacket",
        "color_variants": "Blue",
        "gender_category": "Men",
        "confidence_score": 75,
        "clarity_feedback": "Label clearly visible",
    }
    data.update(overrides)
    return data


# ── Coercion ──────────────────────────────────────────────────────────────────

class TestCoercion:
    @pytest.mark.parametrize("raw,expected", [
        (85, 85.0), ("85", 85.0), ("85%", 85.0), ("$1,299.00", 1299.0), (" 12.5 ", 12.5),
    ])
    def test_numbers(self, raw, expected):
        assert coerce_number(raw) == expected

    @pytest.mark.parametrize("raw", [None, True, "N/A", "", float("nan"), [1]])
    def test_not_numbers(self, raw):
        assert coerce_number(raw) is None

    def test_number_default(self):
        assert coerce_number("abc", 0.0) == 0.0

    @pytest.mark.parametrize("raw,expected", [
        (True, True), ("false", False), ("Yes", True), ("0", False), ("maybe", None), (None, None),
    ])
    def test_bools(self, raw, expected):
        assert coerce_bool(raw) is expected

    def test_str_list(self):
        assert coerce_str_list("one") == ["one"]
        assert coerce_str_list(["a", "", None, "none", "b"]) == ["a", "b"]
        assert coerce_str_list(None) == []


# ── Individual checks ─────────────────────────────────────────────────────────

class TestMultipleProducts:
    def test_conjunction_in_confusion(self):
        check = detect_multiple_products({"possible_confusion": "iPhone and Samsung visible"})
        assert check.multiple_detected is True

    def test_conjunction_in_product_name(self):
        check = detect_multiple_products({"identified_product": "AirPods & Case"})
        assert check.multiple_detected is True

    def test_indicator_in_feedback(self):
        check = detect_multiple_products({"clarity_feedback": "Photo shows multiple products"})
        assert check.multiple_detected is True

    def test_single_product(self):
        assert detect_multiple_products(good_electronics()).multiple_detected is False

    @pytest.mark.parametrize("note", [
        "Could be confused with the Galaxy S21 and S22",
        "Similar to the iPhone 12 & iPhone 13",
        "None",
        "",
    ])
    def test_lookalike_note_is_not_a_second_product(self, note):
        check = detect_multiple_products({"possible_confusion": note})
        assert check.multiple_detected is False

    def test_lookalike_note_passes_gate(self):
        data = good_electronics(possible_confusion="Could be mistaken for the S21 and S22")
        assert validate_stage1_comprehensive(data).valid is True


class TestClarity:
    def test_low_confidence_unclear(self):
        check = check_image_clarity({"confidence_score": 30})
        assert check.clear is False
        assert check.suggestions

    def test_keyword_unclear(self):
        check = check_image_clarity({"confidence_score": 90, "clarity_feedback": "Image is blurry"})
        assert check.clear is False
        assert check.issues == ["blurry"]

    def test_clear(self):
        assert check_image_clarity(good_electronics()).clear is True


class TestConfidenceThreshold:
    def test_below_minimum(self):
        check = check_confidence_threshold({"confidence_score": 35}, 50)
        assert check.passes is False
        assert check.required == 50
        assert check.confidence == 35

    def test_string_confidence(self):
        assert check_confidence_threshold({"confidence_score": "75%"}, 50).passes is True

    def test_passing_still_reports_required(self):
        assert check_confidence_threshold({"confidence_score": 90}, 40).required == 40

    def test_missing_confidence_fails(self):
        assert check_confidence_threshold({}, 40).passes is False


class TestContradictions:
    def test_flag_false(self):
        assert detect_contradictions({"image_text_match": False}).contradictions_found

    def test_flag_false_string(self):
        assert detect_contradictions({"image_text_match": "false"}).contradictions_found

    def test_keyword(self):
        check = detect_contradictions({"clarity_feedback": "Text mismatch with the photo"})
        assert check.contradictions_found

    def test_none(self):
        assert not detect_contradictions(good_electronics()).contradictions_found


# ── Aggregates ────────────────────────────────────────────────────────────────

class TestComprehensive:
    def test_valid(self):
        result = validate_stage1_comprehensive(good_electronics())
        assert result.valid
        assert result.errors == []

    def test_low_confidence_has_types_and_suggestions(self):
        result = validate_stage1_comprehensive(good_electronics(confidence_score=35), 50)
        assert not result.valid
        assert "low_confidence" in result.error_types
        assert "unclear_images" in result.error_types
        assert result.suggestions
        assert len(result.suggestions) == len(set(result.suggestions))

    def test_all_four(self):
        data = good_electronics(
            identified_product="iPhone and iPad",
            confidence_score=20,
            clarity_feedback="blurry, inconsistent with text",
            image_text_match=False,
        )
        result = validate_stage1_comprehensive(data, 50)
        assert result.error_types == [
            "multiple_products", "unclear_images", "low_confidence", "text_image_mismatch",
        ]

    def test_to_dict(self):
        out = validate_stage1_comprehensive(good_electronics(confidence_score=10)).to_dict()
        assert out["valid"] is False
        assert out["errors"][0]["type"]


class TestFashion:
    def test_valid(self):
        result = validate_fashion_stage1(good_fashion())
        assert result.valid
        assert result.missing_details == []

    def test_missing_brand(self, monkeypatch):
        monkeypatch.setattr(config, "FASHION_ALLOW_MISSING_BRAND", False)
        result = validate_fashion_stage1(good_fashion(brand="Brand not clearly visible"))
        assert "missing_brand" in result.error_types

    def test_missing_brand_allowed(self, monkeypatch):
        monkeypatch.setattr(config, "FASHION_ALLOW_MISSING_BRAND", True)
        assert validate_fashion_stage1(good_fashion(brand="")).valid

    def test_missing_size_only_warns(self):
        result = validate_fashion_stage1(good_fashion(size="not visible"))
        assert result.valid
        assert "size" in result.missing_details
        assert any("Size" in w for w in result.warnings)

    def test_too_many_missing_details(self, monkeypatch):
        monkeypatch.setattr(config, "FASHION_MAX_MISSING_DETAILS", 2)
        result = validate_fashion_stage1(good_fashion(size="", material_composition="unknown",
                                                      specific_category="N/A"))
        assert "too_many_missing_details" in result.error_types

    def test_reported_missing_details_counted(self, monkeypatch):
        monkeypatch.setattr(config, "FASHION_MAX_MISSING_DETAILS", 1)
        result = validate_fashion_stage1(good_fashion(missing_details=["care label", "year"]))
        assert "too_many_missing_details" in result.error_types

    def test_invalid_gender_warns(self):
        result = validate_fashion_stage1(good_fashion(gender_category="Robots"))
        assert any("gender" in w.lower() for w in result.warnings)


class TestValidateIdentification:
    def test_electronics_threshold(self, monkeypatch):
        monkeypatch.setattr(config, "MIN_CONFIDENCE_ELECTRONICS", 50)
        result = validate_identification(good_electronics(confidence_score=35), Category.ELECTRONICS)
        assert not result.valid
        assert "low_confidence" in result.error_types

    def test_other_threshold_lower(self, monkeypatch):
        monkeypatch.setattr(config, "MIN_CONFIDENCE_OTHER", 40)
        assert min_confidence_for("other") == 40
        result = validate_identification(good_electronics(confidence_score=55), "other")
        assert result.valid

    def test_fashion_uses_fashion_rules(self):
        result = validate_identification(good_fashion(brand=""), Category.FASHION)
        assert "missing_brand" in result.error_types


# ── Other stages ──────────────────────────────────────────────────────────────

class TestCategoryResponse:
    def test_valid(self):
        check = validate_category_response(
            {"category": "Electronics", "confidence_score": 90, "detected_product_type": "phone"})
        assert check.valid
        assert check.warnings == []

    def test_unknown_category(self):
        assert not validate_category_response({"category": "toys", "confidence_score": 90}).valid

    def test_low_confidence_only_warns(self):
        check = validate_category_response(
            {"category": "other", "confidence_score": 20, "detected_product_type": "mug"})
        assert check.valid
        assert check.warnings


class TestVerificationResponse:
    def test_valid(self):
        check = validate_verification_response(
            {"authenticity_status": "Authentic", "verification_confidence": 80, "specs_match": True})
        assert check.valid

    def test_legacy_status_key(self):
        check = validate_verification_response(
            {"verification_status": "Suspicious", "verification_confidence": "60"})
        assert check.valid

    def test_missing_status(self):
        assert not validate_verification_response({"verification_confidence": 80}).valid


class TestUploads:
    def test_none(self):
        assert validate_uploaded_images([]).error == "no_images"

    def test_too_many(self):
        uploads = [ImageUpload(b"\xff\xd8\xff") for _ in range(6)]
        assert validate_uploaded_images(uploads).error == "too_many_images"

    def test_too_large(self, monkeypatch):
        monkeypatch.setattr(config, "MAX_FILE_SIZE_MB", 0.001)
        assert validate_uploaded_images([ImageUpload(b"\xff" * 2048)]).error == "file_too_large"

    def test_unsupported_type(self):
        check = validate_uploaded_images([ImageUpload(b"%PDF", mime_type="application/pdf")])
        assert check.error == "unsupported_type"

    def test_ok(self):
        assert validate_uploaded_images([ImageUpload(b"\x89PNG\r\n\x1a\n0000")]).valid


class TestSummaries:
    def test_electronics_summary(self):
        text = extract_product_summary(good_electronics(storage="128GB", condition_rating="Good"),
                                       "electronics")
        assert text == "Apple iPhone 13 - 128GB storage, Good condition"

    def test_other_summary(self):
        assert extract_product_summary({}, "other") == "Unknown product - Unknown condition"

    def test_brand_tier(self):
        assert "luxury" in brand_tier_context({"brand_tier": "Luxury"})
        assert brand_tier_context({"brand_tier": "mystery"}) is None
