"""
orchestrator.py — drives one detection through the analysis stages.

  start_analysis     upload images, classify category        pending → category_detected
  identify           category-specific identification,
                     validation gate                         category_detected → identified
  confirm            user accepts / edits the identification (status unchanged)
  complete_analysis  verification ∥ pricing, then join       identified/verified → completed
  run_verification   verification branch alone               identified → verified
  run_pricing        pricing branch alone                    (status unchanged)

A stage's detection columns are written in one statement together with its
status change, and only after the stage has fully succeeded. Everything else
the model returned goes to the metadata store first.

Failures:
  • inference / parse errors in category or identification → status failed,
    error_message stored, result returned with success=False
  • identification that fails validation → halted: the record stays in
    category_detected, the result carries errors and suggestions
  • a failing verification or pricing branch is recorded on the record
    (verification_error / pricing_error) and never stops its sibling; the
    run still reaches completed once both have finished
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Optional, Sequence

import database
import metadata_store
from image_store import DataUriImageStore, ImageStore, ImageUpload, ImageValidationError
from inference_client import InferenceClient, stage_options
from models import (
    Category,
    DetectionNotFoundError,
    DetectionRecord,
    DetectionStatus,
    IDENTIFICATION_FIELDS,
    MetadataSource,
    NotConfirmedError,
    StageOrderError,
    utcnow,
)
from pricing import ModelEstimatedPricing, PricingAggregator, PricingOutcome
from prompts import CATEGORY_PROMPT, identification_prompt, verification_prompt
from report import build_report
from validators import (
    ValidationResult,
    brand_tier_context,
    coerce_bool,
    coerce_number,
    coerce_str_list,
    coerce_text,
    extract_product_summary,
    validate_category_response,
    validate_identification,
    validate_uploaded_images,
    validate_verification_response,
)

logger = logging.getLogger(__name__)

_S = DetectionStatus

# Fields a user may correct at confirmation time that live in detection columns
EDITABLE_CORE_FIELDS = (
    "identified_product", "brand", "model", "color_variants",
    "condition_rating", "estimated_year", "short_description",
)

# Record keys kept out of the product details sent back to the model
_NOT_PRODUCT_DETAILS = frozenset({
    "id", "status", "owner_id", "input_images", "input_description",
    "user_confirmed", "confirmed_at", "error_message", "created_at", "updated_at",
    "verification_error", "pricing_error", "pricing_updated_at",
    "average_price", "min_price", "max_price", "currency", "item_count",
    "market_listings", "market_search_error", "search_query", "pricing_strategy_used",
})


# ── Results ───────────────────────────────────────────────────────────────────

@dataclass
class CategoryResult:
    detection_id: str
    success: bool
    category: Optional[Category] = None
    confidence: Optional[float] = None
    detected_product_type: Optional[str] = None
    reasoning: Optional[str] = None
    image_urls: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    error: Optional[str] = None
    elapsed_secs: float = 0.0


@dataclass
class IdentificationResult:
    detection_id: str
    success: bool
    halted: bool = False                # validation gate stopped the run
    category: Optional[Category] = None
    data: dict = field(default_factory=dict)
    validation: Optional[ValidationResult] = None
    summary: Optional[str] = None
    brand_context: Optional[str] = None
    error: Optional[str] = None
    elapsed_secs: float = 0.0

    @property
    def suggestions(self) -> list[str]:
        return list(self.validation.suggestions) if self.validation else []


@dataclass
class AnalysisResult:
    detection_id: str
    category: CategoryResult
    identification: Optional[IdentificationResult] = None

    @property
    def success(self) -> bool:
        return self.identification is not None and self.identification.success


@dataclass
class BranchOutcome:
    branch: str                         # verification | pricing
    success: bool
    error: Optional[str] = None
    data: dict = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)
    elapsed_secs: float = 0.0


@dataclass
class CompletionResult:
    detection_id: str
    status: DetectionStatus
    verification: BranchOutcome
    pricing: BranchOutcome
    record: dict = field(default_factory=dict)
    report: dict = field(default_factory=dict)

    @property
    def partial(self) -> bool:
        return not (self.verification.success and self.pricing.success)


def _text_or_none(value: Any) -> Optional[str]:
    text = coerce_text(value).strip()
    return text or None


def identification_columns(data: dict) -> dict[str, Any]:
    """Coerce model output into the identification detection columns."""
    columns = {k: _text_or_none(data.get(k)) for k in IDENTIFICATION_FIELDS}
    columns["confidence_score"] = coerce_number(data.get("confidence_score"))
    return columns


def product_details(full_record: dict) -> dict[str, Any]:
    """
    What the verification and pricing prompts get to see: identification
    columns plus stored attributes. Images travel separately as inputs, so
    image references, workflow state and branch bookkeeping are left out.
    """
    details = {}
    for key, value in full_record.items():
        if key in _NOT_PRODUCT_DETAILS or value is None or value == [] or value == "":
            continue
        if isinstance(value, str) and value.startswith("data:"):
            continue
        details[key] = value
    return details


def verification_columns(data: dict) -> dict[str, Any]:
    """Coerce model output into the verification detection columns."""
    return {
        "authenticity_status": _text_or_none(
            data.get("authenticity_status") or data.get("verification_status")
        ),
        "verification_confidence": coerce_number(data.get("verification_confidence")),
        "specs_match": coerce_bool(data.get("specs_match")),
        "warnings": coerce_str_list(data.get("authenticity_warnings") or data.get("warnings")),
        "verification_summary": _text_or_none(
            data.get("verification_summary")
            or data.get("authentication_summary")
            or data.get("verified_specs_match")
        ),
        "verification_error": None,
    }


# ── Orchestrator ──────────────────────────────────────────────────────────────

class StageOrchestrator:

    def __init__(
        self,
        client: Optional[InferenceClient] = None,
        image_store: Optional[ImageStore] = None,
        pricing: Optional[PricingAggregator] = None,
    ) -> None:
        self.client = client or InferenceClient()
        self.image_store = image_store or DataUriImageStore()
        self.pricing = pricing or PricingAggregator(model=ModelEstimatedPricing(self.client))
        self.timings: dict[str, dict[str, float]] = {}

    # ── helpers ───────────────────────────────────────────────────────────────

    async def _require(self, detection_id: str) -> DetectionRecord:
        record = await database.get_detection(detection_id)
        if record is None:
            raise DetectionNotFoundError(detection_id)
        return record

    def _require_status(self, record: DetectionRecord, stage: str, *expected: DetectionStatus) -> None:
        if record.status not in expected:
            raise StageOrderError(record.id, stage, record.status, expected)

    async def _fail(self, detection_id: str, current: DetectionStatus, message: str) -> None:
        logger.error("Detection %s failed: %s", detection_id, message)
        await database.transition_detection(detection_id, current, _S.FAILED, error_message=message)

    def _timed(self, detection_id: str, stage: str, t0: float) -> float:
        elapsed = time.monotonic() - t0
        self.timings.setdefault(detection_id, {})[stage] = elapsed
        return elapsed

    def _final_timed(self, detection_id: str, stage: str, t0: float) -> float:
        """Last timing of a run that stops here; the run's entry is released."""
        elapsed = self._timed(detection_id, stage, t0)
        self.timings.pop(detection_id, None)
        return elapsed

    # ── Stage: category ───────────────────────────────────────────────────────

    async def start_analysis(
        self,
        images: Sequence[ImageUpload],
        text: Optional[str] = None,
        owner_id: Optional[str] = None,
    ) -> CategoryResult:
        """
        Create the detection, store the images, classify the category.
        Raises ImageValidationError (before anything is stored) for a bad upload.
        """
        check = validate_uploaded_images(images)
        if not check.valid:
            raise ImageValidationError(check.error or "invalid_images", check.message or "Invalid images")

        description = (text or "").strip() or None
        record = DetectionRecord(owner_id=owner_id, input_description=description)
        await database.insert_detection(record)
        detection_id = record.id
        logger.info("Detection %s created (%d image(s))", detection_id, len(images))

        t0 = time.monotonic()
        try:
            urls = await self.image_store.put_many(images)
            await database.update_detection(detection_id, input_images=urls)
            data = await self.client.call_and_parse(
                CATEGORY_PROMPT, urls, stage_options("category"), user_text=description,
            )
        except Exception as exc:
            message = f"Category detection failed: {exc}"
            await self._fail(detection_id, _S.PENDING, message)
            return CategoryResult(
                detection_id, success=False, error=message,
                elapsed_secs=self._final_timed(detection_id, "category", t0),
            )

        validation = validate_category_response(data)
        if not validation.valid:
            message = f"Category validation failed: {', '.join(validation.errors)}"
            await self._fail(detection_id, _S.PENDING, message)
            return CategoryResult(
                detection_id, success=False, error=message, warnings=validation.warnings,
                image_urls=urls, elapsed_secs=self._final_timed(detection_id, "category", t0),
            )
        for warning in validation.warnings:
            logger.warning("Detection %s category: %s", detection_id, warning)

        category = Category(coerce_text(data["category"]).strip().lower())
        confidence = coerce_number(data.get("confidence_score"))
        extras = {
            "detected_product_type": data.get("detected_product_type"),
            "category_reasoning": data.get("reasoning"),
        }
        await metadata_store.store_attributes(
            detection_id, extras, category=category.value, source=MetadataSource.IDENTIFICATION,
        )
        await database.transition_detection(
            detection_id, _S.PENDING, _S.CATEGORY_DETECTED,
            category=category, category_confidence=confidence,
        )
        elapsed = self._timed(detection_id, "category", t0)
        logger.info(
            "[category] OK — %s detection=%s confidence=%s latency=%dms",
            category.value, detection_id, confidence, elapsed * 1000,
        )
        return CategoryResult(
            detection_id,
            success=True,
            category=category,
            confidence=confidence,
            detected_product_type=_text_or_none(extras["detected_product_type"]),
            reasoning=_text_or_none(extras["category_reasoning"]),
            image_urls=urls,
            warnings=validation.warnings,
            elapsed_secs=elapsed,
        )

    # ── Stage: identification ─────────────────────────────────────────────────

    async def identify(self, detection_id: str, user_text: Optional[str] = None) -> IdentificationResult:
        record = await self._require(detection_id)
        self._require_status(record, "identification", _S.CATEGORY_DETECTED)
        category = record.category or Category.OTHER
        text = user_text if user_text is not None else record.input_description

        t0 = time.monotonic()
        try:
            data = await self.client.call_and_parse(
                identification_prompt(category),
                record.input_images,
                stage_options("identification", category.value),
                user_text=text,
            )
        except Exception as exc:
            message = f"Identification failed: {exc}"
            await self._fail(detection_id, _S.CATEGORY_DETECTED, message)
            return IdentificationResult(
                detection_id, success=False, category=category, error=message,
                elapsed_secs=self._final_timed(detection_id, "identification", t0),
            )

        validation = validate_identification(data, category)
        if not validation.valid:
            message = "Identification halted: " + "; ".join(e.message for e in validation.errors)
            await database.update_detection(detection_id, error_message=message)
            logger.warning(
                "[identification] HALT — detection=%s errors=%s",
                detection_id, ",".join(validation.error_types),
            )
            return IdentificationResult(
                detection_id,
                success=False,
                halted=True,
                category=category,
                data=data,
                validation=validation,
                error=message,
                elapsed_secs=self._final_timed(detection_id, "identification", t0),
            )

        await metadata_store.store_attributes(
            detection_id, data, category=category.value, source=MetadataSource.IDENTIFICATION,
        )
        moved = await database.transition_detection(
            detection_id, _S.CATEGORY_DETECTED, _S.IDENTIFIED,
            error_message=None, **identification_columns(data),
        )
        if not moved:
            current = await self._require(detection_id)
            raise StageOrderError(detection_id, "identification", current.status, (_S.CATEGORY_DETECTED,))

        elapsed = self._timed(detection_id, "identification", t0)
        logger.info(
            "[identification] OK — detection=%s confidence=%s latency=%dms",
            detection_id, validation.confidence, elapsed * 1000,
        )
        return IdentificationResult(
            detection_id,
            success=True,
            category=category,
            data=data,
            validation=validation,
            summary=extract_product_summary(data, category),
            brand_context=brand_tier_context(data),
            elapsed_secs=elapsed,
        )

    async def run_analysis(
        self,
        images: Sequence[ImageUpload],
        text: Optional[str] = None,
        owner_id: Optional[str] = None,
    ) -> AnalysisResult:
        """Category then identification; stops at the gate or waits for confirm()."""
        category = await self.start_analysis(images, text, owner_id)
        if not category.success:
            return AnalysisResult(category.detection_id, category)
        identification = await self.identify(category.detection_id)
        return AnalysisResult(category.detection_id, category, identification)

    # ── Fetching stage results ────────────────────────────────────────────────

    async def get_category_result(self, detection_id: str) -> CategoryResult:
        record = await self._require(detection_id)
        if record.category is None:
            return CategoryResult(
                detection_id, success=False, image_urls=record.input_images,
                error=record.error_message or f"Category not detected (status {record.status.value})",
            )
        return CategoryResult(
            detection_id,
            success=True,
            category=record.category,
            confidence=record.category_confidence,
            detected_product_type=await metadata_store.get_attribute(detection_id, "detected_product_type"),
            reasoning=await metadata_store.get_attribute(detection_id, "category_reasoning"),
            image_urls=record.input_images,
        )

    async def get_identification_result(self, detection_id: str) -> IdentificationResult:
        record = await self._require(detection_id)
        self._require_status(record, "identification result", _S.IDENTIFIED, _S.VERIFIED, _S.COMPLETED)
        full = await metadata_store.get_full_record(detection_id)
        category = record.category or Category.OTHER
        return IdentificationResult(
            detection_id,
            success=True,
            category=category,
            data=full,
            summary=extract_product_summary(full, category),
            brand_context=brand_tier_context(full),
        )

    async def get_full_record(self, detection_id: str) -> dict:
        return await metadata_store.get_full_record(detection_id)

    # ── Confirmation ──────────────────────────────────────────────────────────

    async def confirm(
        self,
        detection_id: str,
        is_correct: bool,
        edits: Optional[dict[str, Any]] = None,
    ) -> dict:
        """
        Record the user's verdict. Edits apply either way: core fields to the
        detection, everything else to metadata as user_edit. The detection
        counts as confirmed when the user accepted it or supplied corrections.
        """
        record = await self._require(detection_id)
        self._require_status(record, "confirmation", _S.IDENTIFIED, _S.VERIFIED)

        cleaned = {
            k: (v.strip() if isinstance(v, str) else v)
            for k, v in (edits or {}).items()
            if not (v is None or (isinstance(v, str) and not v.strip()))
        }
        core = {k: v for k, v in cleaned.items() if k in EDITABLE_CORE_FIELDS}
        extra = {k: v for k, v in cleaned.items() if k not in EDITABLE_CORE_FIELDS}
        confirmed = bool(is_correct or cleaned)

        if extra:
            category = record.category.value if record.category else None
            await metadata_store.update_attributes(detection_id, extra, category=category)
        await database.update_detection(
            detection_id,
            user_confirmed=confirmed,
            confirmed_at=utcnow(),
            error_message=None if confirmed else "Identification rejected by user",
            **core,
        )
        logger.info(
            "Detection %s confirmation: correct=%s edits=%d confirmed=%s",
            detection_id, is_correct, len(cleaned), confirmed,
        )
        return await metadata_store.get_full_record(detection_id)

    # ── Branches ──────────────────────────────────────────────────────────────

    async def _verification_branch(self, record: DetectionRecord, product: dict) -> BranchOutcome:
        t0 = time.monotonic()
        category = record.category or Category.OTHER
        try:
            data = await self.client.call_and_parse(
                verification_prompt(product, category),
                record.input_images,
                stage_options("verification"),
            )
            check = validate_verification_response(data)
            for warning in check.warnings + check.errors:
                logger.warning("Detection %s verification: %s", record.id, warning)

            await metadata_store.store_attributes(
                record.id, data, category=category.value,
                source=MetadataSource.VERIFICATION, exclude_keys=("verification_status",),
            )
            columns = verification_columns(data)
            current = await self._require(record.id)
            if current.status is _S.IDENTIFIED:
                moved = await database.transition_detection(record.id, _S.IDENTIFIED, _S.VERIFIED, **columns)
                if not moved:
                    await database.update_detection(record.id, **columns)
            else:
                await database.update_detection(record.id, **columns)
        except Exception as exc:
            message = f"Verification failed: {exc}"
            logger.error("Detection %s: %s", record.id, message)
            try:
                await database.update_detection(record.id, verification_error=message)
            except Exception as db_exc:
                logger.error("Detection %s: could not record verification error: %s", record.id, db_exc)
            return BranchOutcome(
                "verification", success=False, error=message,
                elapsed_secs=self._timed(record.id, "verification", t0),
            )

        elapsed = self._timed(record.id, "verification", t0)
        logger.info(
            "[verification] OK — detection=%s status=%s latency=%dms",
            record.id, columns["authenticity_status"], elapsed * 1000,
        )
        return BranchOutcome(
            "verification", success=True, data=data, warnings=check.warnings + check.errors,
            elapsed_secs=elapsed,
        )

    async def _pricing_branch(self, record: DetectionRecord, product: dict) -> BranchOutcome:
        t0 = time.monotonic()
        category = record.category or Category.OTHER
        try:
            outcome = await self.pricing.price(product, category)
            await self._store_pricing(record, outcome)
        except Exception as exc:
            message = f"Pricing failed: {exc}"
            logger.error("Detection %s: %s", record.id, message)
            try:
                await database.update_detection(record.id, pricing_error=message)
            except Exception as db_exc:
                logger.error("Detection %s: could not record pricing error: %s", record.id, db_exc)
            return BranchOutcome(
                "pricing", success=False, error=message,
                elapsed_secs=self._timed(record.id, "pricing", t0),
            )

        elapsed = self._timed(record.id, "pricing", t0)
        data = outcome.statistics.to_dict() if outcome.statistics else dict(outcome.estimate)
        data["strategy"] = outcome.strategy
        if not outcome.success:
            logger.warning("Detection %s pricing unsuccessful: %s", record.id, outcome.error)
            return BranchOutcome("pricing", success=False, error=outcome.error, data=data, elapsed_secs=elapsed)
        logger.info("[pricing] OK — detection=%s strategy=%s latency=%dms", record.id, outcome.strategy, elapsed * 1000)
        return BranchOutcome("pricing", success=True, data=data, elapsed_secs=elapsed)

    async def _store_pricing(self, record: DetectionRecord, outcome: PricingOutcome) -> None:
        """Pricing columns plus metadata; touches no verification column."""
        category = record.category.value if record.category else None
        extras: dict[str, Any] = {"pricing_strategy_used": outcome.strategy}
        if outcome.query:
            extras["search_query"] = outcome.query
        if outcome.items:
            extras["market_listings"] = [i.to_dict() for i in outcome.items]
        if outcome.fallback_error:
            extras["market_search_error"] = outcome.fallback_error
        if outcome.success and outcome.strategy == "model":
            extras.update(outcome.estimate)
        await metadata_store.store_attributes(
            record.id, extras, category=category, source=MetadataSource.PRICING,
        )

        columns: dict[str, Any] = {"pricing_error": None if outcome.success else outcome.error}
        if outcome.statistics is not None:
            stats = outcome.statistics
            columns.update(
                average_price=stats.average_price,
                min_price=stats.min_price,
                max_price=stats.max_price,
                currency=stats.currency,
                item_count=stats.count,
            )
        if outcome.success:
            columns["pricing_updated_at"] = utcnow()
        await database.update_detection(record.id, **columns)

    async def _confirmed_record(self, detection_id: str, stage: str) -> DetectionRecord:
        record = await self._require(detection_id)
        self._require_status(record, stage, _S.IDENTIFIED, _S.VERIFIED)
        if not record.user_confirmed:
            raise NotConfirmedError(detection_id)
        return record

    async def run_verification(self, detection_id: str) -> BranchOutcome:
        record = await self._confirmed_record(detection_id, "verification")
        product = product_details(await metadata_store.get_full_record(detection_id))
        return await self._verification_branch(record, product)

    async def run_pricing(self, detection_id: str) -> BranchOutcome:
        record = await self._confirmed_record(detection_id, "pricing")
        product = product_details(await metadata_store.get_full_record(detection_id))
        return await self._pricing_branch(record, product)

    # ── Completion ────────────────────────────────────────────────────────────

    async def complete_analysis(self, detection_id: str) -> CompletionResult:
        """
        Run verification and pricing concurrently and wait for both.
        The detection is marked completed once both have finished, whether
        they succeeded or recorded a failure.
        """
        record = await self._confirmed_record(detection_id, "completion")
        product = product_details(await metadata_store.get_full_record(detection_id))

        verification, pricing = await asyncio.gather(
            self._verification_branch(record, product),
            self._pricing_branch(record, product),
        )

        current = await self._require(detection_id)
        if not current.status.is_terminal:
            await database.transition_detection(detection_id, current.status, _S.COMPLETED)
        full = await metadata_store.get_full_record(detection_id)
        status = DetectionStatus(full["status"])

        if verification.success and pricing.success:
            logger.info("Detection %s completed", detection_id)
        else:
            logger.warning(
                "Detection %s completed with partial failure (verification=%s pricing=%s)",
                detection_id, verification.success, pricing.success,
            )

        report = build_report(
            full,
            timings=self.timings.pop(detection_id, {}),
            model_used=self._model_name(),
        )
        return CompletionResult(
            detection_id, status=status, verification=verification, pricing=pricing,
            record=full, report=report,
        )

    def _model_name(self) -> str:
        try:
            return self.client.model_name
        except RuntimeError:
            return "unknown"