"""
models.py — the detection record, its metadata rows, and the pipeline state machine.

A detection moves through a fixed set of statuses:

    pending → category_detected → identified → verified → completed
                                             ↘───────────↗
    failed is reachable from every non-terminal status.

Transitions are checked against TRANSITIONS; anything else raises
InvalidTransitionError instead of silently overwriting the status.
"""
from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


# ── Enums ─────────────────────────────────────────────────────────────────────

class DetectionStatus(str, Enum):
    PENDING = "pending"
    CATEGORY_DETECTED = "category_detected"
    IDENTIFIED = "identified"
    VERIFIED = "verified"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (DetectionStatus.COMPLETED, DetectionStatus.FAILED)


class Category(str, Enum):
    ELECTRONICS = "electronics"
    FASHION = "fashion"
    OTHER = "other"


class ValueType(str, Enum):
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    JSON = "json"


class MetadataSource(str, Enum):
    IDENTIFICATION = "identification"
    VERIFICATION = "verification"
    PRICING = "pricing"
    USER_EDIT = "user_edit"
    MIGRATION = "migration"


# ── State machine ─────────────────────────────────────────────────────────────

_S = DetectionStatus

TRANSITIONS: dict[DetectionStatus, frozenset[DetectionStatus]] = {
    _S.PENDING:           frozenset({_S.CATEGORY_DETECTED, _S.FAILED}),
    _S.CATEGORY_DETECTED: frozenset({_S.IDENTIFIED, _S.FAILED}),
    # identified → completed covers a run whose verification branch failed
    _S.IDENTIFIED:        frozenset({_S.VERIFIED, _S.COMPLETED, _S.FAILED}),
    _S.VERIFIED:          frozenset({_S.COMPLETED, _S.FAILED}),
    _S.COMPLETED:         frozenset(),
    _S.FAILED:            frozenset(),
}


def can_transition(current: DetectionStatus, target: DetectionStatus) -> bool:
    return DetectionStatus(target) in TRANSITIONS[DetectionStatus(current)]


def check_transition(current: DetectionStatus, target: DetectionStatus) -> None:
    """Raise InvalidTransitionError unless current → target is in the table."""
    if not can_transition(current, target):
        raise InvalidTransitionError(DetectionStatus(current), DetectionStatus(target))


# ── Errors ────────────────────────────────────────────────────────────────────

class PipelineError(Exception):
    """Base class for orchestration errors raised to the caller."""


class DetectionNotFoundError(PipelineError, LookupError):
    def __init__(self, detection_id: str) -> None:
        super().__init__(f"Detection not found: {detection_id}")
        self.detection_id = detection_id


class InvalidTransitionError(PipelineError):
    def __init__(self, current: DetectionStatus, target: DetectionStatus) -> None:
        super().__init__(f"Illegal status transition {current.value} → {target.value}")
        self.current = current
        self.target = target


class StageOrderError(PipelineError):
    """A stage was requested while the detection is in the wrong status."""

    def __init__(self, detection_id: str, stage: str, status: DetectionStatus,
                 expected: tuple[DetectionStatus, ...]) -> None:
        wanted = ", ".join(s.value for s in expected)
        super().__init__(
            f"Cannot run {stage} for {detection_id}: status is {status.value}, "
            f"expected one of [{wanted}]"
        )
        self.detection_id = detection_id
        self.stage = stage
        self.status = status


class NotConfirmedError(PipelineError):
    def __init__(self, detection_id: str) -> None:
        super().__init__(
            f"Detection {detection_id} has not been confirmed; "
            "confirm the identification before verification and pricing"
        )
        self.detection_id = detection_id


# ── Records ───────────────────────────────────────────────────────────────────

def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_detection_id() -> str:
    return str(uuid.uuid4())


# Column groups written together; each group belongs to exactly one stage.
CATEGORY_FIELDS = ("category", "category_confidence")
IDENTIFICATION_FIELDS = (
    "identified_product", "brand", "model", "color_variants", "condition_rating",
    "confidence_score", "estimated_year", "short_description",
)
VERIFICATION_FIELDS = (
    "authenticity_status", "verification_confidence", "specs_match",
    "warnings", "verification_summary", "verification_error",
)
PRICING_FIELDS = (
    "average_price", "min_price", "max_price", "currency", "item_count",
    "pricing_updated_at", "pricing_error",
)


@dataclass
class DetectionRecord:
    id: str = field(default_factory=new_detection_id)
    status: DetectionStatus = DetectionStatus.PENDING
    owner_id: Optional[str] = None          # None = anonymous run

    # category stage
    category: Optional[Category] = None
    category_confidence: Optional[float] = None

    # identification stage
    identified_product: Optional[str] = None
    brand: Optional[str] = None
    model: Optional[str] = None
    color_variants: Optional[str] = None
    condition_rating: Optional[str] = None
    confidence_score: Optional[float] = None
    estimated_year: Optional[str] = None
    short_description: Optional[str] = None

    # verification branch
    authenticity_status: Optional[str] = None
    verification_confidence: Optional[float] = None
    specs_match: Optional[bool] = None
    warnings: list[str] = field(default_factory=list)
    verification_summary: Optional[str] = None
    verification_error: Optional[str] = None

    # pricing branch
    average_price: Optional[float] = None
    min_price: Optional[float] = None
    max_price: Optional[float] = None
    currency: Optional[str] = None
    item_count: Optional[int] = None
    pricing_updated_at: Optional[datetime] = None
    pricing_error: Optional[str] = None

    # inputs and workflow
    input_images: list[str] = field(default_factory=list)   # ordered image URLs
    input_description: Optional[str] = None
    user_confirmed: bool = False
    confirmed_at: Optional[datetime] = None
    error_message: Optional[str] = None

    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def core_fields(self) -> dict[str, Any]:
        """Identification core fields plus category, as plain values."""
        data = {k: getattr(self, k) for k in CATEGORY_FIELDS + IDENTIFICATION_FIELDS}
        if self.category is not None:
            data["category"] = self.category.value
        return data

    def to_dict(self) -> dict[str, Any]:
        """JSON-friendly dict of every field (enums → values, datetimes → ISO)."""
        data = asdict(self)
        for key, value in data.items():
            if isinstance(value, Enum):
                data[key] = value.value
            elif isinstance(value, datetime):
                data[key] = value.isoformat()
        return data


@dataclass
class MetadataAttribute:
    detection_id: str
    key: str
    value: Any                      # decoded value
    value_type: ValueType
    category: Optional[str]
    source: MetadataSource
    id: Optional[int] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
