"""Pydantic schemas for exam items, attempts, enrollments and graded outcomes."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, model_validator

__all__ = [
    "ItemKind",
    "AttemptState",
    "IntegrityRecommendation",
    "Item",
    "Response",
    "ObjectiveItemResult",
    "ObjectiveSection",
    "FreeTextEvaluation",
    "FreeTextSection",
    "IntegrityFlag",
    "IntegritySummary",
    "AttemptRecord",
    "EnrollmentRecord",
    "GradedOutcome",
]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ItemKind(str, Enum):
    OBJECTIVE = "objective"
    FREE_TEXT = "freeText"


class AttemptState(str, Enum):
    """Lifecycle states shared by attempts and enrollments."""

    NOT_ELIGIBLE = "NotEligible"
    ELIGIBLE = "Eligible"
    IN_PROGRESS = "InProgress"
    COMPLETED = "Completed"
    LOCKED = "Locked"
    CERTIFIED = "Certified"


class IntegrityRecommendation(str, Enum):
    CLEAN = "clean"
    WARNING = "warning"
    ZERO = "zero"


class Item(BaseModel):
    """One exam question as issued to an attempt."""

    model_config = ConfigDict(frozen=True)

    kind: ItemKind
    concept: str
    prompt: str
    choices: List[str] = Field(default_factory=list)
    correct_index: Optional[int] = None
    context: Optional[str] = Field(
        default=None,
        description="Evaluator note describing what a free-text item is meant to assess.",
    )
    template_id: Optional[str] = Field(
        default=None,
        description="Identifier of the bank template the item was built from; None for fillers.",
    )

    @model_validator(mode="after")
    def _check_choices(self) -> "Item":
        if self.kind is ItemKind.OBJECTIVE:
            if len(self.choices) < 4:
                raise ValueError("objective items need at least four choices")
            if self.correct_index is None or not 0 <= self.correct_index < len(self.choices):
                raise ValueError("correct_index must point into choices")
        return self


class Response(BaseModel):
    """A learner answer to the item at ``item_index``.

    Timed-out items are submitted with neither ``text`` nor ``selected_index``.
    """

    item_index: int = Field(ge=0)
    kind: ItemKind
    text: Optional[str] = None
    selected_index: Optional[int] = None
    submitted_at: datetime = Field(default_factory=_utcnow)


class ObjectiveItemResult(BaseModel):
    item_index: int
    selected_index: Optional[int] = None
    correct_index: int
    correct: bool


class ObjectiveSection(BaseModel):
    correct: int = 0
    total: int = 0
    details: List[ObjectiveItemResult] = Field(default_factory=list)


class FreeTextEvaluation(BaseModel):
    item_index: int
    score: float = Field(ge=0.0, le=1.0)
    flags: List[str] = Field(default_factory=list)
    word_count: int = 0
    specificity: float = 0.0
    coherence: float = 0.0
    analysis: str = ""


class FreeTextSection(BaseModel):
    evaluations: List[FreeTextEvaluation] = Field(default_factory=list)
    average_score: float = 0.0


class IntegrityFlag(BaseModel):
    item_index: int
    kind: str = Field(description="Either 'ai-likelihood' or 'copy-paste'.")
    confidence: Optional[float] = None
    indicators: List[str] = Field(default_factory=list)


class IntegritySummary(BaseModel):
    flag_count: int = 0
    flagged: List[IntegrityFlag] = Field(default_factory=list)
    recommendation: IntegrityRecommendation = IntegrityRecommendation.CLEAN


class AttemptRecord(BaseModel):
    attempt_id: str = Field(default_factory=lambda: uuid4().hex)
    learner_id: str
    topic_id: str
    ordinal: int = Field(default=1, ge=1)
    items: List[Item] = Field(default_factory=list)
    responses: List[Response] = Field(default_factory=list)
    state: AttemptState = AttemptState.IN_PROGRESS
    objective_result: Optional[ObjectiveSection] = None
    free_text_result: Optional[FreeTextSection] = None
    objective_score: Optional[int] = None
    free_text_score: Optional[int] = None
    total_score: Optional[int] = None
    integrity_flags: int = 0
    integrity: Optional[IntegritySummary] = None
    correction_flags: List[str] = Field(default_factory=list)
    started_at: datetime = Field(default_factory=_utcnow)
    completed_at: Optional[datetime] = None

    def concepts(self) -> List[str]:
        """Return the concepts tested by this attempt in item order, without repeats."""

        seen: List[str] = []
        for item in self.items:
            if item.concept not in seen:
                seen.append(item.concept)
        return seen


class EnrollmentRecord(BaseModel):
    learner_id: str
    topic_id: str
    proof_validated: bool = False
    attempt_count: int = Field(default=0, ge=0)
    best_score: int = Field(default=0, ge=0)
    locked: bool = False
    certification_id: Optional[str] = None
    certified_at: Optional[datetime] = None
    updated_at: datetime = Field(default_factory=_utcnow)


class GradedOutcome(BaseModel):
    attempt_id: str
    total_score: int
    objective_score: int
    free_text_score: int
    integrity_flags: int
    recommendation: IntegrityRecommendation
    new_state: AttemptState
    certified: bool
    newly_certified: bool = False
    passed: bool = False
    best_score: int
    certification_id: Optional[str] = None
    correction_flags: List[str] = Field(default_factory=list)
    attempt: AttemptRecord
    enrollment: EnrollmentRecord
