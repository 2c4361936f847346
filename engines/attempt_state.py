"""Attempt lifecycle and enrollment policy.

States
------
``NotEligible``  no validated proof of prerequisite work, or attempts used up
``Eligible``     may start an attempt
``InProgress``   attempt started, responses accumulating
``Completed``    attempt graded (terminal for grading)
``Locked``       integrity policy zeroed an attempt; blocked until cleared externally
``Certified``    best score reached the certification threshold

The machine never mutates its inputs: every transition returns updated
copies of the enrollment/attempt records for the caller to persist.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Iterable, Optional, Tuple
from uuid import uuid4

from engines.validation import validate_score_range
from exam_policy import ExamPolicy
from schemas import AttemptRecord, AttemptState, EnrollmentRecord, IntegrityRecommendation

logger = logging.getLogger(__name__)

CERTIFICATION_PREFIX = "SC"


class IneligibilityReason(str, Enum):
    NO_PROOF = "no-proof"
    LOCKED = "locked"
    MAX_ATTEMPTS = "max-attempts"
    ALREADY_CERTIFIED = "already-certified"
    ATTEMPT_IN_PROGRESS = "attempt-in-progress"


class AttemptNotEligible(Exception):
    """Policy rejection of an attempt start."""

    def __init__(self, reason: IneligibilityReason, message: Optional[str] = None) -> None:
        self.reason = reason
        super().__init__(message or f"Attempt not permitted: {reason.value}")


class AttemptAlreadyGraded(Exception):
    """Raised when grading is requested for an attempt that is no longer in progress."""


def mint_certification_id() -> str:
    return f"{CERTIFICATION_PREFIX}-{uuid4().hex[:8].upper()}"


@dataclass
class CompletionDecision:
    total_score: int
    locked: bool
    certified: bool
    newly_certified: bool
    passed: bool
    best_score: int
    new_state: AttemptState


class AttemptStateMachine:
    def __init__(self, policy: Optional[ExamPolicy] = None) -> None:
        self.policy = policy or ExamPolicy()

    # ------------------------------------------------------------------
    # eligibility
    # ------------------------------------------------------------------
    def ineligibility(self, enrollment: EnrollmentRecord) -> Optional[IneligibilityReason]:
        """Return why a new attempt may not start, or ``None`` when it may."""

        if not enrollment.proof_validated:
            return IneligibilityReason.NO_PROOF
        if enrollment.locked:
            return IneligibilityReason.LOCKED
        if enrollment.attempt_count >= self.policy.max_attempts:
            return IneligibilityReason.MAX_ATTEMPTS
        if enrollment.certification_id:
            return IneligibilityReason.ALREADY_CERTIFIED
        return None

    def enrollment_state(self, enrollment: EnrollmentRecord) -> AttemptState:
        if enrollment.locked:
            return AttemptState.LOCKED
        if enrollment.certification_id:
            return AttemptState.CERTIFIED
        if self.ineligibility(enrollment) is None:
            return AttemptState.ELIGIBLE
        return AttemptState.NOT_ELIGIBLE

    def check_eligibility(self, enrollment: EnrollmentRecord) -> None:
        reason = self.ineligibility(enrollment)
        if reason is not None:
            raise AttemptNotEligible(reason)

    # ------------------------------------------------------------------
    # transitions
    # ------------------------------------------------------------------
    def validate_proof(self, enrollment: EnrollmentRecord, approved: bool = True) -> EnrollmentRecord:
        """NotEligible -> Eligible once prerequisite proof is approved."""

        return enrollment.model_copy(
            update={"proof_validated": bool(approved), "updated_at": datetime.now(timezone.utc)}
        )

    def start(
        self, enrollment: EnrollmentRecord, previous_attempts: Iterable[AttemptRecord] = ()
    ) -> EnrollmentRecord:
        """Eligible -> InProgress; consumes one attempt from the ceiling.

        Only one attempt per enrollment may be in progress at a time. The
        caller must apply the returned record atomically with the
        eligibility read it was derived from.
        """

        self.check_eligibility(enrollment)
        for attempt in previous_attempts:
            if attempt.state is AttemptState.IN_PROGRESS:
                raise AttemptNotEligible(
                    IneligibilityReason.ATTEMPT_IN_PROGRESS,
                    f"Attempt {attempt.attempt_id} is still in progress",
                )
        return enrollment.model_copy(
            update={
                "attempt_count": enrollment.attempt_count + 1,
                "updated_at": datetime.now(timezone.utc),
            }
        )

    def complete(
        self,
        enrollment: EnrollmentRecord,
        attempt: AttemptRecord,
        computed_total: int,
        recommendation: IntegrityRecommendation,
    ) -> Tuple[EnrollmentRecord, CompletionDecision]:
        """InProgress -> Completed, then Locked / Certified / Eligible / NotEligible.

        An enrollment that is already locked scores the attempt as zero and
        stays locked; only ``clear_lock`` lifts it.
        """

        if attempt.state is not AttemptState.IN_PROGRESS:
            raise AttemptAlreadyGraded(f"Attempt {attempt.attempt_id} is {attempt.state.value}")
        validate_score_range(computed_total, upper=self.policy.point_budget, label="total score")

        locked = enrollment.locked or recommendation is IntegrityRecommendation.ZERO
        total = 0 if locked else computed_total
        best = max(enrollment.best_score, total)
        now = datetime.now(timezone.utc)
        update = {"best_score": best, "updated_at": now}

        if enrollment.locked:
            logger.warning(
                "Attempt %s graded on locked enrollment %s/%s: total forced to zero",
                attempt.attempt_id,
                enrollment.learner_id,
                enrollment.topic_id,
            )
        elif locked:
            update["locked"] = True
            logger.warning(
                "Enrollment %s/%s locked after attempt %s: integrity recommendation is zero",
                enrollment.learner_id,
                enrollment.topic_id,
                attempt.attempt_id,
            )

        newly_certified = False
        if enrollment.certification_id is None and not locked and best >= self.policy.certification_score:
            update["certification_id"] = mint_certification_id()
            update["certified_at"] = now
            newly_certified = True

        updated = enrollment.model_copy(update=update)
        if newly_certified:
            logger.info(
                "Certification %s issued to %s for %s (best score %d)",
                updated.certification_id,
                updated.learner_id,
                updated.topic_id,
                best,
            )

        decision = CompletionDecision(
            total_score=total,
            locked=locked,
            certified=updated.certification_id is not None,
            newly_certified=newly_certified,
            passed=total >= self.policy.passing_score,
            best_score=best,
            new_state=self.enrollment_state(updated),
        )
        return updated, decision

    def clear_lock(self, enrollment: EnrollmentRecord) -> EnrollmentRecord:
        """External override: lift a lock and restore the full attempt allowance."""

        return enrollment.model_copy(
            update={"locked": False, "attempt_count": 0, "updated_at": datetime.now(timezone.utc)}
        )
