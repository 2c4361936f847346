"""Exam pipeline: item selection, response recording and grading.

These are the operations the session layer calls. They are in-process,
synchronous compositions of the engines and never touch storage; callers
persist the records they return.
"""

from __future__ import annotations

import logging
import random
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Sequence, Tuple

from concept_catalog import ConceptCatalog, TopicProfile
from engines.attempt_state import AttemptAlreadyGraded, AttemptStateMachine
from engines.cross_validation import CrossValidator
from engines.integrity import IntegrityDetector
from engines.item_selector import ItemSelector
from engines.scoring import ScoreAggregator
from engines.validation import AttemptShapeInvalid, validate_attempt_shape, validate_response_for_item
from exam_policy import ExamPolicy
from item_bank import ItemBank
from schemas import (
    AttemptRecord,
    AttemptState,
    EnrollmentRecord,
    GradedOutcome,
    Item,
    Response,
)

logger = logging.getLogger(__name__)


def select_items(
    topic_id: str,
    covered_concepts: Iterable[str],
    attempt_ordinal: int,
    *,
    catalog: ConceptCatalog,
    bank: ItemBank,
    policy: Optional[ExamPolicy] = None,
    rng: Optional[random.Random] = None,
) -> List[Item]:
    """Build the ordered item list for a new attempt on ``topic_id``."""

    policy = policy or ExamPolicy()
    profile = catalog.get(topic_id)
    selector = ItemSelector(policy.objective_count, policy.free_text_count, policy.shuffle_retry_choices)
    return selector.select(profile, bank.templates_for(profile), covered_concepts, attempt_ordinal, rng)


def covered_concepts(attempts: Iterable[AttemptRecord]) -> List[str]:
    """Concepts already tested across ``attempts``, in first-seen order."""

    concepts: List[str] = []
    for attempt in attempts:
        for concept in attempt.concepts():
            if concept not in concepts:
                concepts.append(concept)
    return concepts


def start_attempt(
    enrollment: EnrollmentRecord,
    previous_attempts: Sequence[AttemptRecord] = (),
    *,
    catalog: ConceptCatalog,
    bank: ItemBank,
    policy: Optional[ExamPolicy] = None,
    rng: Optional[random.Random] = None,
) -> Tuple[EnrollmentRecord, AttemptRecord]:
    """Authorize a start and assemble its items.

    Raises ``AttemptNotEligible`` on policy rejection, including while an
    earlier attempt in ``previous_attempts`` is still in progress. The
    returned enrollment carries the incremented attempt counter.
    """

    policy = policy or ExamPolicy()
    updated = AttemptStateMachine(policy).start(enrollment, previous_attempts)
    items = select_items(
        enrollment.topic_id,
        covered_concepts(previous_attempts),
        updated.attempt_count,
        catalog=catalog,
        bank=bank,
        policy=policy,
        rng=rng,
    )
    attempt = AttemptRecord(
        learner_id=enrollment.learner_id,
        topic_id=enrollment.topic_id,
        ordinal=updated.attempt_count,
        items=items,
    )
    logger.info(
        "Attempt %s started for %s/%s (ordinal %d, %d items)",
        attempt.attempt_id,
        enrollment.learner_id,
        enrollment.topic_id,
        attempt.ordinal,
        len(items),
    )
    return updated, attempt


def record_response(attempt: AttemptRecord, item_index: int, response: Response) -> AttemptRecord:
    """Return a copy of ``attempt`` holding ``response`` for ``item_index``.

    A later response for the same item replaces the earlier one.
    """

    if attempt.state is not AttemptState.IN_PROGRESS:
        raise AttemptAlreadyGraded(f"Attempt {attempt.attempt_id} is {attempt.state.value}")
    if not 0 <= item_index < len(attempt.items):
        raise AttemptShapeInvalid(f"Item index {item_index} is out of range")
    item = attempt.items[item_index]
    if response.kind is not item.kind:
        raise AttemptShapeInvalid(
            f"Item {item_index} is {item.kind.value} but the response is {response.kind.value}"
        )
    if response.item_index != item_index:
        response = response.model_copy(update={"item_index": item_index})
    validate_response_for_item(item, response)

    responses = [existing for existing in attempt.responses if existing.item_index != item_index]
    responses.append(response)
    responses.sort(key=lambda entry: entry.item_index)
    return attempt.model_copy(update={"responses": responses})


def grade_attempt(
    attempt: AttemptRecord,
    topic_profile: TopicProfile,
    enrollment: EnrollmentRecord,
    *,
    policy: Optional[ExamPolicy] = None,
    aggregator: Optional[ScoreAggregator] = None,
    detector: Optional[IntegrityDetector] = None,
) -> GradedOutcome:
    """Score, audit and record the outcome of a finished attempt.

    Raises ``AttemptShapeInvalid`` when responses do not line up with
    items and ``AttemptAlreadyGraded`` when the attempt is not in progress.
    """

    policy = policy or ExamPolicy()
    if attempt.state is not AttemptState.IN_PROGRESS:
        raise AttemptAlreadyGraded(f"Attempt {attempt.attempt_id} is {attempt.state.value}")
    validate_attempt_shape(attempt.items, attempt.responses)

    aggregator = aggregator or ScoreAggregator(point_budget=policy.point_budget)
    detector = detector or IntegrityDetector(lock_threshold=policy.lock_flag_threshold)

    raw = aggregator.aggregate(attempt.items, attempt.responses)
    verified = CrossValidator(aggregator).validate(raw, topic_profile, attempt.responses)
    integrity = detector.assess_attempt(attempt.items, attempt.responses)

    machine = AttemptStateMachine(policy)
    updated_enrollment, decision = machine.complete(
        enrollment, attempt, verified.total_score, integrity.recommendation
    )

    graded = attempt.model_copy(
        update={
            "state": AttemptState.COMPLETED,
            "objective_result": verified.objective,
            "free_text_result": verified.free_text,
            "objective_score": verified.objective_points,
            "free_text_score": verified.free_text_points,
            "total_score": decision.total_score,
            "integrity_flags": integrity.flag_count,
            "integrity": integrity,
            "correction_flags": verified.correction_flags,
            "completed_at": datetime.now(timezone.utc),
        }
    )
    logger.info(
        "Attempt %s graded: total=%d objective=%d free_text=%d flags=%d state=%s",
        attempt.attempt_id,
        decision.total_score,
        verified.objective_points,
        verified.free_text_points,
        integrity.flag_count,
        decision.new_state.value,
    )

    return GradedOutcome(
        attempt_id=attempt.attempt_id,
        total_score=decision.total_score,
        objective_score=verified.objective_points,
        free_text_score=verified.free_text_points,
        integrity_flags=integrity.flag_count,
        recommendation=integrity.recommendation,
        new_state=decision.new_state,
        certified=decision.certified,
        newly_certified=decision.newly_certified,
        passed=decision.passed,
        best_score=decision.best_score,
        certification_id=updated_enrollment.certification_id,
        correction_flags=verified.correction_flags,
        attempt=graded,
        enrollment=updated_enrollment,
    )


def cumulative_best_score(enrollments: Iterable[EnrollmentRecord]) -> int:
    """Cross-topic total used for ranking: the sum of per-topic best scores."""

    return sum(enrollment.best_score for enrollment in enrollments)
