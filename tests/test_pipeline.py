import random

import pytest

import pipeline
from engines.attempt_state import AttemptAlreadyGraded, AttemptNotEligible, IneligibilityReason
from engines.validation import AttemptShapeInvalid
from schemas import AttemptState, IntegrityRecommendation, ItemKind, Response

STRONG_ANSWER = (
    "I trained a small classification model on labelled training data. First I split the data "
    "into a training set and a test set, then I tracked accuracy and recall on each epoch. "
    "Because the validation loss started rising after epoch six, I added dropout and early "
    "stopping to reduce overfitting. For example, calling `model.fit()` with a callback stopped "
    "training at the best checkpoint."
)
AI_STYLED = (
    "As an AI, I don't have personal experience with this codelab, but it's important to note "
    "that in conclusion we should leverage the model."
)


def _answer(attempt, *, choose=lambda item: item.correct_index, text=STRONG_ANSWER):
    for idx, item in enumerate(attempt.items):
        if item.kind is ItemKind.OBJECTIVE:
            response = Response(item_index=idx, kind=item.kind, selected_index=choose(item))
        else:
            response = Response(item_index=idx, kind=item.kind, text=text(idx) if callable(text) else text)
        attempt = pipeline.record_response(attempt, idx, response)
    return attempt


def _start(enrollment, catalog, bank, policy, previous=()):
    return pipeline.start_attempt(enrollment, previous, catalog=catalog, bank=bank, policy=policy, rng=random.Random(3))


def _grade(attempt, enrollment, catalog, policy):
    return pipeline.grade_attempt(attempt, catalog.get(attempt.topic_id), enrollment, policy=policy)


def test_select_items_for_unknown_topic_uses_default_concepts(catalog, bank, policy):
    items = pipeline.select_items("unheard-of", [], 1, catalog=catalog, bank=bank, policy=policy)

    default_concepts = set(catalog.default.valid_concepts)
    assert len(items) == policy.item_count
    assert {item.concept for item in items} <= default_concepts


def test_strong_attempt_certifies(catalog, bank, policy, eligible_enrollment):
    enrollment, attempt = _start(eligible_enrollment, catalog, bank, policy)
    outcome = _grade(_answer(attempt), enrollment, catalog, policy)

    assert outcome.objective_score == 10
    assert outcome.free_text_score == 8
    assert outcome.total_score == 9
    assert outcome.integrity_flags == 0
    assert outcome.recommendation is IntegrityRecommendation.CLEAN
    assert outcome.newly_certified
    assert outcome.certification_id and outcome.certification_id.startswith("SC-")
    assert outcome.new_state is AttemptState.CERTIFIED
    assert outcome.attempt.state is AttemptState.COMPLETED
    assert outcome.attempt.total_score == 9


def test_i_dont_know_scores_zero_without_flags(catalog, bank, policy, eligible_enrollment):
    enrollment, attempt = _start(eligible_enrollment, catalog, bank, policy)
    outcome = _grade(_answer(attempt, choose=lambda item: None, text="I don't know"), enrollment, catalog, policy)

    assert outcome.total_score == 0
    assert outcome.integrity_flags == 0
    evaluations = outcome.attempt.free_text_result.evaluations
    assert all(evaluation.score == 0.0 and "too-short" in evaluation.flags for evaluation in evaluations)


def test_wrong_choices_earn_nothing(catalog, bank, policy, eligible_enrollment):
    enrollment, attempt = _start(eligible_enrollment, catalog, bank, policy)
    wrong = lambda item: (item.correct_index + 1) % len(item.choices)
    outcome = _grade(_answer(attempt, choose=wrong, text="I don't know"), enrollment, catalog, policy)

    assert outcome.attempt.objective_result.correct == 0
    assert outcome.objective_score == 0


def test_third_start_is_rejected(catalog, bank, policy, eligible_enrollment):
    enrollment, first = _start(eligible_enrollment, catalog, bank, policy)
    graded = _grade(_answer(first, text="I don't know"), enrollment, catalog, policy)
    enrollment, second = _start(graded.enrollment, catalog, bank, policy, [graded.attempt])
    assert second.ordinal == 2

    with pytest.raises(AttemptNotEligible) as excinfo:
        _start(enrollment, catalog, bank, policy, [graded.attempt, second])
    assert excinfo.value.reason is IneligibilityReason.MAX_ATTEMPTS


def test_second_start_waits_for_open_attempt(catalog, bank, policy, eligible_enrollment):
    enrollment, first = _start(eligible_enrollment, catalog, bank, policy)

    with pytest.raises(AttemptNotEligible) as excinfo:
        _start(enrollment, catalog, bank, policy, [first])
    assert excinfo.value.reason is IneligibilityReason.ATTEMPT_IN_PROGRESS


def test_second_attempt_prefers_new_concepts(catalog, bank, policy, eligible_enrollment):
    enrollment, first = _start(eligible_enrollment, catalog, bank, policy)
    graded = _grade(_answer(first, text="I don't know"), enrollment, catalog, policy)
    _, second = _start(graded.enrollment, catalog, bank, policy, [graded.attempt])

    assert [item.concept for item in second.items[:2]] == ["classification", "regression"]
    assert second.items[0].prompt != first.items[0].prompt


def test_attempt_graded_after_lock_scores_zero(catalog, bank, policy, eligible_enrollment):
    enrollment, attempt = _start(eligible_enrollment, catalog, bank, policy)
    locked = enrollment.model_copy(update={"locked": True})

    outcome = _grade(_answer(attempt), locked, catalog, policy)

    assert outcome.total_score == 0
    assert outcome.attempt.total_score == 0
    assert outcome.certification_id is None
    assert not outcome.certified
    assert outcome.best_score == 0
    assert outcome.enrollment.locked
    assert outcome.new_state is AttemptState.LOCKED


def test_ai_flagged_attempt_is_zeroed_and_locked(catalog, bank, policy, eligible_enrollment):
    enrollment, attempt = _start(eligible_enrollment, catalog, bank, policy)
    texts = {7: AI_STYLED, 8: AI_STYLED, 9: STRONG_ANSWER}
    outcome = _grade(_answer(attempt, text=lambda idx: texts[idx]), enrollment, catalog, policy)

    assert outcome.integrity_flags == 2
    assert outcome.recommendation is IntegrityRecommendation.ZERO
    assert outcome.total_score == 0
    assert outcome.new_state is AttemptState.LOCKED
    assert outcome.enrollment.locked
    assert not outcome.certified


def test_best_score_is_kept_across_attempts(catalog, bank, policy, eligible_enrollment):
    enrollment, attempt = _start(eligible_enrollment, catalog, bank, policy)
    first = _grade(_answer(attempt, text="I don't know"), enrollment, catalog, policy)
    assert first.total_score == 5
    assert not first.certified

    enrollment, retry = _start(first.enrollment, catalog, bank, policy, [first.attempt])
    second = _grade(_answer(retry, choose=lambda item: None, text="I don't know"), enrollment, catalog, policy)

    assert second.total_score == 0
    assert second.best_score == 5
    assert second.enrollment.best_score == 5
    assert second.new_state is AttemptState.NOT_ELIGIBLE


def test_record_response_replaces_previous_answer(catalog, bank, policy, eligible_enrollment):
    _, attempt = _start(eligible_enrollment, catalog, bank, policy)
    attempt = pipeline.record_response(attempt, 0, Response(item_index=0, kind=ItemKind.OBJECTIVE, selected_index=3))
    attempt = pipeline.record_response(attempt, 0, Response(item_index=0, kind=ItemKind.OBJECTIVE, selected_index=1))

    assert len(attempt.responses) == 1
    assert attempt.responses[0].selected_index == 1


def test_record_response_rejects_mismatched_kind(catalog, bank, policy, eligible_enrollment):
    _, attempt = _start(eligible_enrollment, catalog, bank, policy)
    with pytest.raises(AttemptShapeInvalid):
        pipeline.record_response(attempt, 0, Response(item_index=0, kind=ItemKind.FREE_TEXT, text="hello"))
    with pytest.raises(AttemptShapeInvalid):
        pipeline.record_response(attempt, 0, Response(item_index=0, kind=ItemKind.OBJECTIVE, selected_index=9))


def test_incomplete_attempt_cannot_be_graded(catalog, bank, policy, eligible_enrollment):
    enrollment, attempt = _start(eligible_enrollment, catalog, bank, policy)
    attempt = pipeline.record_response(attempt, 0, Response(item_index=0, kind=ItemKind.OBJECTIVE, selected_index=0))

    with pytest.raises(AttemptShapeInvalid):
        _grade(attempt, enrollment, catalog, policy)


def test_graded_attempt_cannot_be_regraded(catalog, bank, policy, eligible_enrollment):
    enrollment, attempt = _start(eligible_enrollment, catalog, bank, policy)
    outcome = _grade(_answer(attempt), enrollment, catalog, policy)

    with pytest.raises(AttemptAlreadyGraded):
        _grade(outcome.attempt, outcome.enrollment, catalog, policy)


def test_cumulative_best_score(eligible_enrollment):
    other = eligible_enrollment.model_copy(update={"topic_id": "prompt-engineering", "best_score": 4})
    scored = eligible_enrollment.model_copy(update={"best_score": 7})
    assert pipeline.cumulative_best_score([scored, other]) == 11
    assert pipeline.cumulative_best_score([]) == 0
