import pytest

from engines.cross_validation import (
    OBJECTIVE_CLAMPED,
    SCORE_ADJUSTED,
    CrossValidator,
    expected_score,
)
from engines.scoring import ScoreAggregator
from schemas import FreeTextEvaluation, FreeTextSection, ItemKind, ObjectiveSection, Response


def _free_section(*scores):
    evaluations = [FreeTextEvaluation(item_index=idx, score=score) for idx, score in enumerate(scores)]
    return FreeTextSection(evaluations=evaluations, average_score=sum(scores) / len(scores))


def _responses(*texts):
    return [Response(item_index=idx, kind=ItemKind.FREE_TEXT, text=text) for idx, text in enumerate(texts)]


@pytest.mark.parametrize(
    "original, concepts, length, expected",
    [
        (0.5, 0, 200, 0.5),
        (0.5, 3, 200, 0.6),
        (0.5, 5, 200, 0.7),
        (0.95, 5, 200, 1.0),
        (0.9, 0, 20, 0.4),
        (0.5, 0, 20, 0.5),
    ],
)
def test_expected_score(original, concepts, length, expected):
    assert expected_score(original, concepts, length) == pytest.approx(expected)


def test_consistent_scores_pass_unchanged(catalog):
    aggregator = ScoreAggregator()
    validator = CrossValidator(aggregator)
    breakdown = aggregator.combine(ObjectiveSection(correct=6, total=7), _free_section(0.5))
    text = "We discussed overfitting at length and how a held-out split exposes it in practice."

    corrected = validator.validate(breakdown, catalog.get("intro-ai-fundamentals"), _responses(text))

    assert corrected.correction_flags == []
    assert corrected.total_score == breakdown.total_score
    assert corrected.free_text.evaluations[0].score == 0.5


def test_short_answer_with_high_score_is_pulled_to_midpoint(catalog):
    aggregator = ScoreAggregator()
    breakdown = aggregator.combine(ObjectiveSection(correct=7, total=7), _free_section(0.9))

    corrected = CrossValidator(aggregator).validate(
        breakdown, catalog.get("intro-ai-fundamentals"), _responses("Bias matters.")
    )

    evaluation = corrected.free_text.evaluations[0]
    assert evaluation.score == pytest.approx(0.65)
    assert SCORE_ADJUSTED in evaluation.flags
    assert corrected.correction_flags == [SCORE_ADJUSTED]
    assert corrected.free_text_points == 7
    assert breakdown.free_text.evaluations[0].score == 0.9


def test_each_evaluation_reads_its_own_response(catalog):
    aggregator = ScoreAggregator()
    long_text = (
        "Supervised learning, regression, classification, overfitting and gradient descent all came "
        "up when I tuned the training loop for the codelab project."
    )
    breakdown = aggregator.combine(ObjectiveSection(correct=0, total=0), _free_section(0.1, 0.9))

    corrected = CrossValidator(aggregator).validate(
        breakdown, catalog.get("intro-ai-fundamentals"), _responses(long_text, "ok fine")
    )

    first, second = corrected.free_text.evaluations
    assert first.score == 0.1
    assert second.score == pytest.approx(0.65)


def test_objective_overcount_is_clamped(catalog):
    aggregator = ScoreAggregator()
    breakdown = aggregator.combine(ObjectiveSection(correct=9, total=7), _free_section(0.0))

    corrected = CrossValidator(aggregator).validate(breakdown, catalog.get("intro-ai-fundamentals"), _responses(""))

    assert corrected.objective.correct == 7
    assert corrected.objective_points == 10
    assert OBJECTIVE_CLAMPED in corrected.correction_flags
    assert breakdown.objective.correct == 9
