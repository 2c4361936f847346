import pytest

from engines.scoring import ScoreAggregator, round_half_up
from schemas import FreeTextEvaluation, FreeTextSection, Item, ItemKind, ObjectiveSection, Response


def _objective(correct_index=1):
    return Item(
        kind=ItemKind.OBJECTIVE,
        concept="bias",
        prompt="Which statement about bias is correct?",
        choices=["a", "b", "c", "d"],
        correct_index=correct_index,
    )


def _free():
    return Item(kind=ItemKind.FREE_TEXT, concept="overfitting", prompt="Explain overfitting in practice.")


@pytest.mark.parametrize("value, expected", [(0.0, 0), (2.5, 3), (4.49, 4), (7.5, 8), (9.5, 10), (10.0, 10)])
def test_round_half_up(value, expected):
    assert round_half_up(value) == expected


def test_objective_grading_requires_exact_match():
    aggregator = ScoreAggregator()
    items = [_objective(1), _objective(2), _objective(0)]
    responses = [
        Response(item_index=0, kind=ItemKind.OBJECTIVE, selected_index=1),
        Response(item_index=1, kind=ItemKind.OBJECTIVE, selected_index=0),
        Response(item_index=2, kind=ItemKind.OBJECTIVE, selected_index=None),
    ]

    section = aggregator.grade_objective(items, responses)

    assert section.correct == 1
    assert section.total == 3
    assert [detail.correct for detail in section.details] == [True, False, False]


def test_free_text_section_averages_evaluations():
    aggregator = ScoreAggregator()
    items = [_objective(), _free(), _free()]
    responses = [
        Response(item_index=0, kind=ItemKind.OBJECTIVE, selected_index=1),
        Response(item_index=1, kind=ItemKind.FREE_TEXT, text="I don't know"),
        Response(item_index=2, kind=ItemKind.FREE_TEXT, text=None),
    ]

    section = aggregator.evaluate_free_text(items, responses)

    assert [evaluation.item_index for evaluation in section.evaluations] == [1, 2]
    assert section.average_score == 0.0
    assert all(evaluation.flags == ["too-short"] for evaluation in section.evaluations)


def test_combine_splits_budget_evenly():
    aggregator = ScoreAggregator(point_budget=10)
    objective = ObjectiveSection(correct=5, total=7)
    free_text = FreeTextSection(
        evaluations=[FreeTextEvaluation(item_index=7, score=0.45)],
        average_score=0.45,
    )

    breakdown = aggregator.combine(objective, free_text)

    # 5/7 -> 7.14 -> 7 points; 0.45 -> 4.5 -> 5 points; (7 + 5) / 2 = 6
    assert breakdown.objective_points == 7
    assert breakdown.free_text_points == 5
    assert breakdown.total_score == 6


def test_total_rounds_half_up():
    aggregator = ScoreAggregator()
    assert aggregator.total(10, 7) == 9
    assert aggregator.total(0, 1) == 1


def test_section_points_clamps_ratio():
    aggregator = ScoreAggregator(point_budget=20)
    assert aggregator.section_points(1.7) == 20
    assert aggregator.section_points(-0.2) == 0


def test_empty_sections_score_zero():
    aggregator = ScoreAggregator()
    breakdown = aggregator.combine(ObjectiveSection(), FreeTextSection())
    assert breakdown.total_score == 0
