"""Section and total scoring for a completed attempt."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from engines.response_analyzer import ResponseAnalyzer
from schemas import (
    FreeTextEvaluation,
    FreeTextSection,
    Item,
    ItemKind,
    ObjectiveItemResult,
    ObjectiveSection,
    Response,
)


def round_half_up(value: float) -> int:
    """Round to the nearest whole point, halves going up."""

    return int(math.floor(value + 0.5))


@dataclass
class ScoreBreakdown:
    objective: ObjectiveSection
    free_text: FreeTextSection
    objective_points: int
    free_text_points: int
    total_score: int
    correction_flags: List[str] = field(default_factory=list)


class ScoreAggregator:
    """Combine objective grading and free-text analysis on a fixed point budget.

    Each section is scaled to ``point_budget`` and rounded to a whole
    point; the total is the rounded mean of the two, i.e. an even split.
    """

    def __init__(self, analyzer: Optional[ResponseAnalyzer] = None, point_budget: int = 10) -> None:
        self.analyzer = analyzer or ResponseAnalyzer()
        self.point_budget = point_budget

    def grade_objective(self, items: Sequence[Item], responses: Sequence[Response]) -> ObjectiveSection:
        details: List[ObjectiveItemResult] = []
        for item, response in zip(items, responses):
            if item.kind is not ItemKind.OBJECTIVE:
                continue
            selected = response.selected_index
            details.append(
                ObjectiveItemResult(
                    item_index=response.item_index,
                    selected_index=selected,
                    correct_index=item.correct_index,
                    correct=selected is not None and selected == item.correct_index,
                )
            )
        return ObjectiveSection(
            correct=sum(1 for detail in details if detail.correct),
            total=len(details),
            details=details,
        )

    def evaluate_free_text(self, items: Sequence[Item], responses: Sequence[Response]) -> FreeTextSection:
        evaluations: List[FreeTextEvaluation] = []
        for item, response in zip(items, responses):
            if item.kind is not ItemKind.FREE_TEXT:
                continue
            result = self.analyzer.analyze(response.text)
            evaluations.append(
                FreeTextEvaluation(
                    item_index=response.item_index,
                    score=result.score,
                    flags=result.flags,
                    word_count=result.word_count,
                    specificity=result.specificity,
                    coherence=result.coherence,
                    analysis=result.analysis,
                )
            )
        return FreeTextSection(evaluations=evaluations, average_score=self.average(evaluations))

    @staticmethod
    def average(evaluations: Sequence[FreeTextEvaluation]) -> float:
        if not evaluations:
            return 0.0
        return sum(evaluation.score for evaluation in evaluations) / len(evaluations)

    def section_points(self, ratio: float) -> int:
        return round_half_up(min(max(ratio, 0.0), 1.0) * self.point_budget)

    def objective_points(self, section: ObjectiveSection) -> int:
        return self.section_points(section.correct / max(section.total, 1))

    def total(self, objective_points: int, free_text_points: int) -> int:
        return round_half_up((objective_points + free_text_points) / 2)

    def combine(self, objective: ObjectiveSection, free_text: FreeTextSection) -> ScoreBreakdown:
        objective_points = self.objective_points(objective)
        free_text_points = self.section_points(free_text.average_score)
        return ScoreBreakdown(
            objective=objective,
            free_text=free_text,
            objective_points=objective_points,
            free_text_points=free_text_points,
            total_score=self.total(objective_points, free_text_points),
        )

    def aggregate(self, items: Sequence[Item], responses: Sequence[Response]) -> ScoreBreakdown:
        return self.combine(
            self.grade_objective(items, responses),
            self.evaluate_free_text(items, responses),
        )
