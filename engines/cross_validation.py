"""Consistency audit of aggregated scores.

The validator re-reads the raw responses against the topic's concept
catalog and corrects scores that are internally inconsistent: an objective
correct count above the item count, or a free-text score that disagrees
sharply with the concepts the answer actually mentions. Corrections are
reported as flags and logged; they are expected adjustments, not errors.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Sequence

from concept_catalog import TopicProfile
from engines.scoring import ScoreAggregator, ScoreBreakdown
from schemas import FreeTextSection, ObjectiveSection, Response

logger = logging.getLogger(__name__)

CONCEPT_BONUS_STEPS = (3, 5)
CONCEPT_BONUS = 0.1
SHORT_ANSWER_CHARS = 50
SHORT_ANSWER_SUSPICIOUS_SCORE = 0.6
SHORT_ANSWER_CAP = 0.4
MAX_DISAGREEMENT = 0.3

OBJECTIVE_CLAMPED = "objective-clamped"
SCORE_ADJUSTED = "score-adjusted"


def expected_score(original: float, concept_count: int, text_length: int) -> float:
    """Score the answer 'should' have given its concept coverage and length."""

    adjusted = original
    adjusted += CONCEPT_BONUS * sum(1 for step in CONCEPT_BONUS_STEPS if concept_count >= step)
    if text_length < SHORT_ANSWER_CHARS and original > SHORT_ANSWER_SUSPICIOUS_SCORE:
        adjusted = min(adjusted, SHORT_ANSWER_CAP)
    return min(max(adjusted, 0.0), 1.0)


class CrossValidator:
    def __init__(self, aggregator: Optional[ScoreAggregator] = None) -> None:
        self.aggregator = aggregator or ScoreAggregator()

    def validate(
        self,
        breakdown: ScoreBreakdown,
        profile: TopicProfile,
        responses: Sequence[Response],
    ) -> ScoreBreakdown:
        """Return a corrected copy of ``breakdown``; the input is left untouched."""

        flags: List[str] = list(breakdown.correction_flags)
        objective = self._check_objective(breakdown.objective, flags)
        free_text = self._check_free_text(breakdown.free_text, profile, responses, flags)

        corrected = self.aggregator.combine(objective, free_text)
        corrected.correction_flags = flags
        if corrected.total_score != breakdown.total_score:
            logger.info(
                "Cross-validation changed total score from %d to %d (%s)",
                breakdown.total_score,
                corrected.total_score,
                ", ".join(flags),
            )
        return corrected

    @staticmethod
    def _check_objective(section: ObjectiveSection, flags: List[str]) -> ObjectiveSection:
        if section.correct <= section.total:
            return section.model_copy(deep=True)
        logger.warning(
            "Objective correct count %d exceeds total %d; clamping", section.correct, section.total
        )
        flags.append(OBJECTIVE_CLAMPED)
        return section.model_copy(update={"correct": section.total}, deep=True)

    def _check_free_text(
        self,
        section: FreeTextSection,
        profile: TopicProfile,
        responses: Sequence[Response],
        flags: List[str],
    ) -> FreeTextSection:
        texts: Dict[int, str] = {response.item_index: response.text or "" for response in responses}
        evaluations = []
        for evaluation in section.evaluations:
            text = texts.get(evaluation.item_index, "")
            original = evaluation.score
            adjusted = expected_score(original, profile.count_valid_concepts(text), len(text))
            if abs(adjusted - original) > MAX_DISAGREEMENT:
                midpoint = (original + adjusted) / 2
                logger.info(
                    "Free-text item %d score adjusted for consistency: %.2f -> %.2f",
                    evaluation.item_index,
                    original,
                    midpoint,
                )
                evaluation = evaluation.model_copy(
                    update={"score": midpoint, "flags": [*evaluation.flags, SCORE_ADJUSTED]}
                )
                if SCORE_ADJUSTED not in flags:
                    flags.append(SCORE_ADJUSTED)
            evaluations.append(evaluation)
        return FreeTextSection(
            evaluations=evaluations,
            average_score=self.aggregator.average(evaluations),
        )
