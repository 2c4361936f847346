"""Detection of likely non-original free-text answers.

Two independent checks run on every free-text response:

* AI-likelihood: stock phrasings typical of generated text each add a
  fixed confidence increment; a uniformly sophisticated vocabulary and the
  absence of hand-typing artifacts add smaller increments. The response is
  flagged once accumulated confidence reaches :data:`AI_VERDICT_THRESHOLD`.
* Copy-paste: tab runs, triple newlines, URLs or copyright boilerplate.

Each positive verdict is one integrity flag. Flags are indicators, not
proof; the per-attempt recommendation decides whether the attempt is
zeroed.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from engines.rules import RuleSet, pattern_rule
from schemas import (
    IntegrityFlag,
    IntegrityRecommendation,
    IntegritySummary,
    Item,
    ItemKind,
    Response,
)

logger = logging.getLogger(__name__)

AI_PHRASE_WEIGHT = 0.15
VOCABULARY_UNIFORMITY_BONUS = 0.1
LONG_WORD_LENGTH = 8
LONG_WORD_RATIO = 0.3
CLEAN_TEXT_BONUS = 0.05
CLEAN_TEXT_MIN_WORDS = 50
AI_VERDICT_THRESHOLD = 0.3

AI_PHRASE_RULES = RuleSet(
    "ai-phrasing",
    [
        pattern_rule("as-an-ai", r"as an ai", weight=AI_PHRASE_WEIGHT),
        pattern_rule("no-personal", r"i don't have personal", weight=AI_PHRASE_WEIGHT),
        pattern_rule("important-to-note", r"it's important to note", weight=AI_PHRASE_WEIGHT),
        pattern_rule("in-conclusion", r"in conclusion", weight=AI_PHRASE_WEIGHT),
        pattern_rule("worth-mentioning", r"it is worth mentioning", weight=AI_PHRASE_WEIGHT),
        pattern_rule("certainly", r"certainly!?\s", weight=AI_PHRASE_WEIGHT),
        pattern_rule("absolutely", r"absolutely!?\s", weight=AI_PHRASE_WEIGHT),
        pattern_rule("great-question", r"great question", weight=AI_PHRASE_WEIGHT),
        pattern_rule("let-me-explain", r"let me explain", weight=AI_PHRASE_WEIGHT),
        pattern_rule(
            "comprehensive-overview",
            r"here'?s? (?:a|an) (?:comprehensive|detailed) (?:overview|explanation)",
            weight=AI_PHRASE_WEIGHT,
        ),
        pattern_rule(
            "several-factors",
            r"there are several (?:key|important) (?:factors|aspects|considerations)",
            weight=AI_PHRASE_WEIGHT,
        ),
        pattern_rule("ordinal-enumeration", r"(?:firstly|secondly|thirdly|finally),?\s", weight=AI_PHRASE_WEIGHT),
        pattern_rule("delve-into", r"delve into", weight=AI_PHRASE_WEIGHT),
        pattern_rule("crucial-to", r"it's crucial to", weight=AI_PHRASE_WEIGHT),
        pattern_rule("leverage", r"leverage", weight=AI_PHRASE_WEIGHT),
        pattern_rule("utilize", r"utilize", weight=AI_PHRASE_WEIGHT),
    ],
)

COPY_PASTE_RULES = RuleSet(
    "copy-paste",
    [
        pattern_rule("tab-run", r"\t{2,}", flags=0),
        pattern_rule("blank-line-run", r"\n{3,}", flags=0),
        pattern_rule("url", r"https?://\S+"),
        pattern_rule("copyright", r"copyright|©|all rights reserved"),
    ],
)

# Irregular casing ("wOrd") or a double space mid-sentence: traces of hand typing.
_TYPING_ARTIFACTS = re.compile(r"[a-z]{2,}[A-Z]|[^.!?]\s{2,}[a-z]")


@dataclass
class AIVerdict:
    likely_non_original: bool
    confidence: float
    indicators: List[str] = field(default_factory=list)


@dataclass
class IntegrityVerdict:
    ai: AIVerdict
    copy_paste: bool
    copy_paste_indicators: List[str] = field(default_factory=list)

    @property
    def flag_count(self) -> int:
        return int(self.ai.likely_non_original) + int(self.copy_paste)


def recommend(flag_count: int, lock_threshold: int = 2) -> IntegrityRecommendation:
    """Map a per-attempt flag count onto the zero/warning/clean recommendation."""

    if flag_count >= lock_threshold:
        return IntegrityRecommendation.ZERO
    if flag_count >= 1:
        return IntegrityRecommendation.WARNING
    return IntegrityRecommendation.CLEAN


class IntegrityDetector:
    def __init__(
        self,
        ai_rules: Optional[RuleSet] = None,
        copy_paste_rules: Optional[RuleSet] = None,
        verdict_threshold: float = AI_VERDICT_THRESHOLD,
        lock_threshold: int = 2,
    ) -> None:
        self.ai_rules = ai_rules if ai_rules is not None else AI_PHRASE_RULES
        self.copy_paste_rules = copy_paste_rules if copy_paste_rules is not None else COPY_PASTE_RULES
        self.verdict_threshold = verdict_threshold
        self.lock_threshold = lock_threshold

    def analyze_ai(self, text: Optional[str]) -> AIVerdict:
        text = text if isinstance(text, str) else ""
        confidence, indicators = self.ai_rules.score(text)

        words = text.split()
        long_words = [word for word in words if len(word) > LONG_WORD_LENGTH]
        if len(long_words) / max(len(words), 1) > LONG_WORD_RATIO:
            confidence += VOCABULARY_UNIFORMITY_BONUS
            indicators.append("high-vocabulary-uniformity")

        if len(words) > CLEAN_TEXT_MIN_WORDS and not _TYPING_ARTIFACTS.search(text):
            confidence += CLEAN_TEXT_BONUS
            indicators.append("no-typing-artifacts")

        # Round away float drift so 0.15 + 0.15 lands on the threshold.
        confidence = round(confidence, 6)
        return AIVerdict(
            likely_non_original=confidence >= self.verdict_threshold,
            confidence=min(confidence, 1.0),
            indicators=indicators,
        )

    def copy_paste_indicators(self, text: Optional[str]) -> List[str]:
        text = text if isinstance(text, str) else ""
        return [rule.name for rule in self.copy_paste_rules.matching(text)]

    def detect_copy_paste(self, text: Optional[str]) -> bool:
        return bool(self.copy_paste_indicators(text))

    def inspect(self, text: Optional[str]) -> IntegrityVerdict:
        paste_indicators = self.copy_paste_indicators(text)
        return IntegrityVerdict(self.analyze_ai(text), bool(paste_indicators), paste_indicators)

    def assess_attempt(self, items: Sequence[Item], responses: Sequence[Response]) -> IntegritySummary:
        """Count AI-likelihood and copy-paste verdicts over the free-text responses."""

        flagged: List[IntegrityFlag] = []
        for item, response in zip(items, responses):
            if item.kind is not ItemKind.FREE_TEXT:
                continue
            verdict = self.inspect(response.text)
            if verdict.ai.likely_non_original:
                flagged.append(
                    IntegrityFlag(
                        item_index=response.item_index,
                        kind="ai-likelihood",
                        confidence=verdict.ai.confidence,
                        indicators=verdict.ai.indicators,
                    )
                )
            if verdict.copy_paste:
                flagged.append(
                    IntegrityFlag(
                        item_index=response.item_index,
                        kind="copy-paste",
                        indicators=verdict.copy_paste_indicators,
                    )
                )

        flag_count = len(flagged)
        recommendation = recommend(flag_count, self.lock_threshold)
        if flagged:
            logger.info(
                "Integrity flags raised on %d response(s): %d flag(s), recommendation=%s",
                len({flag.item_index for flag in flagged}),
                flag_count,
                recommendation.value,
            )
        return IntegritySummary(flag_count=flag_count, flagged=flagged, recommendation=recommendation)
