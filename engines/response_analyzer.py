"""Heuristic scoring of free-text exam answers.

The analyzer rates one answer along two axes, specificity (technical
detail, code, worked examples) and coherence (sentence structure,
paragraphs, logical connectors), and flags answers that are too short,
generic or shallow. It is pattern based and deliberately total: any input,
including ``None`` or very long strings, yields a score in ``[0, 1]``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence

from engines.rules import Rule, RuleSet, pattern_rule

MIN_WORDS = 10
BASE_SCORE = 0.2
LENGTH_BONUS_STEPS = (30, 50, 100, 150)
LENGTH_BONUS = 0.05
SPECIFICITY_WEIGHT = 0.3
COHERENCE_WEIGHT = 0.2
GENERIC_CAP = 0.2
SHALLOW_MIN_WORDS = 20
SHALLOW_SPECIFICITY = 0.3
SHALLOW_FACTOR = 0.7

DEFAULT_INDICATOR_TERMS = (
    "api", "function", "method", "class", "parameter", "variable",
    "model", "training", "data", "algorithm", "implementation",
    "code", "error", "debug", "test", "deploy", "config",
    "prompt", "response", "context", "token", "agent",
    "firebase", "google", "cloud", "sdk", "endpoint",
)

_CODE_MARKERS = re.compile(r"`[^`]+`|```[\s\S]*?```|\b\w+\(\)|import |export |const |let |var ")
_EXAMPLE_PHRASES = re.compile(
    r"step \d|first|then|next|finally|for example|such as|specifically", re.IGNORECASE
)
_SENTENCE_SPLIT = re.compile(r"[.!?]+")
_LEADING_CAPITAL = re.compile(r"[A-Z]")
_CONNECTORS = re.compile(
    r"because|therefore|however|moreover|additionally|furthermore", re.IGNORECASE
)

GENERIC_RULES = RuleSet(
    "generic-response",
    [
        pattern_rule("very-short", r"\A.{0,30}\Z", flags=0),
        pattern_rule("acknowledgement", r"\A(?:yes|no|maybe|i don't know|idk|n/a)\.?\Z"),
        pattern_rule("filler-verdict", r"it is good|it is bad|it works|i learned a lot"),
        pattern_rule("filler-disclaimer", r"\A(?:the answer is|i think)\.?\Z"),
    ],
)


@dataclass
class ResponseAnalysis:
    score: float
    flags: List[str] = field(default_factory=list)
    word_count: int = 0
    specificity: float = 0.0
    coherence: float = 0.0
    analysis: str = ""


def _clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return min(max(value, low), high)


class ResponseAnalyzer:
    """Score a single free-text response."""

    def __init__(
        self,
        indicator_terms: Optional[Iterable[str]] = None,
        generic_rules: Optional[RuleSet] = None,
    ) -> None:
        terms = indicator_terms if indicator_terms is not None else DEFAULT_INDICATOR_TERMS
        self.indicator_terms: Sequence[str] = tuple(term.lower() for term in terms)
        self.generic_rules = generic_rules if generic_rules is not None else GENERIC_RULES

    def analyze(self, text: Optional[str]) -> ResponseAnalysis:
        text = text if isinstance(text, str) else ""
        word_count = len(text.split())
        if word_count < MIN_WORDS:
            flags = ["too-short"]
            return ResponseAnalysis(0.0, flags, word_count, analysis=self.describe(0.0, flags))

        flags: List[str] = []
        score = BASE_SCORE
        score += LENGTH_BONUS * sum(1 for step in LENGTH_BONUS_STEPS if word_count >= step)

        specificity = self.specificity(text)
        coherence = self.coherence(text)
        score += specificity * SPECIFICITY_WEIGHT
        score += coherence * COHERENCE_WEIGHT

        if self.is_generic(text):
            flags.append("generic")
            score = min(score, GENERIC_CAP)

        if word_count >= SHALLOW_MIN_WORDS and specificity < SHALLOW_SPECIFICITY:
            flags.append("shallow")
            score *= SHALLOW_FACTOR

        score = _clamp(score)
        return ResponseAnalysis(score, flags, word_count, specificity, coherence, self.describe(score, flags))

    def specificity(self, text: str) -> float:
        """Technical detail in ``[0, 1]``: indicator terms, code, enumerations."""

        lower = text.lower()
        found = sum(1 for term in self.indicator_terms if term in lower)
        score = min(found / 5, 1.0) * 0.5
        if _CODE_MARKERS.search(text):
            score += 0.3
        if _EXAMPLE_PHRASES.search(text):
            score += 0.2
        return min(score, 1.0)

    @staticmethod
    def coherence(text: str) -> float:
        score = 0.0
        sentences = [s for s in _SENTENCE_SPLIT.split(text) if len(s.strip()) > 5]
        if len(sentences) >= 2:
            score += 0.3
        if len(sentences) >= 4:
            score += 0.2
        if _LEADING_CAPITAL.match(text.strip()):
            score += 0.1
        if "\n" in text:
            score += 0.2
        if _CONNECTORS.search(text):
            score += 0.2
        return min(score, 1.0)

    def is_generic(self, text: str) -> bool:
        return self.generic_rules.any_match(text)

    def generic_matches(self, text: str) -> List[Rule]:
        return self.generic_rules.matching(text if isinstance(text, str) else "")

    @staticmethod
    def describe(score: float, flags: Sequence[str]) -> str:
        """Human-readable summary of an analysis."""

        if score >= 0.8:
            return "Excellent response demonstrating deep understanding"
        if score >= 0.6:
            return "Good response with adequate detail"
        if score >= 0.4:
            return "Acceptable response but could include more specifics"
        if "generic" in flags:
            return "Response is too generic; provide specific details"
        if "too-short" in flags:
            return "Response is too short to evaluate"
        if "shallow" in flags:
            return "Response lacks depth; demonstrate deeper understanding"
        return "Insufficient response; more detail and specificity needed"
