"""Exam assembly: choose and vary items for one attempt.

Templates are partitioned by kind and ordered so that concepts the learner
was already tested on come last; short pools are topped up with generic
filler items built from the topic's concepts. Retries (ordinal > 1) get
rephrased prompts and shuffled choices so that a repeated concept still
reads differently. The only source of nondeterminism is the ``rng``
argument.
"""

from __future__ import annotations

import logging
import random
from typing import Collection, Iterable, List, Optional, Sequence

from concept_catalog import TopicProfile
from item_bank import ItemTemplate
from schemas import Item, ItemKind

logger = logging.getLogger(__name__)

REPHRASE_PREFIXES = (
    "Considering what you learned, ",
    "Based on the codelab exercises, ",
    "From a practical standpoint, ",
    "In a production environment, ",
)
MIN_PROMPT_CHARS = 10


def rephrase(text: str, ordinal: int) -> str:
    """Prefix ``text`` with a clause chosen by attempt ordinal."""

    if ordinal <= 1 or not text:
        return text
    prefix = REPHRASE_PREFIXES[(ordinal - 1) % len(REPHRASE_PREFIXES)]
    return prefix + text[0].lower() + text[1:]


def shuffle_choices(item: Item, rng: random.Random) -> Item:
    """Return ``item`` with its choices permuted and ``correct_index`` following the right answer."""

    order = list(range(len(item.choices)))
    rng.shuffle(order)
    return item.model_copy(
        update={
            "choices": [item.choices[idx] for idx in order],
            "correct_index": order.index(item.correct_index),
        }
    )


def filler_objective(concept: str) -> Item:
    return Item(
        kind=ItemKind.OBJECTIVE,
        concept=concept,
        prompt=f"What is the recommended approach for {concept} in this context?",
        choices=[
            "Ignore it completely",
            "Follow established best practices and documentation",
            "Use trial and error exclusively",
            "Copy solutions from unverified sources",
        ],
        correct_index=1,
    )


def filler_free_text(concept: str) -> Item:
    return Item(
        kind=ItemKind.FREE_TEXT,
        concept=concept,
        prompt=f"Describe your approach to {concept} in the codelab. What decisions did you make and why?",
        context=f"Evaluates practical experience with {concept}.",
    )


def safe_item(kind: ItemKind, profile: TopicProfile) -> Item:
    """Fallback item used when a selected item fails the relevance check."""

    topic = profile.primary_label
    if kind is ItemKind.OBJECTIVE:
        return Item(
            kind=kind,
            concept="general",
            prompt=f"Which of the following best describes a core principle of {topic}?",
            choices=[
                "It is not applicable to real-world scenarios",
                "It provides foundational capabilities for modern AI development",
                "It is only useful in academic settings",
                "It has been replaced by newer technologies",
            ],
            correct_index=1,
        )
    return Item(
        kind=kind,
        concept="general",
        prompt=(
            f"Describe your experience completing the {topic} codelab. "
            "What were the key concepts you learned and how would you apply them?"
        ),
        context=f"Evaluates practical understanding of {topic}.",
    )


def relevance_problem(item: Item, profile: TopicProfile) -> Optional[str]:
    """Return why ``item`` is unfit for ``profile``, or ``None`` when it is fine."""

    off_topic = profile.find_invalid_concept(item.prompt)
    if off_topic:
        return f"contains off-topic concept: {off_topic}"
    if len(item.prompt.strip()) < MIN_PROMPT_CHARS:
        return "prompt too short"
    if item.kind is ItemKind.OBJECTIVE and len(item.choices) < 4:
        return "insufficient choices"
    return None


def prioritize(templates: Iterable[ItemTemplate], covered: Collection[str]) -> List[ItemTemplate]:
    """Stable sort placing templates on already-covered concepts last."""

    return sorted(templates, key=lambda tpl: tpl.concept in covered)


class ItemSelector:
    def __init__(self, objective_count: int = 7, free_text_count: int = 3, shuffle_retry_choices: bool = True) -> None:
        self.objective_count = objective_count
        self.free_text_count = free_text_count
        self.shuffle_retry_choices = shuffle_retry_choices

    def select(
        self,
        profile: TopicProfile,
        templates: Sequence[ItemTemplate],
        covered_concepts: Iterable[str] = (),
        ordinal: int = 1,
        rng: Optional[random.Random] = None,
    ) -> List[Item]:
        rng = rng or random.Random()
        covered = frozenset(covered_concepts)

        objective = self._pick(profile, templates, covered, ItemKind.OBJECTIVE, self.objective_count)
        free_text = self._pick(profile, templates, covered, ItemKind.FREE_TEXT, self.free_text_count)

        items = [self._screen(item, profile) for item in objective + free_text]
        if ordinal > 1:
            items = [self._vary(item, ordinal, rng) for item in items]
        return items

    def _pick(
        self,
        profile: TopicProfile,
        templates: Sequence[ItemTemplate],
        covered: Collection[str],
        kind: ItemKind,
        count: int,
    ) -> List[Item]:
        pool = prioritize((tpl for tpl in templates if tpl.kind is kind), covered)
        selected = [tpl.to_item() for tpl in pool[:count]]
        if len(selected) < count:
            fillers = self._filler_concepts(profile, covered)
            make = filler_objective if kind is ItemKind.OBJECTIVE else filler_free_text
            logger.debug(
                "Topic '%s' has %d %s template(s); adding %d filler item(s)",
                profile.topic_id,
                len(selected),
                kind.value,
                count - len(selected),
            )
            missing = count - len(selected)
            selected.extend(make(fillers[idx % len(fillers)]) for idx in range(missing))
        return selected

    @staticmethod
    def _filler_concepts(profile: TopicProfile, covered: Collection[str]) -> List[str]:
        concepts = sorted(profile.valid_concepts, key=lambda concept: concept in covered)
        return concepts or ["general knowledge"]

    @staticmethod
    def _screen(item: Item, profile: TopicProfile) -> Item:
        problem = relevance_problem(item, profile)
        if problem is None:
            return item
        logger.warning("Item replaced for topic '%s': %s", profile.topic_id, problem)
        return safe_item(item.kind, profile)

    def _vary(self, item: Item, ordinal: int, rng: random.Random) -> Item:
        update = {"prompt": rephrase(item.prompt, ordinal)}
        if item.kind is ItemKind.FREE_TEXT:
            note = f"Attempt {ordinal}: demonstrate deeper understanding"
            update["context"] = f"{item.context} ({note})" if item.context else note
        varied = item.model_copy(update=update)
        if item.kind is ItemKind.OBJECTIVE and self.shuffle_retry_choices:
            varied = shuffle_choices(varied, rng)
        return varied
