"""Per-topic item templates for exam assembly."""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

from concept_catalog import TopicProfile
from schemas import Item, ItemKind

logger = logging.getLogger(__name__)


class ItemValidationError(ValueError):
    """Raised when an item template from the JSON bank fails validation."""


@dataclass(frozen=True)
class ItemTemplate:
    """A bank entry from which exam items are issued."""

    id: str
    topic_id: str
    kind: ItemKind
    concept: str
    prompt: str
    choices: Tuple[str, ...] = field(default_factory=tuple)
    correct_index: Optional[int] = None
    context: Optional[str] = None

    def to_item(self) -> Item:
        return Item(
            kind=self.kind,
            concept=self.concept,
            prompt=self.prompt,
            choices=list(self.choices),
            correct_index=self.correct_index,
            context=self.context,
            template_id=self.id,
        )


class ItemBank:
    """Helper for loading and validating objective and free-text item templates."""

    REQUIRED_FIELDS = ("id", "topic_id", "kind", "concept", "prompt")
    MIN_CHOICES = 4

    def __init__(self, path: str | Path | None = None) -> None:
        base_path = Path(__file__).resolve().parent
        self.path = Path(path) if path is not None else base_path / "data" / "items.json"
        self._templates: List[ItemTemplate] = []
        self._load()

    # ------------------------------------------------------------------
    # loading & validation
    # ------------------------------------------------------------------
    def _load(self) -> None:
        if not self.path.exists():
            raise FileNotFoundError(f"Item bank file not found: {self.path}")

        with self.path.open("r", encoding="utf-8") as fh:
            raw = json.load(fh)

        if not isinstance(raw, list):
            raise ItemValidationError("Item bank root must be a JSON list")

        templates: List[ItemTemplate] = []
        seen_ids: set[str] = set()
        for entry in raw:
            templates.append(self._parse_entry(entry, seen_ids))
        self._templates = templates

    @classmethod
    def _parse_entry(cls, entry: Any, seen_ids: set[str]) -> ItemTemplate:
        if not isinstance(entry, dict):
            raise ItemValidationError("Each item must be an object")

        for name in cls.REQUIRED_FIELDS:
            if name not in entry or entry[name] in (None, ""):
                raise ItemValidationError(f"Item {entry.get('id')} missing required field '{name}'")

        item_id = str(entry["id"])
        if item_id in seen_ids:
            raise ItemValidationError(f"Duplicate item id detected: {item_id}")
        seen_ids.add(item_id)

        try:
            kind = ItemKind(entry["kind"])
        except ValueError as exc:
            raise ItemValidationError(f"Item {item_id} has unknown kind '{entry['kind']}'") from exc

        choices: Tuple[str, ...] = ()
        correct_index: Optional[int] = None
        if kind is ItemKind.OBJECTIVE:
            raw_choices = entry.get("choices")
            if not isinstance(raw_choices, list) or len(raw_choices) < cls.MIN_CHOICES:
                raise ItemValidationError(
                    f"Item {item_id} must provide at least {cls.MIN_CHOICES} choices"
                )
            choices = tuple(str(choice) for choice in raw_choices)
            if any(not choice.strip() for choice in choices):
                raise ItemValidationError(f"Item {item_id} has an empty choice")
            try:
                correct_index = int(entry.get("correct_index"))
            except (TypeError, ValueError) as exc:
                raise ItemValidationError(f"Item {item_id} correct_index must be an integer") from exc
            if not 0 <= correct_index < len(choices):
                raise ItemValidationError(f"Item {item_id} correct_index is out of range")

        context = entry.get("context")
        return ItemTemplate(
            id=item_id,
            topic_id=str(entry["topic_id"]),
            kind=kind,
            concept=str(entry["concept"]).strip(),
            prompt=str(entry["prompt"]).strip(),
            choices=choices,
            correct_index=correct_index,
            context=str(context) if context else None,
        )

    @property
    def templates(self) -> List[ItemTemplate]:
        return list(self._templates)

    # ------------------------------------------------------------------
    # lookup helpers
    # ------------------------------------------------------------------
    def filter_templates(
        self,
        *,
        topic_id: Optional[str] = None,
        kind: Optional[ItemKind] = None,
        concept: Optional[str] = None,
    ) -> List[ItemTemplate]:
        results = self._templates
        if topic_id:
            results = [tpl for tpl in results if tpl.topic_id == topic_id]
        if kind:
            results = [tpl for tpl in results if tpl.kind is kind]
        if concept:
            results = [tpl for tpl in results if tpl.concept == concept]
        return list(results)

    def templates_for(self, profile: TopicProfile) -> List[ItemTemplate]:
        """Return the topic's templates, generating a concept-driven pool when the bank has none."""

        templates = self.filter_templates(topic_id=profile.topic_id)
        if templates:
            return templates
        logger.info("No bank templates for topic '%s'; generating from concepts", profile.topic_id)
        return self.dynamic_templates(profile)

    @staticmethod
    def dynamic_templates(profile: TopicProfile) -> List[ItemTemplate]:
        concepts = list(profile.valid_concepts)
        templates: List[ItemTemplate] = []
        for idx, concept in enumerate(concepts[:9], start=1):
            templates.append(
                ItemTemplate(
                    id=f"{profile.topic_id}-dyn-obj-{idx:03d}",
                    topic_id=profile.topic_id,
                    kind=ItemKind.OBJECTIVE,
                    concept=concept,
                    prompt=f"Which statement about {concept} in this module is most accurate?",
                    choices=(
                        f"{concept} is only relevant for advanced use cases",
                        f"Proper understanding of {concept} is essential for implementation",
                        f"{concept} can be safely ignored in production",
                        f"{concept} is automatically handled by the framework",
                    ),
                    correct_index=1,
                )
            )
        for idx, concept in enumerate(concepts[:4], start=1):
            templates.append(
                ItemTemplate(
                    id=f"{profile.topic_id}-dyn-free-{idx:03d}",
                    topic_id=profile.topic_id,
                    kind=ItemKind.FREE_TEXT,
                    concept=concept,
                    prompt=(
                        f"Explain how {concept} applies to the codelab you completed. "
                        "Provide specific examples from your implementation."
                    ),
                    context=f"This question assesses practical understanding of {concept}.",
                )
            )
        return templates

    # ------------------------------------------------------------------
    # alternative constructors
    # ------------------------------------------------------------------
    @classmethod
    def from_entries(cls, entries: Sequence[Dict[str, Any]]) -> "ItemBank":
        bank = cls.__new__(cls)
        bank.path = Path("<in-memory>")
        seen: set[str] = set()
        bank._templates = [cls._parse_entry(entry, seen) for entry in entries]
        return bank
