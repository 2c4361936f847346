"""Topic concept catalog loader."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterator, List, Sequence, Tuple

logger = logging.getLogger(__name__)


class CatalogConfigError(ValueError):
    """Raised when ``concept_catalog.json`` contains invalid data."""


@dataclass(frozen=True)
class TopicProfile:
    """Immutable reference data for one topic area."""

    topic_id: str
    valid_concepts: Tuple[str, ...]
    invalid_concepts: Tuple[str, ...]
    key_topics: Tuple[str, ...]

    @property
    def primary_label(self) -> str:
        return self.key_topics[0]

    def count_valid_concepts(self, text: str) -> int:
        """Return how many distinct valid concepts occur in ``text`` (case-insensitive)."""

        lower = (text or "").lower()
        return sum(1 for concept in self.valid_concepts if concept.lower() in lower)

    def find_invalid_concept(self, text: str) -> str | None:
        lower = (text or "").lower()
        for concept in self.invalid_concepts:
            if concept.lower() in lower:
                return concept
        return None


def _string_tuple(value: object, *, field: str, topic_id: str) -> Tuple[str, ...]:
    if not isinstance(value, list):
        raise CatalogConfigError(f"Topic {topic_id} field '{field}' must be a list")
    result: List[str] = []
    for entry in value:
        text = str(entry).strip()
        if not text:
            raise CatalogConfigError(f"Topic {topic_id} field '{field}' contains an empty entry")
        if text not in result:
            result.append(text)
    return tuple(result)


class ConceptCatalog:
    """Load topic profiles from ``data/concept_catalog.json``.

    Unknown topic ids resolve to the designated default profile so item
    generation never fails because of missing catalog data.
    """

    def __init__(self, path: str | Path | None = None) -> None:
        base_path = Path(__file__).resolve().parent
        self.path = Path(path) if path is not None else base_path / "data" / "concept_catalog.json"
        self._profiles: Dict[str, TopicProfile] = {}
        self._default_id = ""
        self.reload()

    # ------------------------------------------------------------------
    def reload(self) -> None:
        """Reload topic profiles from disk and validate the structure."""

        if not self.path.exists():
            raise FileNotFoundError(f"Concept catalog file not found: {self.path}")

        with self.path.open("r", encoding="utf-8") as fh:
            raw = json.load(fh)

        if not isinstance(raw, dict) or not isinstance(raw.get("topics"), list):
            raise CatalogConfigError("Concept catalog must be an object with a 'topics' list")

        profiles: Dict[str, TopicProfile] = {}
        for idx, entry in enumerate(raw["topics"], start=1):
            if not isinstance(entry, dict):
                raise CatalogConfigError(f"Topic #{idx} must be a JSON object")
            topic_id = str(entry.get("id") or "").strip()
            if not topic_id:
                raise CatalogConfigError(f"Topic #{idx} is missing a non-empty 'id'")
            if topic_id in profiles:
                raise CatalogConfigError(f"Duplicate topic id detected: {topic_id}")

            valid = _string_tuple(entry.get("valid_concepts", []), field="valid_concepts", topic_id=topic_id)
            invalid = _string_tuple(entry.get("invalid_concepts", []), field="invalid_concepts", topic_id=topic_id)
            labels = _string_tuple(entry.get("key_topics", []), field="key_topics", topic_id=topic_id)
            if not valid:
                raise CatalogConfigError(f"Topic {topic_id} must define at least one valid concept")
            if not 1 <= len(labels) <= 3:
                raise CatalogConfigError(f"Topic {topic_id} must define between 1 and 3 key topics")
            overlap = {c.lower() for c in valid} & {c.lower() for c in invalid}
            if overlap:
                raise CatalogConfigError(
                    f"Topic {topic_id} lists concepts as both valid and invalid: {', '.join(sorted(overlap))}"
                )

            profiles[topic_id] = TopicProfile(topic_id, valid, invalid, labels)

        if not profiles:
            raise CatalogConfigError("Concept catalog may not be empty")

        default_id = str(raw.get("default_topic") or "").strip()
        if default_id not in profiles:
            raise CatalogConfigError(f"Default topic '{default_id}' is not defined in the catalog")

        self._profiles = profiles
        self._default_id = default_id

    # ------------------------------------------------------------------
    @property
    def default(self) -> TopicProfile:
        return self._profiles[self._default_id]

    def topic_ids(self) -> Sequence[str]:
        return tuple(self._profiles)

    def get(self, topic_id: str) -> TopicProfile:
        """Return the profile for ``topic_id``, falling back to the default profile."""

        profile = self._profiles.get(topic_id)
        if profile is None:
            logger.warning("Unknown topic '%s'; using default profile '%s'", topic_id, self._default_id)
            return self.default
        return profile

    def __contains__(self, topic_id: object) -> bool:
        return topic_id in self._profiles

    def __iter__(self) -> Iterator[TopicProfile]:
        return iter(self._profiles.values())

    def __len__(self) -> int:
        return len(self._profiles)
