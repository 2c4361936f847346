"""Named, weighted rule sets for the text heuristics.

Each detector keeps its patterns in a :class:`RuleSet` (an ordered list of
predicate/weight pairs) so rules can be added and tested without touching
the scoring control flow, and so accumulated confidence can be traced back
to the rules that produced it.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, Iterable, Iterator, List, Sequence, Tuple

Predicate = Callable[[str], bool]


@dataclass(frozen=True)
class Rule:
    name: str
    predicate: Predicate
    weight: float = 1.0

    def matches(self, text: str) -> bool:
        return bool(self.predicate(text))


def pattern_rule(name: str, pattern: str, *, weight: float = 1.0, flags: int = re.IGNORECASE) -> Rule:
    """Build a rule that fires when ``pattern`` is found anywhere in the text."""

    compiled = re.compile(pattern, flags)
    return Rule(name, lambda text: compiled.search(text) is not None, weight)


class RuleSet:
    """Ordered, immutable collection of :class:`Rule` objects."""

    def __init__(self, name: str, rules: Iterable[Rule] = ()) -> None:
        self.name = name
        self._rules: Tuple[Rule, ...] = tuple(rules)
        names = [rule.name for rule in self._rules]
        if len(names) != len(set(names)):
            raise ValueError(f"Rule set '{name}' contains duplicate rule names")

    def extend(self, rules: Iterable[Rule]) -> "RuleSet":
        return RuleSet(self.name, (*self._rules, *rules))

    def matching(self, text: str) -> List[Rule]:
        return [rule for rule in self._rules if rule.matches(text)]

    def any_match(self, text: str) -> bool:
        return any(rule.matches(text) for rule in self._rules)

    def score(self, text: str) -> Tuple[float, List[str]]:
        """Return the summed weight of matching rules and their names, in rule order."""

        matched = self.matching(text)
        return sum(rule.weight for rule in matched), [rule.name for rule in matched]

    @property
    def names(self) -> Sequence[str]:
        return tuple(rule.name for rule in self._rules)

    def __iter__(self) -> Iterator[Rule]:
        return iter(self._rules)

    def __len__(self) -> int:
        return len(self._rules)
