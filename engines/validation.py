"""Validation utilities for attempt records handed to grading."""

from typing import Sequence

from schemas import Item, ItemKind, Response

class ValidationError(Exception):
    """Base class for validation errors."""
    pass

class AttemptShapeInvalid(ValidationError):
    """Raised when an attempt's responses do not line up with its items.

    This signals a caller bug upstream of grading, never a learner-input issue.
    """
    pass

def validate_attempt_shape(items: Sequence[Item], responses: Sequence[Response]) -> None:
    """Validate that every item has exactly one well-formed response.

    Raises AttemptShapeInvalid if validation fails.
    """
    if not items:
        raise AttemptShapeInvalid("Attempt has no items")
    if len(responses) != len(items):
        raise AttemptShapeInvalid(
            f"Response count {len(responses)} does not match item count {len(items)}"
        )

    for position, (item, response) in enumerate(zip(items, responses)):
        if response.item_index != position:
            raise AttemptShapeInvalid(
                f"Response at position {position} answers item {response.item_index}"
            )
        if response.kind is not item.kind:
            raise AttemptShapeInvalid(
                f"Item {position} is {item.kind.value} but the response is {response.kind.value}"
            )
        validate_response_for_item(item, response)

def validate_response_for_item(item: Item, response: Response) -> None:
    """Validate a single response payload against the item it answers."""
    if item.kind is ItemKind.OBJECTIVE:
        if response.text:
            raise AttemptShapeInvalid(f"Objective item {response.item_index} received free text")
        selected = response.selected_index
        # A missing selection is a timed-out answer and grades as incorrect.
        if selected is not None and not 0 <= selected < len(item.choices):
            raise AttemptShapeInvalid(
                f"Choice index {selected} is out of range for item {response.item_index} "
                f"({len(item.choices)} choices)"
            )
    elif response.selected_index is not None:
        raise AttemptShapeInvalid(f"Free-text item {response.item_index} received a choice index")

def validate_score_range(score: float, *, upper: float = 1.0, label: str = "score") -> None:
    if not (0 <= score <= upper):
        raise ValidationError(f"{label} must be between 0 and {upper}")
