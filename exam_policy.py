"""Exam policy configuration: item counts, point budget and thresholds."""

from __future__ import annotations

from dataclasses import dataclass

from env_validation import get_env_bool, get_env_int


class PolicyConfigError(ValueError):
    """Raised when the configured exam policy is internally inconsistent."""


@dataclass(frozen=True)
class ExamPolicy:
    """Recognised exam options.

    Parameters
    ----------
    objective_count / free_text_count:
        Number of multiple-choice and free-text items issued per attempt.
    point_budget:
        Score scale of the attempt; each section is scaled to it and the
        total averages the two sections.
    max_attempts:
        Attempt ceiling per enrollment.
    passing_score / certification_score:
        Thresholds on the total; certification is the higher bar.
    lock_flag_threshold:
        Integrity flags per attempt that force a zero score and lock the enrollment.
    shuffle_retry_choices:
        Shuffle objective choices on retries.
    """

    objective_count: int = 7
    free_text_count: int = 3
    point_budget: int = 10
    max_attempts: int = 2
    passing_score: int = 6
    certification_score: int = 7
    lock_flag_threshold: int = 2
    shuffle_retry_choices: bool = True

    def __post_init__(self) -> None:
        if self.objective_count < 0 or self.free_text_count < 0:
            raise PolicyConfigError("item counts cannot be negative")
        if self.objective_count + self.free_text_count == 0:
            raise PolicyConfigError("an exam needs at least one item")
        if self.point_budget <= 0:
            raise PolicyConfigError("point_budget must be positive")
        if self.max_attempts < 1:
            raise PolicyConfigError("max_attempts must be at least 1")
        if not 0 <= self.passing_score <= self.point_budget:
            raise PolicyConfigError("passing_score must lie within the point budget")
        if not self.passing_score <= self.certification_score <= self.point_budget:
            raise PolicyConfigError(
                "certification_score must lie between passing_score and the point budget"
            )
        if self.lock_flag_threshold < 1:
            raise PolicyConfigError("lock_flag_threshold must be at least 1")

    @property
    def item_count(self) -> int:
        return self.objective_count + self.free_text_count

    @classmethod
    def from_env(cls) -> "ExamPolicy":
        defaults = cls()
        return cls(
            objective_count=get_env_int("EXAM_OBJECTIVE_COUNT", defaults.objective_count),
            free_text_count=get_env_int("EXAM_FREE_TEXT_COUNT", defaults.free_text_count),
            point_budget=get_env_int("EXAM_POINT_BUDGET", defaults.point_budget),
            max_attempts=get_env_int("EXAM_MAX_ATTEMPTS", defaults.max_attempts),
            passing_score=get_env_int("EXAM_PASSING_SCORE", defaults.passing_score),
            certification_score=get_env_int("EXAM_CERTIFICATION_SCORE", defaults.certification_score),
            lock_flag_threshold=get_env_int("EXAM_LOCK_FLAG_THRESHOLD", defaults.lock_flag_threshold),
            shuffle_retry_choices=get_env_bool("EXAM_SHUFFLE_RETRY_CHOICES", defaults.shuffle_retry_choices),
        )
