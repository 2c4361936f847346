"""Environment variable validation and management."""

import os
import logging
from typing import Dict, Optional

logger = logging.getLogger(__name__)

class EnvironmentError(Exception):
    """Raised when required environment variables are missing or invalid."""
    pass

# Integer exam settings and the lowest value each may take.
EXAM_INT_VARS: Dict[str, int] = {
    "EXAM_OBJECTIVE_COUNT": 0,
    "EXAM_FREE_TEXT_COUNT": 0,
    "EXAM_POINT_BUDGET": 1,
    "EXAM_MAX_ATTEMPTS": 1,
    "EXAM_PASSING_SCORE": 0,
    "EXAM_CERTIFICATION_SCORE": 0,
    "EXAM_LOCK_FLAG_THRESHOLD": 1,
}

def validate_environment() -> None:
    """Validate exam and storage environment variables.

    Raises EnvironmentError if validation fails.
    """
    defaults = {
        "DB_PATH": os.getenv("DB_PATH") or "data.db",
    }

    # Apply defaults before validation so dependent modules see consistent values.
    for var, value in defaults.items():
        if not os.getenv(var):
            os.environ[var] = value
            logger.info("Environment variable %s not set; using default '%s'", var, value)

    optional_vars = {
        "EXAM_CATALOG_PATH": "Path to the topic concept catalog JSON",
        "EXAM_ITEM_BANK_PATH": "Path to the item bank JSON",
    }

    invalid = []
    for var, minimum in EXAM_INT_VARS.items():
        value = os.getenv(var)
        if value is None or value == "":
            continue
        try:
            parsed = int(value)
        except ValueError:
            invalid.append(f"{var}={value!r} (not an integer)")
            continue
        if parsed < minimum:
            invalid.append(f"{var}={parsed} (must be >= {minimum})")

    if invalid:
        raise EnvironmentError(
            f"Invalid exam environment variables: {', '.join(invalid)}"
        )

    for var, description in optional_vars.items():
        path = os.getenv(var)
        if not path:
            logger.debug("Optional environment variable not set: %s (%s)", var, description)
        elif not os.path.exists(path):
            raise EnvironmentError(f"{var} points to a missing file: {path}")

def get_env_bool(name: str, default: bool = False) -> bool:
    """Get boolean value from environment variable."""
    value = os.getenv(name)
    if value is None:
        return default
    return value.lower() in {"1", "true", "yes", "on", "enabled"}

def get_env_int(name: str, default: int) -> int:
    """Get integer value from environment variable, falling back on blanks."""
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError as exc:
        raise EnvironmentError(f"{name} must be an integer, got {value!r}") from exc

def get_env_path(name: str) -> Optional[str]:
    value = os.getenv(name)
    return value.strip() if value and value.strip() else None
