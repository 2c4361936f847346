import os

import pytest

import env_validation
from env_validation import get_env_bool, get_env_int, validate_environment
from exam_policy import ExamPolicy, PolicyConfigError


@pytest.fixture(autouse=True)
def _isolated_db_path(monkeypatch):
    # validate_environment writes its defaults into os.environ
    monkeypatch.setenv("DB_PATH", os.getenv("DB_PATH", ""))


def test_defaults():
    policy = ExamPolicy()
    assert policy.item_count == 10
    assert (policy.passing_score, policy.certification_score) == (6, 7)


def test_from_env(monkeypatch):
    monkeypatch.setenv("EXAM_OBJECTIVE_COUNT", "5")
    monkeypatch.setenv("EXAM_MAX_ATTEMPTS", "3")
    monkeypatch.setenv("EXAM_SHUFFLE_RETRY_CHOICES", "off")
    monkeypatch.setenv("EXAM_PASSING_SCORE", " ")

    policy = ExamPolicy.from_env()

    assert policy.objective_count == 5
    assert policy.max_attempts == 3
    assert policy.shuffle_retry_choices is False
    assert policy.passing_score == 6


@pytest.mark.parametrize(
    "overrides",
    [
        {"objective_count": 0, "free_text_count": 0},
        {"point_budget": 0},
        {"max_attempts": 0},
        {"passing_score": 11},
        {"passing_score": 8, "certification_score": 7},
        {"lock_flag_threshold": 0},
    ],
)
def test_inconsistent_policies_are_rejected(overrides):
    with pytest.raises(PolicyConfigError):
        ExamPolicy(**overrides)


def test_env_helpers(monkeypatch):
    monkeypatch.setenv("FLAG", "Yes")
    monkeypatch.setenv("COUNT", "abc")
    assert get_env_bool("FLAG") is True
    assert get_env_bool("UNSET_FLAG_FOR_TEST", default=True) is True
    with pytest.raises(env_validation.EnvironmentError):
        get_env_int("COUNT", 1)


def test_validate_environment_reports_bad_ints(monkeypatch):
    monkeypatch.setenv("EXAM_MAX_ATTEMPTS", "0")
    monkeypatch.setenv("EXAM_POINT_BUDGET", "ten")
    with pytest.raises(env_validation.EnvironmentError) as excinfo:
        validate_environment()
    assert "EXAM_MAX_ATTEMPTS=0" in str(excinfo.value)
    assert "EXAM_POINT_BUDGET='ten'" in str(excinfo.value)


def test_validate_environment_checks_data_paths(monkeypatch, tmp_path):
    monkeypatch.setenv("EXAM_CATALOG_PATH", str(tmp_path / "missing.json"))
    with pytest.raises(env_validation.EnvironmentError, match="EXAM_CATALOG_PATH"):
        validate_environment()


def test_validate_environment_applies_db_default(monkeypatch):
    monkeypatch.setenv("DB_PATH", "")
    validate_environment()
    assert os.environ["DB_PATH"] == "data.db"
