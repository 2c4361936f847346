import random
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


@pytest.fixture
def temp_db(monkeypatch, tmp_path):
    import db

    db_path = tmp_path / "test.db"
    monkeypatch.setattr(db, "DB_PATH", str(db_path))

    # Reset the connection pool for each test
    db._pool = db.SQLiteConnectionPool(str(db_path), max_connections=10)
    db.init()
    return str(db_path)


@pytest.fixture
def catalog():
    from concept_catalog import ConceptCatalog

    return ConceptCatalog()


@pytest.fixture
def bank():
    from item_bank import ItemBank

    return ItemBank()


@pytest.fixture
def policy():
    from exam_policy import ExamPolicy

    return ExamPolicy()


@pytest.fixture
def rng():
    return random.Random(1234)


@pytest.fixture
def eligible_enrollment():
    from schemas import EnrollmentRecord

    return EnrollmentRecord(learner_id="learner-1", topic_id="intro-ai-fundamentals", proof_validated=True)
