# app.py - SkillCert exam service
# - Thin HTTP layer over pipeline.py; scoring stays in the engines
# - Every enrollment write goes through a db transaction

import logging
import random
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

import db
import pipeline
from concept_catalog import ConceptCatalog
from engines.attempt_state import AttemptAlreadyGraded, AttemptNotEligible, AttemptStateMachine
from engines.validation import AttemptShapeInvalid
from env_validation import get_env_path, validate_environment
from exam_policy import ExamPolicy
from item_bank import ItemBank
from schemas import AttemptRecord, EnrollmentRecord, Item, ItemKind, Response

logger = logging.getLogger(__name__)


def _load_exam_config() -> tuple[ConceptCatalog, ItemBank, ExamPolicy]:
    """Validate the environment, then build the reference data and policy."""
    try:
        validate_environment()
        catalog = ConceptCatalog(get_env_path("EXAM_CATALOG_PATH"))
        bank = ItemBank(get_env_path("EXAM_ITEM_BANK_PATH"))
        policy = ExamPolicy.from_env()
    except Exception as e:
        logger.error("Failed to load exam configuration: %s", str(e), exc_info=True)
        raise
    return catalog, bank, policy


CATALOG, BANK, POLICY = _load_exam_config()
STATE_MACHINE = AttemptStateMachine(POLICY)


@asynccontextmanager
async def _lifespan(_: FastAPI):
    try:
        db.init()
        logger.info(
            "Exam policy: %d objective + %d free-text items, %d attempts, certification at %d/%d",
            POLICY.objective_count,
            POLICY.free_text_count,
            POLICY.max_attempts,
            POLICY.certification_score,
            POLICY.point_budget,
        )
        yield
    except Exception as e:
        logger.error("Failed to initialize application: %s", str(e), exc_info=True)
        raise


app = FastAPI(title="SkillCert exam service", version="1.0.0", lifespan=_lifespan)


class ProofBody(BaseModel):
    learner_id: str
    topic_id: str
    approved: bool = True


class StartBody(BaseModel):
    learner_id: str
    topic_id: str
    seed: Optional[int] = Field(default=None, description="Seed for choice shuffling; random when omitted.")


class ResponseBody(BaseModel):
    item_index: int = Field(ge=0)
    text: Optional[str] = None
    selected_index: Optional[int] = None


class EnrollmentKeyBody(BaseModel):
    learner_id: str
    topic_id: str


def _public_item(index: int, item: Item) -> dict[str, Any]:
    payload: dict[str, Any] = {"index": index, "kind": item.kind.value, "concept": item.concept, "prompt": item.prompt}
    if item.kind is ItemKind.OBJECTIVE:
        payload["choices"] = list(item.choices)
    return payload


def _enrollment_payload(enrollment: EnrollmentRecord) -> dict[str, Any]:
    payload = enrollment.model_dump(mode="json")
    payload["state"] = STATE_MACHINE.enrollment_state(enrollment).value
    payload["attempts_remaining"] = max(POLICY.max_attempts - enrollment.attempt_count, 0)
    reason = STATE_MACHINE.ineligibility(enrollment)
    payload["ineligible_reason"] = reason.value if reason else None
    return payload


def _not_eligible(exc: AttemptNotEligible) -> HTTPException:
    return HTTPException(status_code=403, detail={"reason": exc.reason.value, "message": str(exc)})


@app.get("/")
def root():
    return {"service": "skillcert", "topics": list(CATALOG.topic_ids())}


@app.post("/enrollments/proof")
def submit_proof(body: ProofBody):
    enrollment = db.update_enrollment(
        body.learner_id,
        body.topic_id,
        lambda current: STATE_MACHINE.validate_proof(current, body.approved),
        create=True,
    )
    return _enrollment_payload(enrollment)


@app.get("/enrollments/{learner_id}/{topic_id}")
def get_enrollment(learner_id: str, topic_id: str):
    enrollment = db.get_enrollment(learner_id, topic_id)
    if enrollment is None:
        enrollment = EnrollmentRecord(learner_id=learner_id, topic_id=topic_id)
    return _enrollment_payload(enrollment)


@app.post("/exams/start")
def start_exam(body: StartBody):
    rng = random.Random(body.seed)

    def _start(enrollment: EnrollmentRecord, previous: list[AttemptRecord]):
        return pipeline.start_attempt(
            enrollment, previous, catalog=CATALOG, bank=BANK, policy=POLICY, rng=rng
        )

    try:
        enrollment, attempt = db.begin_attempt(body.learner_id, body.topic_id, _start)
    except AttemptNotEligible as exc:
        raise _not_eligible(exc) from exc
    return {
        "attempt_id": attempt.attempt_id,
        "ordinal": attempt.ordinal,
        "attempts_remaining": max(POLICY.max_attempts - enrollment.attempt_count, 0),
        "items": [_public_item(idx, item) for idx, item in enumerate(attempt.items)],
    }


@app.post("/exams/{attempt_id}/responses")
def record_response(attempt_id: str, body: ResponseBody):
    def _record(attempt: AttemptRecord) -> AttemptRecord:
        if body.item_index >= len(attempt.items):
            raise AttemptShapeInvalid(f"Item index {body.item_index} is out of range")
        response = Response(
            item_index=body.item_index,
            kind=attempt.items[body.item_index].kind,
            text=body.text,
            selected_index=body.selected_index,
        )
        return pipeline.record_response(attempt, body.item_index, response)

    try:
        attempt = db.update_attempt(attempt_id, _record)
    except db.RecordNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except AttemptAlreadyGraded as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except AttemptShapeInvalid as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return {"attempt_id": attempt_id, "answered": len(attempt.responses), "total": len(attempt.items)}


@app.post("/exams/{attempt_id}/submit")
def submit_exam(attempt_id: str):
    def _grade(attempt: AttemptRecord, enrollment: EnrollmentRecord):
        return pipeline.grade_attempt(attempt, CATALOG.get(attempt.topic_id), enrollment, policy=POLICY)

    try:
        outcome = db.finalize_attempt(attempt_id, _grade)
    except db.RecordNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except AttemptAlreadyGraded as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except AttemptShapeInvalid as exc:
        logger.error("Attempt %s has an invalid shape: %s", attempt_id, exc)
        raise HTTPException(status_code=422, detail=str(exc)) from exc

    payload = outcome.model_dump(mode="json", exclude={"attempt", "enrollment"})
    payload["details"] = {
        "objective": outcome.attempt.objective_result.model_dump(mode="json"),
        "free_text": outcome.attempt.free_text_result.model_dump(mode="json"),
        "integrity": outcome.attempt.integrity.model_dump(mode="json"),
    }
    return payload


@app.get("/certifications/{certification_id}")
def verify_certification(certification_id: str):
    enrollment = db.find_certification(certification_id)
    if enrollment is None:
        return {"valid": False}
    return {
        "valid": True,
        "learner_id": enrollment.learner_id,
        "topic_id": enrollment.topic_id,
        "score": enrollment.best_score,
        "issued_at": enrollment.certified_at.isoformat() if enrollment.certified_at else None,
    }


@app.get("/learners/{learner_id}/score")
def learner_score(learner_id: str):
    enrollments = db.list_enrollments(learner_id)
    return {
        "learner_id": learner_id,
        "total_score": pipeline.cumulative_best_score(enrollments),
        "certified_topics": [e.topic_id for e in enrollments if e.certification_id],
    }


@app.post("/admin/enrollments/clear-lock")
def clear_lock(body: EnrollmentKeyBody):
    try:
        enrollment = db.update_enrollment(body.learner_id, body.topic_id, STATE_MACHINE.clear_lock)
    except db.RecordNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    logger.info("Lock cleared for %s/%s", body.learner_id, body.topic_id)
    return _enrollment_payload(enrollment)
