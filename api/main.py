"""
FastAPI Backend for Exam Pathway - adaptive assessment and learning paths.

Flow:
    POST /assessments                  -> first question
    POST /assessments/{id}/responses   -> next question or completion
    GET  /assessments/{id}/report      -> diagnostic report
    POST /paths                        -> personalized path from the report
    POST /paths/{id}/attempts          -> completion, XP, milestones
"""

from datetime import datetime, timezone
from typing import Dict, List, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from core.adaptive_tester import AdaptiveTester
from core.assessment_session import NextQuestionResult, SessionStatus
from core.config import get_settings
from core.errors import (
    GraphIntegrityError,
    InvalidSessionStateError,
    NoContentAvailableError,
    UnknownStepError,
)
from core.knowledge_graph import get_prerequisite_chain, graph_visualization, validate_graph, would_create_cycle
from core.logging_config import configure_logging, get_logger
from core.mastery_calculator import AttemptData, calculate_concept_mastery
from core.repositories import load_content
from learning_path.milestone_engine import award_step_completion, check_and_unlock_milestones, get_student_progress
from learning_path.path_generator import Pace, PathGenerationOptions, PathGenerator, StudentProfile
from learning_path.progress_tracker import (
    StepAttempt,
    calculate_path_progress,
    can_advance_to_next_step,
    update_streak,
)
from redis_store import RedisStore

# ==================== Initialize ====================

settings = get_settings()
configure_logging(settings.log_level, settings.log_json)
log = get_logger("api")

app = FastAPI(
    title="Exam Pathway API",
    description="IRT adaptive assessment and prerequisite-ordered learning paths",
    version="1.0.0"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Shared components
content = load_content(settings.content_dir, log=log)
store = RedisStore(settings, log=get_logger("redis_store"))


# ==================== Request Models ====================

class StartAssessmentRequest(BaseModel):
    user_id: str
    jurisdiction_id: Optional[str] = None
    min_questions: Optional[int] = None
    max_questions: Optional[int] = None
    se_threshold: Optional[float] = None
    topic_coverage: Optional[Dict[str, int]] = None


class ResponseRequest(BaseModel):
    item_id: str
    selected_answer: str
    time_seconds: float = Field(default=0.0, ge=0)


class GeneratePathRequest(BaseModel):
    assessment_id: str
    user_id: str
    pace: Pace = Pace.MEDIUM
    daily_goal_minutes: int = Field(default=30, gt=0)
    items_per_concept: int = Field(default=10, gt=0)
    required_accuracy: float = Field(default=0.75, ge=0, le=1)


class StepAttemptRequest(BaseModel):
    user_id: str
    step_index: int
    is_correct: bool
    time_seconds: float = Field(default=0.0, ge=0)
    item_id: Optional[str] = None


class CycleCheckRequest(BaseModel):
    concept_id: str
    prerequisite_id: str


# ==================== Error Mapping ====================

@app.exception_handler(InvalidSessionStateError)
async def invalid_state_handler(request: Request, exc: InvalidSessionStateError):
    return JSONResponse(status_code=409, content={"detail": str(exc)})


@app.exception_handler(NoContentAvailableError)
async def no_content_handler(request: Request, exc: NoContentAvailableError):
    return JSONResponse(
        status_code=409,
        content={"detail": str(exc), "assessment_id": exc.assessment_id, "reason": "no_content_available"},
    )


@app.exception_handler(GraphIntegrityError)
async def graph_error_handler(request: Request, exc: GraphIntegrityError):
    return JSONResponse(status_code=422, content={"detail": str(exc)})


@app.exception_handler(UnknownStepError)
async def unknown_step_handler(request: Request, exc: UnknownStepError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


# ==================== Helpers ====================

def question_payload(question: Optional[NextQuestionResult]) -> Optional[dict]:
    """Question as shown to the student. Never includes the answer key."""
    if question is None:
        return None
    item = question.item
    return {
        "item_id": item.id,
        "stem": item.stem,
        "options": item.options,
        "topic": item.topic,
        "difficulty": item.difficulty,
        "selection_reason": question.reason,
    }


def make_tester(jurisdiction_id: str, config=None, state=None, pending=None) -> AdaptiveTester:
    return AdaptiveTester(
        content.items,
        jurisdiction_id,
        config=config,
        exposure_control=settings.exposure_control,
        randomness=settings.selection_randomness,
        total_assessments=settings.total_assessments,
        log=get_logger("adaptive_tester", jurisdiction_id=jurisdiction_id),
        state=state,
        pending=pending,
    )


def load_assessment(assessment_id: str):
    state = store.get_assessment(assessment_id)
    if state is None:
        raise HTTPException(status_code=404, detail=f"Assessment {assessment_id} not found")
    return state


def load_path(path_id: str):
    path = store.get_path(path_id)
    if path is None:
        raise HTTPException(status_code=404, detail=f"Path {path_id} not found")
    return path


def load_concepts(jurisdiction_id: str):
    concepts = content.concepts.find_concepts(jurisdiction_id)
    if not concepts:
        raise HTTPException(status_code=404, detail=f"No concepts for jurisdiction {jurisdiction_id}")
    return concepts


# ==================== Endpoints ====================

@app.get("/health")
def health():
    return {
        "status": "ok",
        "jurisdictions": content.jurisdictions(),
        "items": len(content.items),
    }


@app.post("/assessments")
def start_assessment(request: StartAssessmentRequest):
    """Start an adaptive assessment and return the first question."""
    jurisdiction_id = request.jurisdiction_id or settings.default_jurisdiction
    config = settings.assessment_config(
        min_questions=request.min_questions,
        max_questions=request.max_questions,
        se_threshold=request.se_threshold,
        topic_coverage=request.topic_coverage,
    )

    tester = make_tester(jurisdiction_id, config=config)
    question = tester.start()

    store.save_assessment(tester.state, user_id=request.user_id, jurisdiction_id=jurisdiction_id)
    store.set_pending_question(tester.state.assessment_id, question)

    if question is None:
        raise NoContentAvailableError(tester.state.assessment_id, jurisdiction_id)

    log.info("assessment_started", assessment_id=tester.state.assessment_id, user_id=request.user_id)
    return {
        "assessment_id": tester.state.assessment_id,
        "status": tester.state.status.value,
        "question": question_payload(question),
    }


@app.post("/assessments/{assessment_id}/responses")
def submit_response(assessment_id: str, request: ResponseRequest):
    """Score the pending question; return the next one or the completion reason."""
    state = load_assessment(assessment_id)
    meta = store.get_assessment_meta(assessment_id)
    jurisdiction_id = meta.get("jurisdiction_id", settings.default_jurisdiction)

    tester = make_tester(jurisdiction_id, state=state, pending=store.get_pending_question(assessment_id))
    outcome = tester.submit_response(request.item_id, request.selected_answer, request.time_seconds)

    store.save_assessment(tester.state)
    store.set_pending_question(assessment_id, tester.pending)

    return {
        "is_correct": outcome.is_correct,
        "theta": outcome.theta,
        "se": outcome.se,
        "questions_asked": tester.state.questions_asked,
        "completed": tester.is_complete,
        "termination_reason": tester.state.termination_reason.value if tester.state.termination_reason else None,
        "message": outcome.termination.message,
        "next_question": question_payload(outcome.next_question),
    }


@app.get("/assessments/{assessment_id}")
def get_assessment(assessment_id: str):
    state = load_assessment(assessment_id)
    return {
        "assessment_id": state.assessment_id,
        "status": state.status.value,
        "questions_asked": state.questions_asked,
        "theta": state.current_theta,
        "se": state.current_se,
        "termination_reason": state.termination_reason.value if state.termination_reason else None,
    }


@app.get("/assessments/{assessment_id}/report")
def get_report(assessment_id: str):
    state = load_assessment(assessment_id)
    return make_tester(settings.default_jurisdiction, state=state).report()


@app.post("/paths")
def generate_path(request: GeneratePathRequest):
    """Generate a learning path from a completed assessment."""
    state = load_assessment(request.assessment_id)
    if state.status != SessionStatus.COMPLETED:
        raise InvalidSessionStateError(f"Assessment {request.assessment_id} is not completed")

    meta = store.get_assessment_meta(request.assessment_id)
    jurisdiction_id = meta.get("jurisdiction_id", settings.default_jurisdiction)
    report = make_tester(jurisdiction_id, state=state).report()

    profile = StudentProfile(
        user_id=request.user_id,
        theta=report.final_ability,
        pace=request.pace,
        daily_goal_minutes=request.daily_goal_minutes,
    )
    options = PathGenerationOptions(
        items_per_concept=request.items_per_concept,
        required_accuracy=request.required_accuracy,
    )

    generator = PathGenerator(content.concepts, content.similarity, log=get_logger("path_generator"))
    path = generator.generate_learning_path(report, profile, jurisdiction_id, options)
    store.save_path(path)
    return path


@app.get("/paths/{path_id}")
def get_path(path_id: str):
    return load_path(path_id)


@app.post("/paths/{path_id}/attempts")
def record_attempt(path_id: str, request: StepAttemptRequest):
    """Record a step attempt, then award XP and unlock milestones."""
    path = load_path(path_id)
    if not 0 <= request.step_index < len(path.steps):
        raise UnknownStepError(path_id, request.step_index)

    now = datetime.now(timezone.utc)
    attempt = StepAttempt(
        step_index=request.step_index,
        is_correct=request.is_correct,
        time_seconds=request.time_seconds,
        attempted_at=now,
        item_id=request.item_id,
    )
    store.record_step_attempt(path_id, request.user_id, attempt)

    concept_id = getattr(path.steps[request.step_index], "concept_id", None)
    if concept_id:
        store.record_concept_attempt(
            request.user_id, concept_id, AttemptData(request.is_correct, request.time_seconds, now)
        )

    streak = update_streak(store.get_streak(request.user_id), now)
    store.save_streak(request.user_id, streak)

    attempts = store.get_step_attempts(path_id, request.user_id)
    completion = can_advance_to_next_step(path, request.step_index, attempts)

    def grant(rewards):
        rewards, award = award_step_completion(rewards, path, request.step_index, attempts)
        rewards, results = check_and_unlock_milestones(rewards, path, attempts, now=now)
        return rewards, (award, results)

    # The ledger is the record of what was granted; it and the claim set commit together
    rewards, (award, results) = store.update_rewards(request.user_id, grant)
    unlocked = [r for r in results if r.unlocked]

    return {
        "completion": completion,
        "xp_awarded": award.xp_awarded,
        "leveled_up": award.leveled_up,
        "level": rewards.level,
        "unlocked_milestones": [r.milestone_id for r in unlocked],
        "streak": streak.current,
    }


@app.get("/paths/{path_id}/progress")
def get_progress(path_id: str, user_id: str):
    path = load_path(path_id)
    attempts = store.get_step_attempts(path_id, user_id)
    rewards = store.get_rewards(user_id)

    progress = calculate_path_progress(
        path,
        attempts,
        unlocked_milestones=rewards.unlocked_milestones,
        streak=store.get_streak(user_id),
    )
    return {"progress": progress, "rewards": get_student_progress(rewards)}


@app.get("/concepts/{jurisdiction_id}/validation")
def get_graph_validation(jurisdiction_id: str):
    return validate_graph(load_concepts(jurisdiction_id))


@app.get("/concepts/{jurisdiction_id}/graph")
def get_graph(jurisdiction_id: str, user_id: Optional[str] = None):
    concepts = load_concepts(jurisdiction_id)
    mastery: Dict[str, float] = {}
    if user_id:
        for concept in concepts:
            attempts = store.get_concept_attempts(user_id, concept.id)
            if attempts:
                mastery[concept.id] = calculate_concept_mastery(attempts).overall
    return graph_visualization(concepts, mastery)


@app.post("/concepts/{jurisdiction_id}/cycle-check")
def check_cycle(jurisdiction_id: str, request: CycleCheckRequest):
    concepts = load_concepts(jurisdiction_id)
    return {
        "concept_id": request.concept_id,
        "prerequisite_id": request.prerequisite_id,
        "would_create_cycle": would_create_cycle(request.concept_id, request.prerequisite_id, concepts),
    }


@app.get("/concepts/{jurisdiction_id}/{concept_id}/chain")
def get_chain(jurisdiction_id: str, concept_id: str) -> List[dict]:
    concepts = load_concepts(jurisdiction_id)
    if concept_id not in {c.id for c in concepts}:
        raise HTTPException(status_code=404, detail=f"Concept {concept_id} not found")
    return [
        {"id": c.id, "name": c.name, "topic": c.topic, "estimated_minutes": c.estimated_minutes}
        for c in get_prerequisite_chain(concept_id, concepts)
    ]


@app.get("/mastery/{user_id}/{concept_id}")
def get_mastery(user_id: str, concept_id: str):
    attempts = store.get_concept_attempts(user_id, concept_id)
    return calculate_concept_mastery(attempts)


# ==================== Run ====================

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("api.main:app", host="0.0.0.0", port=8000, reload=True)
