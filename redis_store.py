"""
Redis Store - persistence for assessments, paths, attempts and rewards.

Key Structure:
    assessment:{id}:state            -> String (JSON AssessmentState snapshot)
    assessment:{id}:responses        -> List (JSON ResponseRecord, append-only)
    assessment:{id}:pending          -> String (JSON NextQuestionResult)
    assessment:{id}:meta             -> Hash (user_id, jurisdiction_id)
    path:{path_id}                   -> String (JSON GeneratedPath)
    path:{path_id}:attempts:{user}   -> List (JSON StepAttempt)
    attempts:{user}:{concept_id}     -> List (JSON AttemptData)
    rewards:{user}                   -> String (JSON StudentRewards)
    rewards:{user}:milestones        -> Set (unlocked milestone ids, written with the ledger)
    streak:{user}                    -> String (JSON StudyStreak)

The engine works on snapshots; this module only stores them.
"""

from typing import Dict, List, Optional, Set

import redis
from pydantic import TypeAdapter

from core.assessment_session import AssessmentState, NextQuestionResult, ResponseRecord
from core.config import Settings, get_settings
from core.logging_config import get_logger
from core.mastery_calculator import AttemptData
from learning_path.milestone_engine import StudentRewards
from learning_path.path_generator import GeneratedPath
from learning_path.progress_tracker import StepAttempt, StudyStreak


STATE_ADAPTER = TypeAdapter(AssessmentState)
RESPONSE_ADAPTER = TypeAdapter(ResponseRecord)
PENDING_ADAPTER = TypeAdapter(NextQuestionResult)
PATH_ADAPTER = TypeAdapter(GeneratedPath)
STEP_ATTEMPT_ADAPTER = TypeAdapter(StepAttempt)
CONCEPT_ATTEMPT_ADAPTER = TypeAdapter(AttemptData)
REWARDS_ADAPTER = TypeAdapter(StudentRewards)
STREAK_ADAPTER = TypeAdapter(StudyStreak)


class RedisStore:
    def __init__(self, settings: Optional[Settings] = None, client=None, log=None):
        """Connect to Redis using settings (environment by default)."""
        settings = settings or get_settings()
        self.client = client or redis.Redis(
            host=settings.redis_host,
            port=settings.redis_port,
            password=settings.redis_password,
            db=settings.redis_db,
            decode_responses=True  # Return strings instead of bytes
        )
        self.log = log or get_logger("redis_store")

    # ==================== Key Builders ====================

    def _state_key(self, assessment_id: str) -> str:
        return f"assessment:{assessment_id}:state"

    def _responses_key(self, assessment_id: str) -> str:
        return f"assessment:{assessment_id}:responses"

    def _pending_key(self, assessment_id: str) -> str:
        return f"assessment:{assessment_id}:pending"

    def _meta_key(self, assessment_id: str) -> str:
        return f"assessment:{assessment_id}:meta"

    def _path_key(self, path_id: str) -> str:
        return f"path:{path_id}"

    def _step_attempts_key(self, path_id: str, user_id: str) -> str:
        return f"path:{path_id}:attempts:{user_id}"

    def _concept_attempts_key(self, user_id: str, concept_id: str) -> str:
        return f"attempts:{user_id}:{concept_id}"

    def _rewards_key(self, user_id: str) -> str:
        return f"rewards:{user_id}"

    def _milestones_key(self, user_id: str) -> str:
        return f"rewards:{user_id}:milestones"

    def _streak_key(self, user_id: str) -> str:
        return f"streak:{user_id}"

    # ==================== Assessments ====================

    def save_assessment(self, state: AssessmentState, user_id: Optional[str] = None,
                        jurisdiction_id: Optional[str] = None):
        """
        Store the state snapshot and append any new response records.

        The response list is only ever appended to; records already stored
        are never rewritten.
        """
        responses_key = self._responses_key(state.assessment_id)
        stored = self.client.llen(responses_key)

        pipe = self.client.pipeline()
        pipe.set(self._state_key(state.assessment_id), STATE_ADAPTER.dump_json(state).decode())
        for record in state.responses[stored:]:
            pipe.rpush(responses_key, RESPONSE_ADAPTER.dump_json(record).decode())

        meta = {k: v for k, v in {"user_id": user_id, "jurisdiction_id": jurisdiction_id}.items() if v}
        if meta:
            pipe.hset(self._meta_key(state.assessment_id), mapping=meta)
        pipe.execute()

        self.log.debug(
            "assessment_saved",
            assessment_id=state.assessment_id,
            status=state.status.value,
            new_responses=max(0, len(state.responses) - stored),
        )

    def get_assessment(self, assessment_id: str) -> Optional[AssessmentState]:
        raw = self.client.get(self._state_key(assessment_id))
        if raw is None:
            return None
        return STATE_ADAPTER.validate_json(raw)

    def get_assessment_meta(self, assessment_id: str) -> Dict[str, str]:
        return self.client.hgetall(self._meta_key(assessment_id))

    def get_responses(self, assessment_id: str) -> List[ResponseRecord]:
        raw = self.client.lrange(self._responses_key(assessment_id), 0, -1)
        return [RESPONSE_ADAPTER.validate_json(r) for r in raw]

    def set_pending_question(self, assessment_id: str, question: Optional[NextQuestionResult]):
        if question is None:
            self.client.delete(self._pending_key(assessment_id))
        else:
            self.client.set(self._pending_key(assessment_id), PENDING_ADAPTER.dump_json(question).decode())

    def get_pending_question(self, assessment_id: str) -> Optional[NextQuestionResult]:
        raw = self.client.get(self._pending_key(assessment_id))
        if raw is None:
            return None
        return PENDING_ADAPTER.validate_json(raw)

    def delete_assessment(self, assessment_id: str):
        """Delete all data for an assessment (for testing/cleanup)."""
        self.client.delete(
            self._state_key(assessment_id),
            self._responses_key(assessment_id),
            self._pending_key(assessment_id),
            self._meta_key(assessment_id),
        )

    # ==================== Paths ====================

    def save_path(self, path: GeneratedPath):
        self.client.set(self._path_key(path.path_id), PATH_ADAPTER.dump_json(path).decode())
        self.log.debug("path_saved", path_id=path.path_id, steps=len(path.steps))

    def get_path(self, path_id: str) -> Optional[GeneratedPath]:
        raw = self.client.get(self._path_key(path_id))
        if raw is None:
            return None
        return PATH_ADAPTER.validate_json(raw)

    # ==================== Attempts ====================

    def record_step_attempt(self, path_id: str, user_id: str, attempt: StepAttempt):
        self.client.rpush(self._step_attempts_key(path_id, user_id), STEP_ATTEMPT_ADAPTER.dump_json(attempt).decode())

    def get_step_attempts(self, path_id: str, user_id: str) -> List[StepAttempt]:
        raw = self.client.lrange(self._step_attempts_key(path_id, user_id), 0, -1)
        return [STEP_ATTEMPT_ADAPTER.validate_json(r) for r in raw]

    def record_concept_attempt(self, user_id: str, concept_id: str, attempt: AttemptData):
        self.client.rpush(
            self._concept_attempts_key(user_id, concept_id),
            CONCEPT_ATTEMPT_ADAPTER.dump_json(attempt).decode(),
        )

    def get_concept_attempts(self, user_id: str, concept_id: str) -> List[AttemptData]:
        """Attempts in the order they were recorded (chronological)."""
        raw = self.client.lrange(self._concept_attempts_key(user_id, concept_id), 0, -1)
        return [CONCEPT_ATTEMPT_ADAPTER.validate_json(r) for r in raw]

    # ==================== Rewards ====================

    def get_rewards(self, user_id: str) -> StudentRewards:
        """Reward ledger, or a fresh one for a new student."""
        raw = self.client.get(self._rewards_key(user_id))
        if raw is None:
            return StudentRewards(user_id=user_id)
        return REWARDS_ADAPTER.validate_json(raw)

    def save_rewards(self, rewards: StudentRewards):
        self.client.set(self._rewards_key(rewards.user_id), REWARDS_ADAPTER.dump_json(rewards).decode())

    def update_rewards(self, user_id: str, apply):
        """
        Read, update and write a reward ledger in one WATCH/MULTI transaction.

        ``apply`` takes the current ledger and returns ``(updated, result)``;
        it may run more than once when another writer touches the ledger
        first, so it must not have side effects. Milestones newly unlocked
        in ``updated`` are added to the claim set in the same transaction,
        so the set never holds a milestone whose reward was not saved.

        Returns:
            (updated ledger, result from ``apply``)
        """
        rewards_key = self._rewards_key(user_id)

        def transact(pipe):
            raw = pipe.get(rewards_key)
            current = StudentRewards(user_id=user_id) if raw is None else REWARDS_ADAPTER.validate_json(raw)
            updated, result = apply(current)
            unlocked = [m for m in updated.unlocked_milestones if m not in current.unlocked_milestones]

            pipe.multi()
            pipe.set(rewards_key, REWARDS_ADAPTER.dump_json(updated).decode())
            if unlocked:
                pipe.sadd(self._milestones_key(user_id), *unlocked)
                self.log.info("milestones_claimed", user_id=user_id, milestones=unlocked)
            return updated, result

        return self.client.transaction(transact, rewards_key, value_from_callable=True)

    def claimed_milestones(self, user_id: str) -> Set[str]:
        return set(self.client.smembers(self._milestones_key(user_id)))

    # ==================== Streaks ====================

    def get_streak(self, user_id: str) -> Optional[StudyStreak]:
        raw = self.client.get(self._streak_key(user_id))
        if raw is None:
            return None
        return STREAK_ADAPTER.validate_json(raw)

    def save_streak(self, user_id: str, streak: StudyStreak):
        self.client.set(self._streak_key(user_id), STREAK_ADAPTER.dump_json(streak).decode())
