"""
연습/퀴즈 시도
- 시작: 사용자가 고른 응답이 있으면 explicit 귀속
- 제출: 채점 후 아직 귀속이 없으면 최근 응답에 temporal 귀속
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from abtutor.config import settings
from abtutor.db.base import utcnow
from abtutor.errors import NotFoundError, ValidationFailed
from abtutor.models.attempts import PracticeAttempt, QuizAttempt
from abtutor.services.attribution import (
    attribute_at_attempt_start,
    attribute_at_attempt_submit,
)
from abtutor.services.code_runner import CodeRunner
from abtutor.services.scoring import code_complexity, execution_reward, round_half_up
from abtutor.services.session_service import SessionManager

logger = logging.getLogger(__name__)

DIFFICULTY_LEVELS = ("beginner", "easy", "medium", "hard", "expert")


def _iso(dt):
    return dt.isoformat() if dt else None


def _attribution(a) -> Dict[str, Any]:
    return {
        "chat_message_id": a.attribution_chat_message_id,
        "model": a.attribution_model,
        "confidence": a.attribution_confidence,
        "delay_sec": a.attribution_delay_sec,
    }


def serialize_practice(a: PracticeAttempt) -> Dict[str, Any]:
    return {
        "id": a.id,
        "problem_id": a.problem_id,
        "topic_id": a.topic_id,
        "session_id": a.session_id,
        "difficulty_level": a.difficulty_level,
        "status": a.status,
        "is_correct": a.is_correct,
        "points_earned": a.points_earned,
        "complexity_score": None if a.complexity_score is None else float(a.complexity_score),
        "time_spent_seconds": a.time_spent_seconds,
        "attempt_number": a.attempt_number,
        "compiler_errors": list(a.compiler_errors or []),
        "runtime_errors": list(a.runtime_errors or []),
        "test_case_results": list(a.test_case_results or []),
        "execution_time_ms": a.execution_time_ms,
        "attribution": _attribution(a),
        "created_at": _iso(a.created_at),
        "submitted_at": _iso(a.submitted_at),
    }


def serialize_quiz(a: QuizAttempt) -> Dict[str, Any]:
    return {
        "id": a.id,
        "quiz_id": a.quiz_id,
        "topic_id": a.topic_id,
        "session_id": a.session_id,
        "score": a.score,
        "max_possible_score": a.max_possible_score,
        "percentage": None if a.percentage is None else float(a.percentage),
        "passed": a.passed,
        "time_spent_seconds": a.time_spent_seconds,
        "attempt_number": a.attempt_number,
        "attribution": _attribution(a),
        "created_at": _iso(a.created_at),
        "completed_at": _iso(a.completed_at),
    }


def _next_attempt_number(db: Session, model, user_id: str, **match) -> int:
    q = db.query(func.count(model.id)).filter(model.user_id == user_id)
    for col, value in match.items():
        q = q.filter(getattr(model, col) == value)
    return (q.scalar() or 0) + 1


def _elapsed_seconds(start: datetime, end: datetime) -> int:
    return max(0, int((end - start).total_seconds()))


class AttemptService:

    # ------------------------------
    # 연습 문제
    # ------------------------------
    @staticmethod
    def start_practice(
        db: Session,
        user_id: str,
        problem_id: int,
        topic_id: Optional[int] = None,
        session_id: Optional[int] = None,
        difficulty_level: Optional[str] = None,
        reply_id: Optional[int] = None,
    ) -> Dict[str, Any]:
        if difficulty_level is not None and difficulty_level not in DIFFICULTY_LEVELS:
            raise ValidationFailed({"difficulty_level": f"must be one of: {', '.join(DIFFICULTY_LEVELS)}"})
        if session_id is not None:
            SessionManager.get_owned(db, session_id, user_id)

        attempt = PracticeAttempt(
            user_id=user_id,
            problem_id=problem_id,
            topic_id=topic_id,
            session_id=session_id,
            difficulty_level=difficulty_level,
            attempt_number=_next_attempt_number(db, PracticeAttempt, user_id, problem_id=problem_id),
            status="started",
            created_at=utcnow(),
        )
        fields = attribute_at_attempt_start(db, user_id, reply_id)
        if not fields.is_empty:
            attempt.stamp_attribution(fields)

        db.add(attempt)
        db.commit()
        db.refresh(attempt)
        return serialize_practice(attempt)

    @staticmethod
    def submit_practice(
        db: Session,
        attempt_id: int,
        user_id: str,
        code: str,
        runner: CodeRunner,
        test_cases: Optional[List[Dict]] = None,
        time_spent_seconds: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        if not code or not code.strip():
            raise ValidationFailed({"code": "required"})

        attempt = (
            db.query(PracticeAttempt)
            .filter(PracticeAttempt.id == attempt_id, PracticeAttempt.user_id == user_id)
            .first()
        )
        if not attempt:
            raise NotFoundError("practice_attempt")
        if attempt.status != "started":
            raise ValidationFailed({"attempt_id": "already submitted"})

        # 1) 실행 (샌드박스 실패 시 502, 시도는 그대로 started)
        result = runner.run(code, test_cases=test_cases)

        # 2) 채점
        now = now or utcnow()
        complexity = code_complexity(code)
        attempt.submitted_code = code
        attempt.is_correct = result.success
        attempt.complexity_score = complexity
        attempt.points_earned = execution_reward(result.success, complexity)
        attempt.compiler_errors = list(result.compiler_errors)
        attempt.runtime_errors = list(result.runtime_errors)
        attempt.test_case_results = list(result.test_results)
        attempt.execution_time_ms = result.execution_time_ms
        attempt.time_spent_seconds = (
            time_spent_seconds if time_spent_seconds is not None else _elapsed_seconds(attempt.created_at, now)
        )
        attempt.submitted_at = now
        attempt.status = "evaluated"

        # 3) 귀속
        attribute_at_attempt_submit(db, attempt, user_id, now)

        # 4) 정답이면 세션에 연습 완료 표시
        if result.success and attempt.session_id is not None:
            session = SessionManager.get_owned(db, attempt.session_id, user_id)
            session.practice_completed = True

        db.commit()
        db.refresh(attempt)

        logger.info(
            "[PRACTICE_SUBMIT] attempt_id=%s correct=%s points=%s attributed_model=%s",
            attempt.id, attempt.is_correct, attempt.points_earned, attempt.attribution_model,
        )
        out = serialize_practice(attempt)
        out["execution"] = result.to_dict()
        return out

    # ------------------------------
    # 퀴즈
    # ------------------------------
    @staticmethod
    def start_quiz(
        db: Session,
        user_id: str,
        quiz_id: int,
        topic_id: Optional[int] = None,
        session_id: Optional[int] = None,
        reply_id: Optional[int] = None,
    ) -> Dict[str, Any]:
        if session_id is not None:
            SessionManager.get_owned(db, session_id, user_id)

        attempt = QuizAttempt(
            user_id=user_id,
            quiz_id=quiz_id,
            topic_id=topic_id,
            session_id=session_id,
            attempt_number=_next_attempt_number(db, QuizAttempt, user_id, quiz_id=quiz_id),
            created_at=utcnow(),
        )
        fields = attribute_at_attempt_start(db, user_id, reply_id)
        if not fields.is_empty:
            attempt.stamp_attribution(fields)

        db.add(attempt)
        db.commit()
        db.refresh(attempt)
        return serialize_quiz(attempt)

    @staticmethod
    def submit_quiz(
        db: Session,
        attempt_id: int,
        user_id: str,
        score: int,
        max_possible_score: int,
        time_spent_seconds: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        errors = {}
        if max_possible_score is None or max_possible_score <= 0:
            errors["max_possible_score"] = "must be positive"
        elif score is None or not 0 <= score <= max_possible_score:
            errors["score"] = "must be between 0 and max_possible_score"
        if errors:
            raise ValidationFailed(errors)

        attempt = (
            db.query(QuizAttempt)
            .filter(QuizAttempt.id == attempt_id, QuizAttempt.user_id == user_id)
            .first()
        )
        if not attempt:
            raise NotFoundError("quiz_attempt")
        if attempt.completed_at is not None:
            raise ValidationFailed({"attempt_id": "already submitted"})

        now = now or utcnow()
        percentage = round_half_up(score * 100.0 / max_possible_score)
        attempt.score = score
        attempt.max_possible_score = max_possible_score
        attempt.percentage = percentage
        attempt.passed = percentage >= settings.quiz_pass_percent
        attempt.time_spent_seconds = (
            time_spent_seconds if time_spent_seconds is not None else _elapsed_seconds(attempt.created_at, now)
        )
        attempt.completed_at = now

        attribute_at_attempt_submit(db, attempt, user_id, now)

        db.commit()
        db.refresh(attempt)

        logger.info(
            "[QUIZ_SUBMIT] attempt_id=%s percentage=%s passed=%s attributed_model=%s",
            attempt.id, percentage, attempt.passed, attempt.attribution_model,
        )
        return serialize_quiz(attempt)
