from fastapi import APIRouter, Depends, Path
from sqlalchemy.orm import Session

from abtutor.deps import get_db, get_current_user, get_code_runner
from abtutor.schemas.tutoring import (
    PracticeStartRequest,
    PracticeSubmitRequest,
    QuizStartRequest,
    QuizSubmitRequest,
)
from abtutor.services.attempt_service import AttemptService
from abtutor.services.code_runner import CodeRunner

router = APIRouter(prefix="/api/attempts", tags=["attempts"])


@router.post("/practice")
def start_practice(
    payload: PracticeStartRequest,
    db: Session = Depends(get_db),
    user=Depends(get_current_user),
):
    return AttemptService.start_practice(
        db,
        user_id=user["id"],
        problem_id=payload.problem_id,
        topic_id=payload.topic_id,
        session_id=payload.session_id,
        difficulty_level=payload.difficulty_level,
        reply_id=payload.reply_id,
    )


# 코드 실행 + 채점 + 귀속
@router.post("/practice/{attempt_id}/submit")
def submit_practice(
    payload: PracticeSubmitRequest,
    attempt_id: int = Path(..., ge=1),
    db: Session = Depends(get_db),
    user=Depends(get_current_user),
    runner: CodeRunner = Depends(get_code_runner),
):
    test_cases = [tc.model_dump() for tc in payload.test_cases] if payload.test_cases else None
    return AttemptService.submit_practice(
        db,
        attempt_id=attempt_id,
        user_id=user["id"],
        code=payload.code,
        runner=runner,
        test_cases=test_cases,
        time_spent_seconds=payload.time_spent_seconds,
    )


@router.post("/quiz")
def start_quiz(
    payload: QuizStartRequest,
    db: Session = Depends(get_db),
    user=Depends(get_current_user),
):
    return AttemptService.start_quiz(
        db,
        user_id=user["id"],
        quiz_id=payload.quiz_id,
        topic_id=payload.topic_id,
        session_id=payload.session_id,
        reply_id=payload.reply_id,
    )


@router.post("/quiz/{attempt_id}/submit")
def submit_quiz(
    payload: QuizSubmitRequest,
    attempt_id: int = Path(..., ge=1),
    db: Session = Depends(get_db),
    user=Depends(get_current_user),
):
    return AttemptService.submit_quiz(
        db,
        attempt_id=attempt_id,
        user_id=user["id"],
        score=payload.score,
        max_possible_score=payload.max_possible_score,
        time_spent_seconds=payload.time_spent_seconds,
    )
