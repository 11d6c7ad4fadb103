from fastapi import APIRouter, Depends, Path
from sqlalchemy.orm import Session

from abtutor.deps import get_db, get_current_user
from abtutor.schemas.tutoring import (
    ChoiceRequest,
    ClarificationRequest,
    EngagementRequest,
    EngagementResponse,
    SessionEndResponse,
    SessionStartRequest,
    SessionStartResponse,
    ThresholdStatus,
)
from abtutor.services.preference_service import PreferenceService
from abtutor.services.session_service import SessionManager

router = APIRouter(prefix="/api/sessions", tags=["sessions"])


# 세션 시작 (레슨당 활성 세션 1개, 종료된 세션은 재활성화)
@router.post("/start", response_model=SessionStartResponse)
def start_session(
    payload: SessionStartRequest,
    db: Session = Depends(get_db),
    user=Depends(get_current_user),
):
    return SessionManager.start(
        db,
        user_id=user["id"],
        session_type=payload.session_type,
        ai_models=payload.ai_models,
        lesson_id=payload.lesson_id,
        topic_id=payload.topic_id,
    )


# 현재 활성 세션 (없으면 session=null)
@router.get("/active")
def get_active_session(
    db: Session = Depends(get_db),
    user=Depends(get_current_user),
):
    active = SessionManager.get_active_session(db, user["id"])
    if active is None:
        return {"session": None, "is_active": False}
    return active


@router.get("/{session_id}")
def get_session(
    session_id: int = Path(..., ge=1),
    db: Session = Depends(get_db),
    user=Depends(get_current_user),
):
    return SessionManager.get_session(db, session_id, user["id"])


@router.post("/{session_id}/end", response_model=SessionEndResponse)
def end_session(
    session_id: int = Path(..., ge=1),
    db: Session = Depends(get_db),
    user=Depends(get_current_user),
):
    return SessionManager.end(db, session_id, user["id"])


@router.post("/{session_id}/engagement", response_model=EngagementResponse)
def increment_engagement(
    payload: EngagementRequest,
    session_id: int = Path(..., ge=1),
    db: Session = Depends(get_db),
    user=Depends(get_current_user),
):
    return SessionManager.increment_engagement(db, session_id, user["id"], payload.points)


@router.get("/{session_id}/threshold-status", response_model=ThresholdStatus)
def get_threshold_status(
    session_id: int = Path(..., ge=1),
    db: Session = Depends(get_db),
    user=Depends(get_current_user),
):
    return SessionManager.threshold_status(db, session_id, user["id"])


# 사용자 선호 기록 (퀴즈/연습/코드 실행 직후)
@router.post("/{session_id}/choice")
def record_choice(
    payload: ChoiceRequest,
    session_id: int = Path(..., ge=1),
    db: Session = Depends(get_db),
    user=Depends(get_current_user),
):
    log = PreferenceService.record_choice(
        db,
        session_id=session_id,
        user_id=user["id"],
        choice=payload.choice,
        reason=payload.reason,
        activity_type=payload.activity_type,
        overrides=payload.overrides(),
    )
    return {"message": "preference_recorded", "preference": log}


@router.post("/{session_id}/clarification")
def request_clarification(
    payload: ClarificationRequest,
    session_id: int = Path(..., ge=1),
    db: Session = Depends(get_db),
    user=Depends(get_current_user),
):
    return SessionManager.request_clarification(db, session_id, user["id"], payload.request)
