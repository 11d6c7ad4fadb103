from typing import Dict

from fastapi import APIRouter, Depends, Path
from sqlalchemy.orm import Session

from abtutor.deps import get_db, get_current_user, get_tutor_backends
from abtutor.schemas.tutoring import ChatRequest, RatingRequest
from abtutor.services.chat_service import ChatService
from abtutor.services.tutor_backend import TutorBackend

router = APIRouter(prefix="/api/chat", tags=["chat"])


# 분할 화면 채팅: 세션의 모델들에게 같은 메시지 전송
@router.post("/sessions/{session_id}/messages")
def send_message(
    payload: ChatRequest,
    session_id: int = Path(..., ge=1),
    db: Session = Depends(get_db),
    user=Depends(get_current_user),
    backends: Dict[str, TutorBackend] = Depends(get_tutor_backends),
):
    return ChatService.send(
        db,
        session_id=session_id,
        user_id=user["id"],
        message=payload.message,
        backends=backends,
        topic=payload.topic,
        preferences=payload.preferences,
    )


@router.post("/replies/{message_id}/rating")
def rate_reply(
    payload: RatingRequest,
    message_id: int = Path(..., ge=1),
    db: Session = Depends(get_db),
    user=Depends(get_current_user),
):
    return ChatService.rate_reply(db, message_id, user["id"], payload.rating)
