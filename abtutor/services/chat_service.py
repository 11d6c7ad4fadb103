"""
분할 화면(split-screen) 채팅
- 한 메시지를 세션의 모델들에게 각각 보내고, 모델 라벨이 붙은 응답(tagged reply)으로 저장
- 응답 평점(1~5)
"""
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from abtutor.db.base import utcnow
from abtutor.errors import NotFoundError, ValidationFailed
from abtutor.models.chat_message import ChatMessage
from abtutor.services import preserved_store
from abtutor.services.session_service import SessionManager
from abtutor.services.tutor_backend import TutorBackend

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 5000


def serialize_reply(m: ChatMessage) -> Dict[str, Any]:
    return {
        "id": m.id,
        "session_id": m.session_id,
        "model": m.model,
        "response": m.response,
        "response_time_ms": m.response_time_ms,
        "is_fallback": m.is_fallback,
        "user_rating": m.user_rating,
        "created_at": m.created_at.isoformat() if m.created_at else None,
    }


def history_for(conversation: List[Dict], label: str) -> List[Dict]:
    """사용자 발화 + 해당 모델의 응답만"""
    return [
        turn for turn in conversation
        if turn.get("role") == "user" or turn.get("model") == label
    ]


class ChatService:

    @staticmethod
    def send(
        db: Session,
        session_id: int,
        user_id: str,
        message: str,
        backends: Dict[str, TutorBackend],
        topic: Optional[str] = None,
        preferences: Optional[Dict] = None,
    ) -> Dict[str, Any]:
        if not message or not message.strip() or len(message) > MAX_MESSAGE_LENGTH:
            raise ValidationFailed({"message": f"required, at most {MAX_MESSAGE_LENGTH} characters"})

        session = SessionManager.get_owned(db, session_id, user_id)
        if not session.is_active():
            raise ValidationFailed({"session_id": "session has ended"})

        preserved = preserved_store.get(db, session.preserved_session_id)
        conversation = list(preserved.conversation_history or []) if preserved else []

        # 1) 모델별 호출 + 저장
        stored: List[ChatMessage] = []
        for label in session.ai_models_used or []:
            backend = backends.get(label)
            if backend is None:
                logger.warning("[CHAT] no backend for model=%s session_id=%s", label, session_id)
                continue
            reply = backend.send_message(message, history_for(conversation, label), preferences, topic)
            msg = ChatMessage(
                user_id=user_id,
                session_id=session.id,
                topic_id=session.topic_id,
                message=message,
                response=reply.text,
                model=label,
                response_time_ms=reply.latency_ms,
                is_fallback=reply.is_fallback,
            )
            db.add(msg)
            stored.append(msg)
        # 분할 화면에 함께 표시되므로 한 교환의 응답은 같은 시각
        shown_at = utcnow()
        for msg in stored:
            msg.created_at = shown_at
        db.flush()

        # 2) 보존 세션 대화 기록
        if preserved:
            preserved_store.append_message(preserved, {"role": "user", "content": message})
            for msg in stored:
                preserved_store.append_message(preserved, {
                    "role": "assistant",
                    "model": msg.model,
                    "content": msg.response,
                    "message_id": msg.id,
                })

        session.total_messages = (session.total_messages or 0) + 1
        db.commit()

        logger.info(
            "[CHAT] session_id=%s replies=%d fallback=%d",
            session.id, len(stored), sum(1 for m in stored if m.is_fallback),
        )
        return {
            "session_id": session.id,
            "total_messages": session.total_messages,
            "replies": [serialize_reply(m) for m in stored],
        }

    @staticmethod
    def rate_reply(db: Session, message_id: int, user_id: str, rating: int) -> Dict[str, Any]:
        if isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5:
            raise ValidationFailed({"rating": "must be an integer between 1 and 5"})

        msg = (
            db.query(ChatMessage)
            .filter(ChatMessage.id == message_id, ChatMessage.user_id == user_id)
            .first()
        )
        if not msg:
            raise NotFoundError("chat_message")

        msg.user_rating = rating
        db.commit()
        return serialize_reply(msg)
