# abtutor/services/preserved_store.py
# 보존 세션(대화 이어하기) 저장소. 세션 내부 구조는 여기서만 다룬다.
import uuid
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from abtutor.db.base import utcnow
from abtutor.models.preserved_session import PreservedSession


def create(
    db: Session,
    user_id: str,
    topic_id: Optional[int] = None,
    lesson_id: Optional[int] = None,
    session_type: str = "comparison",
    ai_models: Optional[List[str]] = None,
) -> PreservedSession:
    ps = PreservedSession(
        user_id=user_id,
        session_identifier=f"{user_id}_{uuid.uuid4().hex[:12]}",
        topic_id=topic_id,
        lesson_id=lesson_id,
        conversation_history=[],
        session_metadata={},
        is_active=True,
        last_activity=utcnow(),
        session_type=session_type,
        ai_models_used=list(ai_models or []),
    )
    db.add(ps)
    db.flush()  # PK 채우기
    return ps


def get(db: Session, preserved_id: Optional[int]) -> Optional[PreservedSession]:
    if preserved_id is None:
        return None
    return db.get(PreservedSession, preserved_id)


def most_recent(db: Session, user_id: str, topic_id: Optional[int] = None) -> Optional[PreservedSession]:
    q = db.query(PreservedSession).filter(
        PreservedSession.user_id == user_id,
        PreservedSession.is_active.is_(True),
    )
    if topic_id is not None:
        q = q.filter(PreservedSession.topic_id == topic_id)
    return q.order_by(PreservedSession.last_activity.desc()).first()


def mark_active(ps: PreservedSession) -> None:
    ps.is_active = True
    ps.last_activity = utcnow()


def mark_inactive(ps: PreservedSession) -> None:
    ps.is_active = False


def touch(ps: PreservedSession) -> None:
    ps.last_activity = utcnow()


def append_message(ps: PreservedSession, message: Dict) -> None:
    # JSON 컬럼은 새 리스트를 할당해야 변경 감지됨
    ps.conversation_history = list(ps.conversation_history or []) + [message]
    ps.last_activity = utcnow()
