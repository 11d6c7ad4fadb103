# abtutor/models/preserved_session.py
# 대화 이어하기용 보존 세션. tutoring_sessions.session_metadata 에서만 참조된다.
from sqlalchemy import Column, BigInteger, String, Boolean, DateTime, JSON, Index
from abtutor.db.base import Base, BigIntPK, utcnow


class PreservedSession(Base):
    __tablename__ = "preserved_sessions"

    id = Column(BigIntPK, primary_key=True, index=True)
    user_id = Column(String(64), nullable=False, index=True)
    session_identifier = Column(String(100), nullable=False, unique=True)
    topic_id = Column(BigInteger, nullable=True)
    lesson_id = Column(BigInteger, nullable=True)
    conversation_history = Column(JSON, nullable=False, default=list)
    session_metadata = Column(JSON, nullable=False, default=dict)
    is_active = Column(Boolean, nullable=False, default=True)
    last_activity = Column(DateTime, nullable=False, default=utcnow)
    session_type = Column(String(20), nullable=False, default="comparison")
    ai_models_used = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index("ix_preserved_sessions_user_activity", "user_id", "last_activity"),
    )
