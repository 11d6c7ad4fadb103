# abtutor/models/chat_message.py
# 모델 라벨이 붙은 튜터 응답 (tagged reply)
from sqlalchemy import Column, Integer, BigInteger, String, Text, Boolean, DateTime, Index
from abtutor.db.base import Base, BigIntPK, utcnow


class ChatMessage(Base):
    __tablename__ = "chat_messages"

    id = Column(BigIntPK, primary_key=True, index=True)
    user_id = Column(String(64), nullable=False)
    session_id = Column(BigInteger, nullable=True, index=True)
    topic_id = Column(BigInteger, nullable=True)

    message = Column(Text, nullable=False, default="")
    response = Column(Text, nullable=True)

    model = Column(String(20), nullable=True)        # model_a|model_b
    response_time_ms = Column(Integer, nullable=True)
    is_fallback = Column(Boolean, nullable=False, default=False)
    user_rating = Column(Integer, nullable=True)     # 1~5

    created_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index("ix_chat_messages_user_created", "user_id", "created_at"),
        Index("ix_chat_messages_model_created", "model", "created_at"),
    )
