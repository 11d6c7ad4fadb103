# abtutor/models/preference_log.py
# 선호 관측 1건 = 사용자의 선택 이벤트 1건. 생성 후 수정하지 않는다.
from sqlalchemy import Column, Integer, BigInteger, String, Text, DateTime, JSON, Numeric, Index
from abtutor.db.base import Base, BigIntPK, utcnow

INTERACTION_TYPES = ("quiz", "practice", "code_execution")
CHOICES = ("model_a", "model_b", "both", "neither")


class PreferenceLog(Base):
    __tablename__ = "ai_preference_logs"

    id = Column(BigIntPK, primary_key=True, index=True)
    user_id = Column(String(64), nullable=False, index=True)
    session_id = Column(BigInteger, nullable=True, index=True)
    topic_id = Column(BigInteger, nullable=True)

    interaction_type = Column(String(20), nullable=False)
    chosen_ai = Column(String(20), nullable=False)
    choice_reason = Column(Text, nullable=True)

    performance_score = Column(Numeric(5, 2), nullable=True)   # 0~100
    success_rate = Column(Numeric(5, 2), nullable=True)        # 0~100
    time_spent_seconds = Column(Integer, nullable=True)
    attempt_count = Column(Integer, nullable=False, default=1)
    difficulty_level = Column(String(20), nullable=True)
    context_data = Column(JSON, nullable=False, default=dict)

    attribution_chat_message_id = Column(BigInteger, nullable=True)
    attribution_model = Column(String(20), nullable=True)
    attribution_confidence = Column(Numeric(5, 4), nullable=True)  # 0~1
    attribution_delay_sec = Column(Integer, nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index("ix_ai_preference_logs_user_created", "user_id", "created_at"),
    )
