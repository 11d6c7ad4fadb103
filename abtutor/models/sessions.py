# abtutor/models/sessions.py
from sqlalchemy import Column, Integer, BigInteger, String, Text, Boolean, DateTime, JSON, Index, text
from abtutor.db.base import Base, BigIntPK, utcnow

# 참여 유도 기준 (세션 상세 화면용)
ENGAGEMENT_SCORE_TRIGGER = 10
ENGAGEMENT_MINUTES_TRIGGER = 15


class TutoringSession(Base):
    __tablename__ = "tutoring_sessions"

    id = Column(BigIntPK, primary_key=True, index=True)
    user_id = Column(String(64), nullable=False, index=True)
    topic_id = Column(BigInteger, nullable=True)
    lesson_id = Column(BigInteger, nullable=True)
    session_type = Column(String(20), nullable=False, default="comparison")  # comparison|single
    ai_models_used = Column(JSON, nullable=False, default=list)

    started_at = Column(DateTime, nullable=False, default=utcnow)
    ended_at = Column(DateTime, nullable=True)

    total_messages = Column(Integer, nullable=False, default=0)
    engagement_score = Column(Integer, nullable=False, default=0)
    quiz_triggered = Column(Boolean, nullable=False, default=False)
    practice_triggered = Column(Boolean, nullable=False, default=False)
    practice_completed = Column(Boolean, nullable=False, default=False)

    user_choice = Column(String(20), nullable=True)   # model_a|model_b|both|neither
    choice_reason = Column(Text, nullable=True)
    clarification_needed = Column(Boolean, nullable=False, default=False)
    clarification_request = Column(Text, nullable=True)

    # preserved_session_id / preserved_session_identifier 역참조
    session_metadata = Column(JSON, nullable=False, default=dict)

    version_id = Column(Integer, nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=True, onupdate=utcnow)

    __table_args__ = (
        Index("ix_tutoring_sessions_user_lesson", "user_id", "lesson_id"),
        # lesson 단위 세션은 사용자당 활성 1개
        Index(
            "uq_tutoring_sessions_one_active_lesson",
            "user_id",
            unique=True,
            postgresql_where=text("ended_at IS NULL AND lesson_id IS NOT NULL"),
            sqlite_where=text("ended_at IS NULL AND lesson_id IS NOT NULL"),
        ),
    )

    __mapper_args__ = {"version_id_col": version_id}

    def is_active(self) -> bool:
        return self.ended_at is None

    def duration_minutes(self, now=None) -> int:
        end = self.ended_at or now or utcnow()
        if not self.started_at:
            return 0
        return max(0, int((end - self.started_at).total_seconds() // 60))

    def should_trigger_engagement(self, now=None) -> bool:
        return (
            (self.engagement_score or 0) >= ENGAGEMENT_SCORE_TRIGGER
            or self.duration_minutes(now) >= ENGAGEMENT_MINUTES_TRIGGER
        )

    @property
    def preserved_session_id(self):
        return (self.session_metadata or {}).get("preserved_session_id")
