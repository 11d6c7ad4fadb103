# abtutor/models/attempts.py
from sqlalchemy import Column, Integer, BigInteger, Numeric, String, Text, Boolean, DateTime, JSON, Index
from sqlalchemy.orm import synonym
from abtutor.db.base import Base, BigIntPK, utcnow


class AttributionColumns:
    """연습/퀴즈 시도 공통 귀속 컬럼"""

    attribution_chat_message_id = Column(BigInteger, nullable=True, index=True)
    attribution_model = Column(String(20), nullable=True)
    attribution_confidence = Column(String(20), nullable=True)  # explicit|temporal|...
    attribution_delay_sec = Column(Integer, nullable=True)

    def is_attributed(self) -> bool:
        return self.attribution_chat_message_id is not None

    def stamp_attribution(self, fields) -> None:
        self.attribution_chat_message_id = fields.chat_message_id
        self.attribution_model = fields.model
        self.attribution_confidence = fields.confidence
        self.attribution_delay_sec = fields.delay_sec


class PracticeAttempt(AttributionColumns, Base):
    __tablename__ = "practice_attempts"

    id = Column(BigIntPK, primary_key=True, index=True)
    user_id = Column(String(64), nullable=False)
    problem_id = Column(BigInteger, nullable=False)
    topic_id = Column(BigInteger, nullable=True)
    session_id = Column(BigInteger, nullable=True)
    difficulty_level = Column(String(20), nullable=True)  # beginner|easy|medium|hard|expert

    submitted_code = Column(Text, nullable=True)
    is_correct = Column(Boolean, nullable=False, default=False)
    points_earned = Column(Integer, nullable=True)
    complexity_score = Column(Numeric(5, 2), nullable=True)
    time_spent_seconds = Column(Integer, nullable=True)
    attempt_number = Column(Integer, nullable=False, default=1)

    compiler_errors = Column(JSON, nullable=False, default=list)
    runtime_errors = Column(JSON, nullable=False, default=list)
    test_case_results = Column(JSON, nullable=False, default=list)
    execution_time_ms = Column(Integer, nullable=True)
    status = Column(String(20), nullable=False, default="started")  # started|submitted|evaluated

    created_at = Column(DateTime, nullable=False, default=utcnow)
    submitted_at = Column(DateTime, nullable=True)
    # 채점이 끝난 시각. 분석/지표는 이 시각 기준
    finished_at = synonym("submitted_at")

    __table_args__ = (
        Index("ix_practice_attempts_user_created", "user_id", "created_at"),
    )

    def error_count(self) -> int:
        return len(self.compiler_errors or []) + len(self.runtime_errors or [])


class QuizAttempt(AttributionColumns, Base):
    __tablename__ = "quiz_attempts"

    id = Column(BigIntPK, primary_key=True, index=True)
    user_id = Column(String(64), nullable=False)
    quiz_id = Column(BigInteger, nullable=False)
    topic_id = Column(BigInteger, nullable=True)
    session_id = Column(BigInteger, nullable=True)

    score = Column(Integer, nullable=True)
    max_possible_score = Column(Integer, nullable=True)
    percentage = Column(Numeric(5, 2), nullable=True)
    passed = Column(Boolean, nullable=True)
    time_spent_seconds = Column(Integer, nullable=True)
    attempt_number = Column(Integer, nullable=False, default=1)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    completed_at = Column(DateTime, nullable=True)
    finished_at = synonym("completed_at")

    __table_args__ = (
        Index("ix_quiz_attempts_user_created", "user_id", "created_at"),
    )
