# abtutor/db/models.py
# DB 모델 등록: tutoring_sessions, preserved_sessions, chat_messages, practice/quiz attempts, ai_preference_logs
from abtutor.db.session import Base
from abtutor.models.sessions import TutoringSession
from abtutor.models.preserved_session import PreservedSession
from abtutor.models.chat_message import ChatMessage
from abtutor.models.attempts import PracticeAttempt, QuizAttempt
from abtutor.models.preference_log import PreferenceLog

__all__ = [
    "TutoringSession",
    "PreservedSession",
    "ChatMessage",
    "PracticeAttempt",
    "QuizAttempt",
    "PreferenceLog",
    "init_db",
]


def init_db(bind) -> None:
    """운영에서는 마이그레이션으로 관리. 로컬/테스트에서만 테이블 생성용."""
    Base.metadata.create_all(bind=bind)
