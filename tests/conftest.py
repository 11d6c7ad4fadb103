"""Pytest configuration and shared fixtures."""
from unittest.mock import Mock

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from abtutor.db.models import init_db
from abtutor.db.session import build_engine
from abtutor.models.chat_message import ChatMessage
from abtutor.services.code_runner import CodeRunner, ExecutionResult
from abtutor.services.tutor_backend import TutorBackend, TutorReply


@pytest.fixture
def engine(tmp_path):
    """테스트마다 새 sqlite 파일 DB"""
    eng = build_engine(f"sqlite:///{tmp_path / 'test.db'}")
    init_db(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def user_id():
    return "user-a1"


@pytest.fixture
def make_reply(db):
    """모델 라벨이 붙은 튜터 응답 저장"""

    def _make(user_id, model, created_at, session_id=None, rating=None, latency=0, fallback=False, topic_id=None):
        msg = ChatMessage(
            user_id=user_id,
            session_id=session_id,
            topic_id=topic_id,
            message="질문",
            response="답변",
            model=model,
            response_time_ms=latency,
            is_fallback=fallback,
            user_rating=rating,
            created_at=created_at,
        )
        db.add(msg)
        db.commit()
        return msg

    return _make


@pytest.fixture
def fake_backends():
    """send_message 가 고정 응답을 돌려주는 모델 A / B"""
    backends = {}
    for label, latency in (("model_a", 120), ("model_b", 340)):
        backend = Mock(spec=TutorBackend)
        backend.label = label
        backend.send_message.return_value = TutorReply(text=f"{label} says hi", latency_ms=latency)
        backends[label] = backend
    return backends


@pytest.fixture
def fake_runner():
    runner = Mock(spec=CodeRunner)
    runner.run.return_value = ExecutionResult(success=True, stdout="3\n", execution_time_ms=42)
    return runner


@pytest.fixture
def client(session_factory, user_id, fake_backends, fake_runner):
    """get_db / 인증 / 외부 서비스를 override 한 TestClient"""
    from abtutor.deps import get_code_runner, get_current_user, get_db, get_tutor_backends
    from abtutor.main import app

    def override_get_db():
        session = session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = lambda: {"id": user_id, "email": None}
    app.dependency_overrides[get_tutor_backends] = lambda: fake_backends
    app.dependency_overrides[get_code_runner] = lambda: fake_runner
    yield TestClient(app)
    app.dependency_overrides.clear()
