"""Session lifecycle tests."""
import threading
from unittest.mock import patch

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from abtutor.errors import NotFoundError, TransientStoreConflict, ValidationFailed
from abtutor.models.preserved_session import PreservedSession
from abtutor.models.sessions import TutoringSession
from abtutor.services.session_service import SessionManager, TriggerPolicy


def _active(db, user_id):
    db.expire_all()
    return (
        db.query(TutoringSession)
        .filter(TutoringSession.user_id == user_id, TutoringSession.ended_at.is_(None))
        .all()
    )


def test_start_creates_linked_pair(db, user_id):
    out = SessionManager.start(db, user_id, "comparison", ["model_a", "model_b"], lesson_id=1, topic_id=3)

    session = db.get(TutoringSession, out["session_id"])
    preserved = db.query(PreservedSession).one()
    assert out["reactivated"] is False
    assert out["ai_models"] == ["model_a", "model_b"]
    assert out["preserved_session_id"] == preserved.session_identifier
    assert session.preserved_session_id == preserved.id
    assert session.engagement_score == 0
    assert not session.quiz_triggered and not session.practice_triggered
    assert preserved.is_active is True


def test_start_same_lesson_returns_active_session_unchanged(db, user_id):
    first = SessionManager.start(db, user_id, lesson_id=1)
    second = SessionManager.start(db, user_id, lesson_id=1)

    assert second["session_id"] == first["session_id"]
    assert second["reactivated"] is False
    assert db.query(TutoringSession).count() == 1


def test_start_other_lesson_ends_previous(db, user_id):
    first = SessionManager.start(db, user_id, lesson_id=1)
    second = SessionManager.start(db, user_id, lesson_id=2)

    active = _active(db, user_id)
    assert [s.id for s in active] == [second["session_id"]]
    old = db.get(TutoringSession, first["session_id"])
    assert old.ended_at is not None
    old_preserved = db.get(PreservedSession, old.preserved_session_id)
    assert old_preserved.is_active is False


def test_other_users_sessions_are_untouched(db, user_id):
    theirs = SessionManager.start(db, "other-user", lesson_id=1)
    SessionManager.start(db, user_id, lesson_id=2)

    assert db.get(TutoringSession, theirs["session_id"]).ended_at is None


def test_restart_after_end_reactivates_same_session(db, user_id):
    first = SessionManager.start(db, user_id, lesson_id=5)
    SessionManager.increment_engagement(db, first["session_id"], user_id, 7)
    SessionManager.end(db, first["session_id"], user_id)

    again = SessionManager.start(db, user_id, lesson_id=5)

    assert again["session_id"] == first["session_id"]
    assert again["reactivated"] is True
    assert again["preserved_session_id"] == first["preserved_session_id"]
    session = db.get(TutoringSession, first["session_id"])
    assert session.ended_at is None
    assert session.engagement_score == 7
    assert db.query(TutoringSession).count() == 1


def test_reactivation_picks_most_recently_ended(db, user_id):
    a = SessionManager.start(db, user_id, lesson_id=5)
    SessionManager.start(db, user_id, lesson_id=6)   # a 종료
    SessionManager.start(db, user_id, lesson_id=5)   # a 재활성화
    SessionManager.end(db, a["session_id"], user_id)

    again = SessionManager.start(db, user_id, lesson_id=5)
    assert again["session_id"] == a["session_id"]


def test_lessonless_sessions_are_exempt(db, user_id):
    one = SessionManager.start(db, user_id)
    two = SessionManager.start(db, user_id)

    assert one["session_id"] != two["session_id"]
    assert len(_active(db, user_id)) == 2

    lesson = SessionManager.start(db, user_id, lesson_id=9)
    assert [s.id for s in _active(db, user_id)] == [lesson["session_id"]]


@pytest.mark.parametrize(
    "kwargs, field",
    [
        ({"session_type": "solo"}, "session_type"),
        ({"ai_models": ["model_c"]}, "ai_models"),
        ({"ai_models": []}, "ai_models"),
    ],
)
def test_start_validation(db, user_id, kwargs, field):
    with pytest.raises(ValidationFailed) as exc:
        SessionManager.start(db, user_id, lesson_id=1, **kwargs)
    assert field in exc.value.errors
    assert exc.value.status_code == 422


def test_start_retries_once_on_conflict(db, user_id):
    real_start_once = SessionManager._start_once
    calls = {"n": 0}

    def flaky(*args, **kwargs):
        calls["n"] += 1
        if calls["n"] == 1:
            raise IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed"))
        return real_start_once(*args, **kwargs)

    with patch.object(SessionManager, "_start_once", side_effect=flaky):
        out = SessionManager.start(db, user_id, lesson_id=1)

    assert calls["n"] == 2
    assert db.get(TutoringSession, out["session_id"]) is not None


def test_start_surfaces_conflict_after_second_failure(db, user_id):
    locked = OperationalError("SELECT", {}, Exception("database is locked"))
    with patch.object(SessionManager, "_start_once", side_effect=[locked, locked]):
        with pytest.raises(TransientStoreConflict) as exc:
            SessionManager.start(db, user_id, lesson_id=1)
    assert exc.value.status_code == 409


def test_start_reraises_non_transient_store_errors(db, user_id):
    broken = OperationalError("SELECT", {}, Exception("disk I/O error"))
    with patch.object(SessionManager, "_start_once", side_effect=broken) as mocked:
        with pytest.raises(OperationalError):
            SessionManager.start(db, user_id, lesson_id=1)
    assert mocked.call_count == 1


def test_concurrent_start_yields_single_active_session(session_factory, db, user_id):
    barrier = threading.Barrier(2)
    results, errors = [], []

    def worker():
        s = session_factory()
        try:
            barrier.wait()
            results.append(SessionManager.start(s, user_id, lesson_id=7)["session_id"])
        except Exception as e:
            errors.append(e)
        finally:
            s.close()

    threads = [threading.Thread(target=worker) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)

    assert errors == []
    assert len(results) == 2
    assert results[0] == results[1]
    assert len(_active(db, user_id)) == 1


def test_end_reports_metrics_and_deactivates_preserved(db, user_id):
    out = SessionManager.start(db, user_id, lesson_id=1)
    SessionManager.increment_engagement(db, out["session_id"], user_id, 4)

    ended = SessionManager.end(db, out["session_id"], user_id)

    assert ended["engagement_score"] == 4
    assert ended["total_messages"] == 0
    assert ended["duration_minutes"] == 0
    assert db.query(PreservedSession).one().is_active is False


def test_end_other_users_session_is_not_found(db, user_id):
    out = SessionManager.start(db, user_id, lesson_id=1)
    with pytest.raises(NotFoundError) as exc:
        SessionManager.end(db, out["session_id"], "intruder")
    assert exc.value.detail == {"message": "session_not_found"}


def test_increment_validates_points(db, user_id):
    out = SessionManager.start(db, user_id, lesson_id=1)
    for bad in (0, 11, -1, True, 2.5):
        with pytest.raises(ValidationFailed):
            SessionManager.increment_engagement(db, out["session_id"], user_id, bad)
    with pytest.raises(NotFoundError):
        SessionManager.increment_engagement(db, 999, user_id, 1)


def test_triggers_flip_once_and_never_revert(db, user_id):
    sid = SessionManager.start(db, user_id, lesson_id=1)["session_id"]

    newly = []
    for _ in range(8):
        out = SessionManager.increment_engagement(db, sid, user_id, 10)
        newly.append(out["newly_triggered"])

    # 30 점에서 퀴즈, 70 점에서 연습
    assert [n["quiz"] for n in newly] == [False, False, True, False, False, False, False, False]
    assert [n["practice"] for n in newly] == [False, False, False, False, False, False, True, False]
    assert out["engagement_score"] == 80
    assert out["quiz_triggered"] is True and out["practice_triggered"] is True


def test_single_big_increment_can_trigger_both(db, user_id):
    sid = SessionManager.start(db, user_id, lesson_id=1)["session_id"]
    policy = TriggerPolicy(quiz_threshold=5, practice_threshold=8)

    out = SessionManager.increment_engagement(db, sid, user_id, 9, policy=policy)

    assert out["newly_triggered"] == {"quiz": True, "practice": True}
    assert out["threshold_status"]["practice_unlocked"] is True


def test_practice_waits_for_quiz_flag(db, user_id):
    sid = SessionManager.start(db, user_id, lesson_id=1)["session_id"]
    policy = TriggerPolicy(quiz_threshold=50, practice_threshold=10)

    out = SessionManager.increment_engagement(db, sid, user_id, 10, policy=policy)
    assert out["practice_triggered"] is False
    assert out["threshold_status"]["practice_unlocked"] is False

    relaxed = TriggerPolicy(quiz_threshold=50, practice_threshold=10, practice_requires_quiz=False)
    out = SessionManager.increment_engagement(db, sid, user_id, 1, policy=relaxed)
    assert out["newly_triggered"]["practice"] is True


def test_threshold_status_snapshot(db, user_id):
    sid = SessionManager.start(db, user_id, lesson_id=1)["session_id"]
    SessionManager.increment_engagement(db, sid, user_id, 10)
    SessionManager.increment_engagement(db, sid, user_id, 2)

    status = SessionManager.threshold_status(db, sid, user_id)

    assert status == {
        "quiz_threshold": 30,
        "practice_threshold": 70,
        "current_score": 12,
        "quiz_unlocked": False,
        "practice_unlocked": False,
        "quiz_triggered": False,
        "practice_triggered": False,
        "points_to_quiz": 18,
        "points_to_practice": 58,
    }


def test_active_session_lookup_and_details(db, user_id):
    assert SessionManager.get_active_session(db, user_id) is None

    sid = SessionManager.start(db, user_id, lesson_id=1)["session_id"]
    SessionManager.increment_engagement(db, sid, user_id, 10)

    active = SessionManager.get_active_session(db, user_id)
    assert active["session"]["id"] == sid
    assert active["should_trigger_engagement"] is True

    details = SessionManager.get_session(db, sid, user_id)
    assert details["is_active"] is True
    assert details["tica_metrics"]["engagement_score"] == 10
    assert details["tica_metrics"]["clarification_needed"] is False


def test_request_clarification(db, user_id):
    sid = SessionManager.start(db, user_id, lesson_id=1)["session_id"]

    out = SessionManager.request_clarification(db, sid, user_id, "  재귀 설명이 헷갈려요 ")
    assert out == {"session_id": sid, "clarification_needed": True, "clarification_request": "재귀 설명이 헷갈려요"}

    with pytest.raises(ValidationFailed):
        SessionManager.request_clarification(db, sid, user_id, "   ")
