"""Preference recording and summary tests."""
from datetime import datetime, timedelta

import pytest

from abtutor.errors import NotFoundError, ValidationFailed
from abtutor.models.attempts import PracticeAttempt, QuizAttempt
from abtutor.models.preference_log import PreferenceLog
from abtutor.models.sessions import TutoringSession
from abtutor.services.preference_service import PreferenceService, parse_window
from abtutor.services.session_service import SessionManager

T0 = datetime(2026, 3, 2, 9, 0, 0)


@pytest.fixture
def session_id(db, user_id):
    return SessionManager.start(db, user_id, lesson_id=1, topic_id=4)["session_id"]


def _flag(db, session_id, **flags):
    s = db.get(TutoringSession, session_id)
    for k, v in flags.items():
        setattr(s, k, v)
    db.commit()


@pytest.mark.parametrize(
    "window, expected",
    [
        ("7d", timedelta(days=7)),
        ("2w", timedelta(weeks=2)),
        (" 14D ", timedelta(days=14)),
        ("0d", timedelta(0)),
        ("30", timedelta(days=30)),
        ("abc", timedelta(days=30)),
        ("", timedelta(days=30)),
        (None, timedelta(days=30)),
    ],
)
def test_parse_window(window, expected):
    assert parse_window(window, now=T0) == T0 - expected


def test_record_choice_for_quiz_uses_attributed_attempt(db, user_id, session_id, make_reply):
    reply = make_reply(user_id, "model_b", T0)
    db.add(QuizAttempt(
        user_id=user_id, quiz_id=2, topic_id=4, score=9, max_possible_score=10,
        percentage=90, passed=True, time_spent_seconds=60, attempt_number=1,
        attribution_chat_message_id=reply.id, attribution_model="model_b",
        attribution_confidence="explicit", attribution_delay_sec=0, created_at=T0, completed_at=T0,
    ))
    db.commit()
    _flag(db, session_id, quiz_triggered=True)

    log = PreferenceService.record_choice(db, session_id, user_id, "model_b", "설명이 더 명확함")

    assert log["interaction_type"] == "quiz"
    assert log["performance_score"] == 90.0
    assert log["success_rate"] == 100.0
    assert log["attribution_chat_message_id"] == reply.id
    assert log["attribution_model"] == "model_b"
    assert log["attribution_confidence"] == 0.85
    assert log["attribution_delay_sec"] == 0
    assert log["context_data"]["quiz_id"] == 2

    session = db.get(TutoringSession, session_id)
    assert session.user_choice == "model_b"
    assert session.choice_reason == "설명이 더 명확함"


def test_default_activity_order(db, user_id, session_id):
    out = PreferenceService.record_choice(db, session_id, user_id, "both")
    assert out["interaction_type"] == "code_execution"

    _flag(db, session_id, practice_triggered=True)
    assert PreferenceService.record_choice(db, session_id, user_id, "both")["interaction_type"] == "practice"

    _flag(db, session_id, quiz_triggered=True)
    assert PreferenceService.record_choice(db, session_id, user_id, "both")["interaction_type"] == "quiz"


def test_code_execution_attribution_from_session_reply(db, user_id, session_id, make_reply):
    reply = make_reply(user_id, "model_a", T0, session_id=session_id)

    log = PreferenceService.record_choice(
        db, session_id, user_id, "model_a", activity_type="code_execution",
        now=T0 + timedelta(seconds=45),
    )

    assert log["attribution_chat_message_id"] == reply.id
    assert log["attribution_confidence"] == 0.85
    assert log["attribution_delay_sec"] == 45
    assert log["context_data"] == {"message_id": reply.id, "message_type": "ai_response"}


def test_overrides_fill_only_missing_metrics(db, user_id, session_id):
    db.add(PracticeAttempt(
        user_id=user_id, problem_id=1, topic_id=4, is_correct=True,
        status="evaluated", created_at=T0, submitted_at=T0,
    ))
    db.commit()

    log = PreferenceService.record_choice(
        db, session_id, user_id, "model_a", activity_type="practice",
        overrides={
            "success_rate": 10,
            "time_spent_seconds": 300,
            "attribution_confidence": "weak",
            "attribution_delay_sec": -20,
            "context_data": {"ui": "split"},
        },
    )

    assert log["success_rate"] == 100.0
    assert log["time_spent_seconds"] == 300
    assert log["attribution_confidence"] == 0.40
    assert log["attribution_delay_sec"] == 0
    assert log["context_data"]["ui"] == "split"
    assert log["context_data"]["problem_id"] == 1


def test_unknown_confidence_label_is_stored_as_null(db, user_id, session_id):
    log = PreferenceService.record_choice(
        db, session_id, user_id, "neither", activity_type="quiz",
        overrides={"attribution_confidence": "sort-of"},
    )
    assert log["attribution_confidence"] is None
    assert log["attempt_count"] == 1


def test_record_choice_validation_and_ownership(db, user_id, session_id):
    with pytest.raises(ValidationFailed) as exc:
        PreferenceService.record_choice(db, session_id, user_id, "model_c", activity_type="essay")
    assert set(exc.value.errors) == {"choice", "activity_type"}

    with pytest.raises(NotFoundError):
        PreferenceService.record_choice(db, session_id, "intruder", "model_a")

    assert db.query(PreferenceLog).count() == 0


def test_preference_summary(db, user_id):
    now = T0 + timedelta(days=1)
    rows = [
        ("model_a", "quiz", 90, 1),
        ("model_a", "practice", 40, 2),
        ("model_b", "quiz", 70, 3),
        ("both", "code_execution", None, 4),
        ("model_b", "quiz", 100, 24 * 40),   # window 밖
    ]
    for chosen, kind, rate, hours_ago in rows:
        db.add(PreferenceLog(
            user_id=user_id, interaction_type=kind, chosen_ai=chosen,
            success_rate=rate, attempt_count=1, context_data={},
            created_at=now - timedelta(hours=hours_ago),
        ))
    db.add(PreferenceLog(
        user_id="someone-else", interaction_type="quiz", chosen_ai="model_a",
        attempt_count=1, context_data={}, created_at=now,
    ))
    db.commit()

    summary = PreferenceService.preference_summary(db, user_id, window="30d", now=now)

    assert summary["total_choices"] == 4
    assert summary["ai_choices"] == {"model_a": 2, "model_b": 1, "both": 1}
    assert summary["interaction_types"] == {"quiz": 2, "practice": 1, "code_execution": 1}
    assert summary["success_rates"] == {"model_a": 50.0, "model_b": 100.0, "both": 0.0, "neither": 0}
    assert [p["chosen_ai"] for p in summary["recent_preferences"]] == ["model_a", "model_a", "model_b", "both"]

    quiz_only = PreferenceService.preference_summary(db, user_id, window="1w", interaction_type="quiz", now=now)
    assert quiz_only["total_choices"] == 2
