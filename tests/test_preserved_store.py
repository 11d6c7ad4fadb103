"""Preserved conversation store tests."""
from datetime import timedelta

from abtutor.services import preserved_store


def test_create_and_lookup(db, user_id):
    ps = preserved_store.create(db, user_id, topic_id=3, lesson_id=1, ai_models=["model_a"])
    db.commit()

    assert ps.id is not None
    assert ps.session_identifier.startswith(f"{user_id}_")
    assert preserved_store.get(db, ps.id) is ps
    assert preserved_store.get(db, None) is None


def test_most_recent_active_per_topic(db, user_id):
    old = preserved_store.create(db, user_id, topic_id=1)
    new = preserved_store.create(db, user_id, topic_id=2)
    old.last_activity = new.last_activity - timedelta(minutes=5)
    db.commit()

    assert preserved_store.most_recent(db, user_id) is new
    assert preserved_store.most_recent(db, user_id, topic_id=1) is old

    preserved_store.mark_inactive(new)
    db.commit()
    assert preserved_store.most_recent(db, user_id) is old
    assert preserved_store.most_recent(db, "nobody") is None


def test_append_message_and_activity(db, user_id):
    ps = preserved_store.create(db, user_id)
    ps.last_activity = ps.last_activity - timedelta(hours=1)
    before = ps.last_activity

    preserved_store.append_message(ps, {"role": "user", "content": "안녕"})
    preserved_store.append_message(ps, {"role": "assistant", "model": "model_a", "content": "반가워요"})
    db.commit()
    db.refresh(ps)

    assert [m["role"] for m in ps.conversation_history] == ["user", "assistant"]
    assert ps.last_activity > before

    preserved_store.mark_inactive(ps)
    preserved_store.mark_active(ps)
    preserved_store.touch(ps)
    assert ps.is_active is True
