"""
튜터링 세션 생명주기
- 세션 시작 (lesson 단위 활성 세션 1개 유지, 종료된 세션 재활성화)
- 세션 종료
- 참여도 증가 + 퀴즈/연습 트리거
- 활성 세션/상세/임계값 상태 조회
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import or_, text
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from abtutor.config import settings
from abtutor.db.base import utcnow
from abtutor.errors import NotFoundError, TransientStoreConflict, ValidationFailed
from abtutor.models.preserved_session import PreservedSession
from abtutor.models.sessions import TutoringSession
from abtutor.services import preserved_store

logger = logging.getLogger(__name__)

SESSION_TYPES = ("comparison", "single")

# lock 대기/직렬화 실패/교착 (PostgreSQL SQLSTATE)
_TRANSIENT_PGCODES = {"55P03", "40P01", "40001"}


@dataclass
class TriggerPolicy:
    """퀴즈/연습 트리거 기준. 두 플래그 모두 한 번 켜지면 다시 꺼지지 않는다."""

    quiz_threshold: int = 30
    practice_threshold: int = 70
    practice_requires_quiz: bool = True

    @classmethod
    def from_settings(cls) -> "TriggerPolicy":
        return cls(
            quiz_threshold=settings.quiz_threshold,
            practice_threshold=settings.practice_threshold,
        )

    def should_trigger_quiz(self, s: TutoringSession) -> bool:
        return s.engagement_score >= self.quiz_threshold and not s.quiz_triggered

    def should_trigger_practice(self, s: TutoringSession) -> bool:
        if s.practice_triggered or s.engagement_score < self.practice_threshold:
            return False
        return s.quiz_triggered or not self.practice_requires_quiz

    def status(self, s: TutoringSession) -> Dict[str, Any]:
        score = s.engagement_score or 0
        practice_unlocked = score >= self.practice_threshold and (
            s.quiz_triggered or not self.practice_requires_quiz
        )
        return {
            "quiz_threshold": self.quiz_threshold,
            "practice_threshold": self.practice_threshold,
            "current_score": score,
            "quiz_unlocked": score >= self.quiz_threshold,
            "practice_unlocked": practice_unlocked,
            "quiz_triggered": s.quiz_triggered,
            "practice_triggered": s.practice_triggered,
            "points_to_quiz": max(0, self.quiz_threshold - score),
            "points_to_practice": max(0, self.practice_threshold - score),
        }


def _iso(dt):
    return dt.isoformat() if dt else None


def serialize_session(s: TutoringSession) -> Dict[str, Any]:
    return {
        "id": s.id,
        "user_id": s.user_id,
        "topic_id": s.topic_id,
        "lesson_id": s.lesson_id,
        "session_type": s.session_type,
        "ai_models_used": list(s.ai_models_used or []),
        "started_at": _iso(s.started_at),
        "ended_at": _iso(s.ended_at),
        "total_messages": s.total_messages,
        "engagement_score": s.engagement_score,
        "quiz_triggered": s.quiz_triggered,
        "practice_triggered": s.practice_triggered,
        "practice_completed": s.practice_completed,
        "user_choice": s.user_choice,
        "choice_reason": s.choice_reason,
        "clarification_needed": s.clarification_needed,
        "clarification_request": s.clarification_request,
        "session_metadata": dict(s.session_metadata or {}),
    }


def _is_transient(exc: Exception) -> bool:
    if isinstance(exc, (IntegrityError, StaleDataError)):
        return True
    if isinstance(exc, OperationalError):
        orig = getattr(exc, "orig", None)
        if getattr(orig, "pgcode", None) in _TRANSIENT_PGCODES:
            return True
        return "locked" in str(orig).lower()
    return False


class SessionManager:
    """세션 관련 비즈니스 로직"""

    @staticmethod
    def get_owned(db: Session, session_id: int, user_id: str, for_update: bool = False) -> TutoringSession:
        q = db.query(TutoringSession).filter(
            TutoringSession.id == session_id,
            TutoringSession.user_id == user_id,
        )
        if for_update:
            q = q.with_for_update()
        session = q.first()
        if not session:
            raise NotFoundError("session")
        return session

    # ------------------------------
    # 세션 시작
    # ------------------------------
    @staticmethod
    def start(
        db: Session,
        user_id: str,
        session_type: str = "comparison",
        ai_models: Optional[List[str]] = None,
        lesson_id: Optional[int] = None,
        topic_id: Optional[int] = None,
    ) -> Dict[str, Any]:
        """
        한 트랜잭션 안에서 세션 시작.
        lock 충돌은 한 번 재시도하고, 그래도 실패하면 409.

        Returns:
            session_id, preserved_session_id, session_type, ai_models, started_at, reactivated ...
        """
        ai_models = list(ai_models) if ai_models is not None else list(settings.model_labels)
        errors = {}
        if session_type not in SESSION_TYPES:
            errors["session_type"] = f"must be one of: {', '.join(SESSION_TYPES)}"
        if not ai_models or any(m not in settings.model_labels for m in ai_models):
            errors["ai_models"] = f"must be a non-empty subset of: {', '.join(settings.model_labels)}"
        if errors:
            raise ValidationFailed(errors)

        for try_no in (1, 2):
            try:
                session, preserved, reactivated = SessionManager._start_once(
                    db, user_id, session_type, ai_models, lesson_id, topic_id
                )
                db.commit()
                break
            except (IntegrityError, OperationalError, StaleDataError) as e:
                db.rollback()
                if not _is_transient(e):
                    logger.exception("[SESSION_START] store failure user_id=%s", user_id)
                    raise
                logger.warning(
                    "[SESSION_START] conflict user_id=%s lesson_id=%s try=%d: %s",
                    user_id, lesson_id, try_no, e.__class__.__name__,
                )
                if try_no == 2:
                    raise TransientStoreConflict() from e
            except Exception:
                db.rollback()
                raise

        logger.info(
            "[SESSION_START] user_id=%s lesson_id=%s session_id=%s reactivated=%s",
            user_id, lesson_id, session.id, reactivated,
        )
        return {
            "session_id": session.id,
            "preserved_session_id": preserved.session_identifier if preserved else None,
            "session_type": session.session_type,
            "ai_models": list(session.ai_models_used or []),
            "started_at": _iso(session.started_at),
            "lesson_id": session.lesson_id,
            "topic_id": session.topic_id,
            "reactivated": reactivated,
        }

    @staticmethod
    def _acquire_start_lock(db: Session, user_id: str) -> None:
        dialect = db.get_bind().dialect.name
        if dialect == "sqlite":
            # sqlite 는 FOR UPDATE 가 없음: 읽기 전에 쓰기 lock(RESERVED)을 먼저 잡아 직렬화
            db.execute(text("UPDATE tutoring_sessions SET version_id = version_id WHERE 1 = 0"))
            return
        if dialect != "postgresql":
            return
        db.execute(text(f"SET LOCAL lock_timeout = {int(settings.session_lock_timeout_ms)}"))
        db.execute(
            text("SELECT pg_advisory_xact_lock(hashtext(:key))"),
            {"key": f"tutoring_session:{user_id}"},
        )

    @staticmethod
    def _start_once(
        db: Session,
        user_id: str,
        session_type: str,
        ai_models: List[str],
        lesson_id: Optional[int],
        topic_id: Optional[int],
    ) -> Tuple[TutoringSession, Optional[PreservedSession], bool]:
        now = utcnow()

        # lesson 없이 시작하면 항상 새 세션 (단일 활성 규칙 예외)
        if lesson_id is None:
            session, preserved = SessionManager._create_pair(
                db, user_id, session_type, ai_models, None, topic_id, now
            )
            return session, preserved, False

        # 1) (user, lesson) 세션 row lock
        SessionManager._acquire_start_lock(db, user_id)
        rows = (
            db.query(TutoringSession)
            .filter(
                TutoringSession.user_id == user_id,
                TutoringSession.lesson_id == lesson_id,
            )
            .order_by(TutoringSession.id)
            .with_for_update()
            .all()
        )

        # 2) 다른 lesson(또는 lesson 없는) 활성 세션 종료
        others = (
            db.query(TutoringSession)
            .filter(
                TutoringSession.user_id == user_id,
                TutoringSession.ended_at.is_(None),
                or_(TutoringSession.lesson_id.is_(None), TutoringSession.lesson_id != lesson_id),
            )
            .with_for_update()
            .all()
        )
        for other in others:
            other.ended_at = now
            ps = preserved_store.get(db, other.preserved_session_id)
            if ps:
                preserved_store.mark_inactive(ps)
        if others:
            db.flush()
            logger.info("[SESSION_START] ended %d other active session(s) user_id=%s", len(others), user_id)

        # 3) lock 안에서 재확인: 이미 활성 세션이 있으면 그대로 반환
        active = next((s for s in rows if s.ended_at is None), None)
        if active:
            return active, preserved_store.get(db, active.preserved_session_id), False

        # 4) 종료된 세션이 있으면 가장 최근 종료분 재활성화 (점수/플래그 유지)
        ended = [s for s in rows if s.ended_at is not None]
        if ended:
            latest = max(ended, key=lambda s: (s.ended_at, s.id))
            latest.ended_at = None
            preserved = preserved_store.get(db, latest.preserved_session_id)
            if preserved:
                preserved_store.mark_active(preserved)
            else:
                preserved = preserved_store.create(
                    db, user_id, latest.topic_id, lesson_id, latest.session_type, latest.ai_models_used
                )
                SessionManager._link(latest, preserved)
            db.flush()
            return latest, preserved, True

        # 5) 새 세션 + 보존 세션 생성
        session, preserved = SessionManager._create_pair(
            db, user_id, session_type, ai_models, lesson_id, topic_id, now
        )
        return session, preserved, False

    @staticmethod
    def _link(session: TutoringSession, preserved: PreservedSession) -> None:
        meta = dict(session.session_metadata or {})
        meta["preserved_session_id"] = preserved.id
        meta["preserved_session_identifier"] = preserved.session_identifier
        session.session_metadata = meta

    @staticmethod
    def _create_pair(db, user_id, session_type, ai_models, lesson_id, topic_id, now):
        preserved = preserved_store.create(db, user_id, topic_id, lesson_id, session_type, ai_models)
        session = TutoringSession(
            user_id=user_id,
            topic_id=topic_id,
            lesson_id=lesson_id,
            session_type=session_type,
            ai_models_used=list(ai_models),
            started_at=now,
            total_messages=0,
            engagement_score=0,
            quiz_triggered=False,
            practice_triggered=False,
            practice_completed=False,
            session_metadata={},
        )
        SessionManager._link(session, preserved)
        db.add(session)
        db.flush()
        return session, preserved

    # ------------------------------
    # 세션 종료
    # ------------------------------
    @staticmethod
    def end(db: Session, session_id: int, user_id: str) -> Dict[str, Any]:
        session = SessionManager.get_owned(db, session_id, user_id)
        session.ended_at = utcnow()
        preserved = preserved_store.get(db, session.preserved_session_id)
        if preserved:
            preserved_store.mark_inactive(preserved)
        db.commit()
        db.refresh(session)

        logger.info("[SESSION_END] session_id=%s user_id=%s", session_id, user_id)
        return {
            "session_id": session.id,
            "ended_at": _iso(session.ended_at),
            "duration_minutes": session.duration_minutes(),
            "total_messages": session.total_messages,
            "engagement_score": session.engagement_score,
        }

    # ------------------------------
    # 참여도 / 트리거
    # ------------------------------
    @staticmethod
    def increment_engagement(
        db: Session,
        session_id: int,
        user_id: str,
        points: int = 1,
        policy: Optional[TriggerPolicy] = None,
    ) -> Dict[str, Any]:
        if isinstance(points, bool) or not isinstance(points, int) or not 1 <= points <= 10:
            raise ValidationFailed({"points": "must be an integer between 1 and 10"})
        policy = policy or TriggerPolicy.from_settings()

        session = SessionManager.get_owned(db, session_id, user_id, for_update=True)
        session.engagement_score = (session.engagement_score or 0) + points

        newly = {"quiz": False, "practice": False}
        # 퀴즈 먼저 평가해야 같은 호출에서 연습까지 열릴 수 있음
        if policy.should_trigger_quiz(session):
            session.quiz_triggered = True
            newly["quiz"] = True
        if policy.should_trigger_practice(session):
            session.practice_triggered = True
            newly["practice"] = True

        preserved = preserved_store.get(db, session.preserved_session_id)
        if preserved:
            preserved_store.touch(preserved)
        db.commit()
        db.refresh(session)

        if newly["quiz"] or newly["practice"]:
            logger.info(
                "[ENGAGEMENT] session_id=%s score=%s newly_triggered=%s",
                session_id, session.engagement_score, newly,
            )
        return {
            "session_id": session.id,
            "engagement_score": session.engagement_score,
            "quiz_triggered": session.quiz_triggered,
            "practice_triggered": session.practice_triggered,
            "newly_triggered": newly,
            "threshold_status": policy.status(session),
            "should_trigger_engagement": session.should_trigger_engagement(),
        }

    @staticmethod
    def threshold_status(
        db: Session,
        session_id: int,
        user_id: str,
        policy: Optional[TriggerPolicy] = None,
    ) -> Dict[str, Any]:
        session = SessionManager.get_owned(db, session_id, user_id)
        return (policy or TriggerPolicy.from_settings()).status(session)

    # ------------------------------
    # 조회
    # ------------------------------
    @staticmethod
    def get_active_session(db: Session, user_id: str) -> Optional[Dict[str, Any]]:
        session = (
            db.query(TutoringSession)
            .filter(
                TutoringSession.user_id == user_id,
                TutoringSession.ended_at.is_(None),
            )
            .order_by(TutoringSession.started_at.desc(), TutoringSession.id.desc())
            .first()
        )
        if not session:
            return None
        return {
            "session": serialize_session(session),
            "is_active": True,
            "should_trigger_engagement": session.should_trigger_engagement(),
        }

    @staticmethod
    def get_session(db: Session, session_id: int, user_id: str) -> Dict[str, Any]:
        session = SessionManager.get_owned(db, session_id, user_id)
        return {
            "session": serialize_session(session),
            "tica_metrics": {
                "session_id": session.id,
                "duration_minutes": session.duration_minutes(),
                "total_messages": session.total_messages,
                "engagement_score": session.engagement_score,
                "user_choice": session.user_choice,
                "quiz_triggered": session.quiz_triggered,
                "practice_triggered": session.practice_triggered,
                "clarification_needed": session.clarification_needed,
            },
            "is_active": session.is_active(),
            "should_trigger_engagement": session.should_trigger_engagement(),
        }

    @staticmethod
    def request_clarification(db: Session, session_id: int, user_id: str, request: str) -> Dict[str, Any]:
        if not request or not request.strip() or len(request) > 1000:
            raise ValidationFailed({"request": "required, at most 1000 characters"})
        session = SessionManager.get_owned(db, session_id, user_id)
        session.clarification_needed = True
        session.clarification_request = request.strip()
        db.commit()
        return {
            "session_id": session.id,
            "clarification_needed": session.clarification_needed,
            "clarification_request": session.clarification_request,
        }
