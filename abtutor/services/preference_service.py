"""
선호 기록 / 조회
- record_choice: 사용자 선택 1건 -> PreferenceLog 1건 (+ 세션의 user_choice 갱신)
- preference_summary: 기간 내 선택 통계
"""
import logging
import re
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from abtutor.db.base import utcnow
from abtutor.errors import ValidationFailed
from abtutor.models.preference_log import CHOICES, INTERACTION_TYPES, PreferenceLog
from abtutor.services.attribution import (
    metrics_for_activity,
    normalize_delay,
    resolve_confidence,
)
from abtutor.services.scoring import round_half_up
from abtutor.services.session_service import SessionManager

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_DAYS = 30
SUCCESS_RATE_CUTOFF = 70
RECENT_LIMIT = 10

_WINDOW_RE = re.compile(r"^\s*(\d+)\s*([dw])\s*$", re.IGNORECASE)

# 호출자가 직접 채울 수 있는 지표 (계산값이 null 일 때만 사용)
OVERRIDABLE = (
    "performance_score",
    "success_rate",
    "time_spent_seconds",
    "attempt_count",
    "difficulty_level",
)


def parse_window(window: Optional[str], now: Optional[datetime] = None) -> datetime:
    """'14d' / '2w' -> 시작 시각. 형식이 맞지 않으면 30일."""
    now = now or utcnow()
    m = _WINDOW_RE.match(window or "")
    if not m:
        return now - timedelta(days=DEFAULT_WINDOW_DAYS)
    amount, unit = int(m.group(1)), m.group(2).lower()
    if unit == "w":
        return now - timedelta(weeks=amount)
    return now - timedelta(days=amount)


def _default_activity(session) -> str:
    if session.quiz_triggered:
        return "quiz"
    if session.practice_triggered:
        return "practice"
    return "code_execution"


def _decimal_to_float(value):
    return None if value is None else float(value)


def serialize_log(log: PreferenceLog) -> Dict[str, Any]:
    return {
        "id": log.id,
        "session_id": log.session_id,
        "topic_id": log.topic_id,
        "interaction_type": log.interaction_type,
        "chosen_ai": log.chosen_ai,
        "choice_reason": log.choice_reason,
        "performance_score": _decimal_to_float(log.performance_score),
        "success_rate": _decimal_to_float(log.success_rate),
        "time_spent_seconds": log.time_spent_seconds,
        "attempt_count": log.attempt_count,
        "difficulty_level": log.difficulty_level,
        "context_data": dict(log.context_data or {}),
        "attribution_chat_message_id": log.attribution_chat_message_id,
        "attribution_model": log.attribution_model,
        "attribution_confidence": _decimal_to_float(log.attribution_confidence),
        "attribution_delay_sec": log.attribution_delay_sec,
        "created_at": log.created_at.isoformat() if log.created_at else None,
    }


class PreferenceService:

    @staticmethod
    def record_choice(
        db: Session,
        session_id: int,
        user_id: str,
        choice: str,
        reason: Optional[str] = None,
        activity_type: Optional[str] = None,
        overrides: Optional[Dict[str, Any]] = None,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """
        선택 이벤트 기록.
        overrides: 계산된 지표가 null 인 항목만 채운다 (+ context_data, attribution_confidence, attribution_delay_sec).
        """
        overrides = overrides or {}
        errors = {}
        if choice not in CHOICES:
            errors["choice"] = f"must be one of: {', '.join(CHOICES)}"
        if activity_type is not None and activity_type not in INTERACTION_TYPES:
            errors["activity_type"] = f"must be one of: {', '.join(INTERACTION_TYPES)}"
        if reason is not None and len(reason) > 1000:
            errors["reason"] = "at most 1000 characters"
        if errors:
            raise ValidationFailed(errors)

        # 1) 세션 소유 확인
        session = SessionManager.get_owned(db, session_id, user_id)
        activity_type = activity_type or _default_activity(session)

        # 2) 활동별 지표 + 귀속
        metrics = metrics_for_activity(
            db, user_id, activity_type,
            topic_id=session.topic_id,
            session_id=session.id,
            now=now,
        )
        values = {name: getattr(metrics, name) for name in OVERRIDABLE}
        for name in OVERRIDABLE:
            if values[name] is None and overrides.get(name) is not None:
                values[name] = overrides[name]

        context = dict(metrics.context_data)
        context.update(overrides.get("context_data") or {})

        attribution = metrics.attribution
        raw_confidence = attribution.confidence
        if raw_confidence is None:
            raw_confidence = overrides.get("attribution_confidence")
        raw_delay = attribution.delay_sec
        if raw_delay is None:
            raw_delay = overrides.get("attribution_delay_sec")

        # 3) 저장
        log = PreferenceLog(
            user_id=user_id,
            session_id=session.id,
            topic_id=session.topic_id,
            interaction_type=activity_type,
            chosen_ai=choice,
            choice_reason=reason,
            performance_score=values["performance_score"],
            success_rate=values["success_rate"],
            time_spent_seconds=values["time_spent_seconds"],
            attempt_count=values["attempt_count"] or 1,
            difficulty_level=values["difficulty_level"],
            context_data=context,
            attribution_chat_message_id=attribution.chat_message_id,
            attribution_model=attribution.model,
            attribution_confidence=resolve_confidence(raw_confidence),
            attribution_delay_sec=normalize_delay(raw_delay),
        )
        db.add(log)

        session.user_choice = choice
        session.choice_reason = reason
        db.commit()
        db.refresh(log)

        logger.info(
            "[PREFERENCE] session_id=%s user_id=%s choice=%s activity=%s attributed_model=%s",
            session.id, user_id, choice, activity_type, log.attribution_model,
        )
        return serialize_log(log)

    @staticmethod
    def preference_summary(
        db: Session,
        user_id: str,
        window: str = "30d",
        interaction_type: Optional[str] = None,
        topic_id: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        start = parse_window(window, now)
        q = db.query(PreferenceLog).filter(
            PreferenceLog.user_id == user_id,
            PreferenceLog.created_at >= start,
        )
        if interaction_type:
            q = q.filter(PreferenceLog.interaction_type == interaction_type)
        if topic_id is not None:
            q = q.filter(PreferenceLog.topic_id == topic_id)
        logs = q.order_by(PreferenceLog.created_at.desc(), PreferenceLog.id.desc()).all()

        ai_choices: Dict[str, int] = {}
        interaction_types: Dict[str, int] = {}
        for log in logs:
            ai_choices[log.chosen_ai] = ai_choices.get(log.chosen_ai, 0) + 1
            interaction_types[log.interaction_type] = interaction_types.get(log.interaction_type, 0) + 1

        success_rates = {}
        for ai in CHOICES:
            picked = [log for log in logs if log.chosen_ai == ai]
            ok = [log for log in picked if log.success_rate is not None and log.success_rate >= SUCCESS_RATE_CUTOFF]
            success_rates[ai] = round_half_up(len(ok) * 100.0 / len(picked)) if picked else 0

        return {
            "window": window,
            "total_choices": len(logs),
            "ai_choices": ai_choices,
            "interaction_types": interaction_types,
            "success_rates": success_rates,
            "recent_preferences": [serialize_log(log) for log in logs[:RECENT_LIMIT]],
        }
