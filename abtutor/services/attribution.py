"""
선호/성과 귀속(attribution)
- 신뢰도 라벨 -> 0~1 값 정규화
- 시도 시작/제출 시점에 튜터 응답(tagged reply) 귀속
- 활동 종류별 최근 성과 지표 추출
"""
import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, Optional, Union

from sqlalchemy.orm import Session

from abtutor.config import settings
from abtutor.db.base import utcnow
from abtutor.errors import AttributionAmbiguous
from abtutor.models.attempts import PracticeAttempt, QuizAttempt
from abtutor.models.chat_message import ChatMessage
from abtutor.services.scoring import round_half_up

logger = logging.getLogger(__name__)

CONFIDENCE_LABELS: Dict[str, float] = {
    "very_high": 0.95,
    "high": 0.85,
    "explicit": 0.85,
    "strong": 0.80,
    "medium": 0.60,
    "temporal": 0.60,
    "weak": 0.40,
    "low": 0.35,
    "very_low": 0.20,
}

# 세션 단위 귀속(코드 실행)은 high 로 취급
SESSION_CONFIDENCE_LABEL = "high"


def _as_number(raw) -> Optional[float]:
    if isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float, Decimal)):
        value = float(raw)
    elif isinstance(raw, str):
        try:
            value = float(raw.strip())
        except ValueError:
            return None
    else:
        return None
    # inf / nan 은 숫자로 보지 않음
    return value if math.isfinite(value) else None


def _lookup_label(raw) -> float:
    if isinstance(raw, str):
        key = raw.strip().lower()
        if key in CONFIDENCE_LABELS:
            return CONFIDENCE_LABELS[key]
    raise AttributionAmbiguous(raw)


def resolve_confidence(raw) -> Optional[float]:
    if raw is None:
        return None
    try:
        return _lookup_label(raw)
    except AttributionAmbiguous as e:
        value = _as_number(raw)
        if value is not None and 0.0 <= value <= 1.0:
            return round_half_up(value, 4)
        logger.warning("[ATTRIBUTION] %s -> null", e)
        return None


def normalize_delay(raw) -> Optional[int]:
    value = _as_number(raw)
    if value is None:
        return None
    return max(0, int(value))


@dataclass
class AttributionFields:
    chat_message_id: Optional[int] = None
    model: Optional[str] = None
    confidence: Optional[Union[str, float]] = None
    delay_sec: Optional[int] = None

    @property
    def is_empty(self) -> bool:
        return self.chat_message_id is None

    @classmethod
    def from_attempt(cls, attempt) -> "AttributionFields":
        return cls(
            chat_message_id=attempt.attribution_chat_message_id,
            model=attempt.attribution_model,
            confidence=attempt.attribution_confidence,
            delay_sec=attempt.attribution_delay_sec,
        )


def latest_tagged_reply(
    db: Session,
    user_id: str,
    session_id: Optional[int] = None,
    before: Optional[datetime] = None,
) -> Optional[ChatMessage]:
    q = db.query(ChatMessage).filter(
        ChatMessage.user_id == user_id,
        ChatMessage.model.isnot(None),
    )
    if session_id is not None:
        q = q.filter(ChatMessage.session_id == session_id)
    if before is not None:
        q = q.filter(ChatMessage.created_at <= before)
    return q.order_by(ChatMessage.created_at.desc(), ChatMessage.id.desc()).first()


def attribute_at_attempt_start(
    db: Session,
    user_id: str,
    explicit_reply_id: Optional[int] = None,
) -> AttributionFields:
    """사용자가 직접 고른 응답이 있으면 explicit 으로 귀속, 아니면 제출 시점으로 미룬다."""
    if explicit_reply_id is None:
        return AttributionFields()

    reply = (
        db.query(ChatMessage)
        .filter(
            ChatMessage.id == explicit_reply_id,
            ChatMessage.user_id == user_id,
            ChatMessage.model.isnot(None),
        )
        .first()
    )
    if not reply:
        logger.warning(
            "[ATTRIBUTION] explicit reply_id=%s not owned by user_id=%s, left unattributed",
            explicit_reply_id,
            user_id,
        )
        return AttributionFields()

    return AttributionFields(
        chat_message_id=reply.id,
        model=reply.model,
        confidence="explicit",
        delay_sec=0,
    )


def attribute_at_attempt_submit(
    db: Session,
    attempt: Union[PracticeAttempt, QuizAttempt],
    user_id: str,
    now: Optional[datetime] = None,
) -> AttributionFields:
    """아직 귀속이 없으면 최근 응답(recency window 이내)에 temporal 로 귀속"""
    if attempt.is_attributed():
        return AttributionFields.from_attempt(attempt)

    now = now or utcnow()
    reply = latest_tagged_reply(db, user_id, before=now)
    if not reply:
        return AttributionFields()

    window = timedelta(minutes=settings.attribution_recency_minutes)
    if now - reply.created_at > window:
        return AttributionFields()

    fields = AttributionFields(
        chat_message_id=reply.id,
        model=reply.model,
        confidence="temporal",
        delay_sec=normalize_delay((now - reply.created_at).total_seconds()),
    )
    attempt.stamp_attribution(fields)
    return fields


# ------------------------------
# 활동별 성과 지표 (quiz | practice | code_execution)
# ------------------------------

@dataclass
class PerformanceMetrics:
    performance_score: Optional[float] = None
    success_rate: Optional[float] = None
    time_spent_seconds: Optional[int] = None
    attempt_count: Optional[int] = None
    difficulty_level: Optional[str] = None
    context_data: Dict[str, Any] = field(default_factory=dict)
    attribution: AttributionFields = field(default_factory=AttributionFields)


def _float_or_none(value) -> Optional[float]:
    return None if value is None else float(value)


@dataclass
class QuizOutcome:
    attempt: QuizAttempt

    def extract_metrics(self, now: datetime) -> PerformanceMetrics:
        a = self.attempt
        return PerformanceMetrics(
            performance_score=_float_or_none(a.percentage),
            success_rate=None if a.passed is None else (100.0 if a.passed else 0.0),
            time_spent_seconds=a.time_spent_seconds,
            attempt_count=a.attempt_number,
            context_data={
                "quiz_id": a.quiz_id,
                "score": a.score,
                "max_score": a.max_possible_score,
                "passed": a.passed,
            },
            attribution=AttributionFields.from_attempt(a),
        )


@dataclass
class PracticeOutcome:
    attempt: PracticeAttempt

    def extract_metrics(self, now: datetime) -> PerformanceMetrics:
        a = self.attempt
        results = a.test_case_results or []
        if results:
            passed = sum(1 for r in results if r.get("passed"))
            score = round_half_up(passed * 100.0 / len(results))
        else:
            score = 100.0 if a.is_correct else 0.0
        return PerformanceMetrics(
            performance_score=score,
            success_rate=100.0 if a.is_correct else 0.0,
            time_spent_seconds=a.time_spent_seconds,
            attempt_count=a.attempt_number,
            difficulty_level=a.difficulty_level,
            context_data={
                "problem_id": a.problem_id,
                "is_correct": a.is_correct,
                "points_earned": a.points_earned,
                "complexity_score": _float_or_none(a.complexity_score),
            },
            attribution=AttributionFields.from_attempt(a),
        )


@dataclass
class CodeExecutionOutcome:
    reply: ChatMessage

    def extract_metrics(self, now: datetime) -> PerformanceMetrics:
        r = self.reply
        return PerformanceMetrics(
            context_data={"message_id": r.id, "message_type": "ai_response"},
            attribution=AttributionFields(
                chat_message_id=r.id,
                model=r.model,
                confidence=SESSION_CONFIDENCE_LABEL,
                delay_sec=normalize_delay((now - r.created_at).total_seconds()),
            ),
        )


def _latest_attempt(db: Session, model, user_id: str, topic_id: Optional[int]):
    # 제출(채점) 끝난 시도만. 시작만 하고 버린 시도는 성과가 아님
    q = db.query(model).filter(model.user_id == user_id, model.finished_at.isnot(None))
    if topic_id is not None:
        q = q.filter(model.topic_id == topic_id)
    return q.order_by(model.finished_at.desc(), model.id.desc()).first()


def load_outcome(
    db: Session,
    user_id: str,
    activity_type: str,
    topic_id: Optional[int] = None,
    session_id: Optional[int] = None,
):
    if activity_type == "quiz":
        attempt = _latest_attempt(db, QuizAttempt, user_id, topic_id)
        return QuizOutcome(attempt) if attempt else None
    if activity_type == "practice":
        attempt = _latest_attempt(db, PracticeAttempt, user_id, topic_id)
        return PracticeOutcome(attempt) if attempt else None
    if activity_type == "code_execution":
        reply = latest_tagged_reply(db, user_id, session_id=session_id)
        return CodeExecutionOutcome(reply) if reply else None
    raise ValueError(f"unknown activity_type: {activity_type}")


def metrics_for_activity(
    db: Session,
    user_id: str,
    activity_type: str,
    topic_id: Optional[int] = None,
    session_id: Optional[int] = None,
    now: Optional[datetime] = None,
) -> PerformanceMetrics:
    outcome = load_outcome(db, user_id, activity_type, topic_id, session_id)
    if outcome is None:
        return PerformanceMetrics()
    return outcome.extract_metrics(now or utcnow())
