"""
모델 A/B 비교 분석
1) 기간 내 태그된 응답(reply)마다 효과 구간(lookahead, 다음 응답 전까지)을 잡고
2) 연습/퀴즈 시도로 응답별 지표 계산
3) (user, model) 평균 -> 같은 사용자 A-B 차이 -> 차이의 요약 통계

데이터가 없으면 빈 결과/None 을 돌려주고 예외를 던지지 않는다.
"""
import logging
import math
from bisect import bisect_right
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence

import numpy as np
import pandas as pd
from sqlalchemy.orm import Session

from abtutor.config import settings
from abtutor.db.base import utcnow
from abtutor.models.attempts import PracticeAttempt, QuizAttempt
from abtutor.models.chat_message import ChatMessage
from abtutor.services.preference_service import parse_window

logger = logging.getLogger(__name__)

METRICS = ("success1", "ttf_min", "delta_errors", "delta_quiz", "rating", "fallback_rate", "latency_ms")

QUIZ_AFTER = timedelta(days=1)
QUIZ_BEFORE = timedelta(days=7)
Z_95 = 1.96


def _pct(value) -> Optional[float]:
    return None if value is None else float(value)


def _mean(values: Sequence[float]) -> Optional[float]:
    return float(np.mean(values)) if values else None


def _attributed_to(items, reply_id) -> list:
    return [x for x in items if x.attribution_chat_message_id == reply_id]


def observe_reply(
    reply: ChatMessage,
    next_reply_at: Optional[datetime],
    runs: List[PracticeAttempt],
    quizzes: List[QuizAttempt],
    k_runs: int,
    lookahead_min: int,
    use_attribution_first: bool = True,
    quiz_pass_percent: Optional[float] = None,
) -> Dict[str, Any]:
    """
    응답 1건의 효과 지표. 시도 시각은 모두 제출(채점) 시각(finished_at).
    use_attribution_first: 이 응답에 귀속된 시도가 있으면 첫 시도/퀴즈를 시간 구간보다 우선
    quiz_pass_percent: 주어지면 하루 안의 퀴즈 통과도 success1 로 인정
    """
    t = reply.created_at
    effect_end = t + timedelta(minutes=lookahead_min)
    # 다음 응답 이후 시도는 다음 응답 몫
    if next_reply_at is not None and next_reply_at < effect_end:
        effect_end = next_reply_at

    prior = [r for r in runs if r.finished_at < t]
    prior = prior[-k_runs:] if k_runs > 0 else []
    post = [r for r in runs if t < r.finished_at <= effect_end]

    attr_runs = _attributed_to(runs, reply.id) if use_attribution_first else []
    attr_quizzes = _attributed_to(quizzes, reply.id) if use_attribution_first else []

    # 1) 첫 시도 정답 여부 (귀속 우선)
    first = attr_runs[0] if attr_runs else (post[0] if post else None)
    success1 = 1 if first is not None and first.is_correct else 0

    # 2) 첫 정답까지 걸린 분 (시간 구간 우선, 없으면 귀속 시도)
    ttf_min = None
    for r in post + [r for r in attr_runs if r not in post]:
        if r.is_correct:
            ttf_min = max(0, int((r.finished_at - t).total_seconds() // 60))
            break

    errors_prior = sum(r.error_count() for r in prior)
    errors_post = sum(r.error_count() for r in post[:k_runs]) if k_runs > 0 else 0

    # 3) 퀴즈: 귀속된 퀴즈가 있으면 그것이 응답 이후 퀴즈
    if attr_quizzes:
        quiz_after = attr_quizzes
    else:
        quiz_after = [q for q in quizzes if t <= q.finished_at <= t + QUIZ_AFTER]
    quiz_before = [q for q in quizzes if t - QUIZ_BEFORE <= q.finished_at <= t]

    if quiz_pass_percent is not None and any(_pct(q.percentage) >= quiz_pass_percent for q in quiz_after):
        success1 = 1

    delta_quiz = None
    if quiz_after and quiz_before:
        delta_quiz = _mean([_pct(q.percentage) for q in quiz_after]) - _mean([_pct(q.percentage) for q in quiz_before])

    return {
        "message_id": reply.id,
        "user_id": reply.user_id,
        "model": reply.model,
        "t": t,
        "success1": success1,
        "ttf_min": ttf_min,
        "delta_errors": errors_prior - errors_post,
        "delta_quiz": delta_quiz,
        "rating": reply.user_rating,
        "fallback": 1 if reply.is_fallback else 0,
        "latency": int(reply.response_time_ms or 0),
        "post_attempt_ids": [r.id for r in post],
        "attributed_attempt_ids": [r.id for r in attr_runs],
    }


def _none_if_nan(value) -> Optional[float]:
    if value is None or pd.isna(value):
        return None
    return float(value)


def aggregate_user_model(observations: List[Dict[str, Any]], nmin: int = 1) -> List[Dict[str, Any]]:
    """(user, model) 별 평균. 정의되지 않은 값(None)은 평균에서 제외."""
    if not observations:
        return []

    df = pd.DataFrame(observations)
    for col in ("success1", "ttf_min", "delta_errors", "delta_quiz", "rating", "fallback", "latency"):
        df[col] = pd.to_numeric(df[col], errors="coerce")
    # 지연시간은 양수만
    df["latency"] = df["latency"].where(df["latency"] > 0)

    agg = (
        df.groupby(["user_id", "model"], sort=False)
        .agg(
            n=("success1", "size"),
            success1=("success1", "mean"),
            ttf_min=("ttf_min", "mean"),
            delta_errors=("delta_errors", "mean"),
            delta_quiz=("delta_quiz", "mean"),
            rating=("rating", "mean"),
            fallback_rate=("fallback", "mean"),
            latency_ms=("latency", "mean"),
        )
        .reset_index()
    )

    rows = []
    for rec in agg.to_dict(orient="records"):
        row = {"user_id": rec["user_id"], "model": rec["model"], "n": int(rec["n"])}
        suppressed = row["n"] < nmin
        for m in METRICS:
            row[m] = None if suppressed else _none_if_nan(rec[m])
        rows.append(row)
    return rows


def pair_users(
    rows: List[Dict[str, Any]],
    model_a: str,
    model_b: str,
    coalesce_missing: bool = True,
) -> List[Dict[str, Any]]:
    """
    같은 사용자의 A - B 차이.
    coalesce_missing=True: 없는 값은 0 으로 보고 뺀다.
    coalesce_missing=False: 어느 한쪽이 없으면 차이도 None.
    """
    by_key = {(r["user_id"], r["model"]): r for r in rows}
    users = list(dict.fromkeys(r["user_id"] for r in rows))

    paired = []
    for user_id in users:
        a = by_key.get((user_id, model_a))
        b = by_key.get((user_id, model_b))
        if not a or not b:
            continue
        item = {"user_id": user_id}
        for m in METRICS:
            va, vb = a[m], b[m]
            if coalesce_missing:
                item[f"d_{m}"] = (va or 0) - (vb or 0)
            elif va is None or vb is None:
                item[f"d_{m}"] = None
            else:
                item[f"d_{m}"] = va - vb
        paired.append(item)
    return paired


def summarize(values: Sequence[Optional[float]], nmin: int = 1) -> Optional[Dict[str, Any]]:
    """n, mean, sd(n-1), se, 95% CI. 값이 하나도 없으면 None."""
    vals = np.array([v for v in values if v is not None], dtype=float)
    n = int(vals.size)
    if n == 0:
        return None

    mean = float(vals.mean())
    sd = float(np.std(vals, ddof=1)) if n > 1 else 0.0
    se = sd / math.sqrt(n)
    out = {
        "n": n,
        "mean": mean,
        "sd": sd,
        "se": se,
        "ci_low": mean - Z_95 * se,
        "ci_high": mean + Z_95 * se,
    }
    if n < nmin:
        out.update(mean=None, ci_low=None, ci_high=None)
    return out


def pick_winner(success_summary: Optional[Dict[str, Any]], model_a: str, model_b: str) -> Optional[str]:
    if not success_summary or success_summary["mean"] is None:
        return None
    if success_summary["ci_low"] > 0:
        return model_a
    if success_summary["ci_high"] < 0:
        return model_b
    return None


class AnalyticsService:

    @staticmethod
    def compare(
        db: Session,
        user_id: str,
        window: str = "30d",
        k_runs: int = 3,
        lookahead_min: int = 30,
        topic_id: Optional[int] = None,
        difficulty: Optional[str] = None,
        nmin: int = 1,
        coalesce_missing: bool = True,
        use_attribution_first: bool = True,
        include_quiz_pass: bool = False,
        quiz_pass_percent: Optional[float] = None,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        now = now or utcnow()
        if quiz_pass_percent is None:
            quiz_pass_percent = settings.quiz_pass_percent
        start = parse_window(window, now)
        k_runs = max(0, int(k_runs))
        lookahead_min = max(0, int(lookahead_min))
        model_a, model_b = settings.model_a_label, settings.model_b_label

        result: Dict[str, Any] = {
            "window": window,
            "k_runs": k_runs,
            "lookahead_min": lookahead_min,
            "nmin": nmin,
            "coalesce_missing": coalesce_missing,
            "use_attribution_first": use_attribution_first,
            "quiz_pass_percent": quiz_pass_percent if include_quiz_pass else None,
            "filters": {"topic_id": topic_id, "difficulty": difficulty},
            "per_user_model": [],
            "paired_users": [],
            "paired_summary": {m: None for m in METRICS},
            "winner": None,
            "per_reply": [],
        }

        # 1) 태그된 응답
        rq = db.query(ChatMessage).filter(
            ChatMessage.user_id == user_id,
            ChatMessage.model.isnot(None),
            ChatMessage.created_at >= start,
            ChatMessage.created_at <= now,
        )
        if topic_id is not None:
            rq = rq.filter(ChatMessage.topic_id == topic_id)
        replies = rq.order_by(ChatMessage.created_at, ChatMessage.id).all()
        if not replies:
            return result

        # 2) 채점 끝난 연습/퀴즈 시도 (제출 시각 기준)
        pq = db.query(PracticeAttempt).filter(
            PracticeAttempt.user_id == user_id,
            PracticeAttempt.status == "evaluated",
            PracticeAttempt.finished_at >= start,
            PracticeAttempt.finished_at <= now,
        )
        if difficulty:
            pq = pq.filter(PracticeAttempt.difficulty_level == difficulty)
        runs = pq.order_by(PracticeAttempt.finished_at, PracticeAttempt.id).all()

        quizzes = (
            db.query(QuizAttempt)
            .filter(
                QuizAttempt.user_id == user_id,
                QuizAttempt.percentage.isnot(None),
                QuizAttempt.finished_at >= start,
                QuizAttempt.finished_at <= now,
            )
            .order_by(QuizAttempt.finished_at, QuizAttempt.id)
            .all()
        )

        # 3) 응답별 관측. 같은 시각(한 번의 분할 화면 교환) 응답은 효과 구간을 공유
        pass_cut = quiz_pass_percent if include_quiz_pass else None
        times = [r.created_at for r in replies]
        observations = []
        for reply in replies:
            nxt = bisect_right(times, reply.created_at)
            next_at = times[nxt] if nxt < len(times) else None
            observations.append(
                observe_reply(reply, next_at, runs, quizzes, k_runs, lookahead_min, use_attribution_first, pass_cut)
            )

        # 4) 집계 -> 짝 -> 요약
        rows = aggregate_user_model(observations, nmin)
        paired = pair_users(rows, model_a, model_b, coalesce_missing)
        summary = {m: summarize([p[f"d_{m}"] for p in paired], nmin) for m in METRICS}

        result.update(
            per_user_model=rows,
            paired_users=paired,
            paired_summary=summary,
            winner=pick_winner(summary["success1"], model_a, model_b),
            per_reply=[
                {
                    "message_id": o["message_id"],
                    "model": o["model"],
                    "t": o["t"].isoformat(),
                    "success1": o["success1"],
                    "ttf_min": o["ttf_min"],
                    "delta_errors": o["delta_errors"],
                    "delta_quiz": o["delta_quiz"],
                    "post_attempt_ids": o["post_attempt_ids"],
                    "attributed_attempt_ids": o["attributed_attempt_ids"],
                }
                for o in observations
            ],
        )
        logger.info(
            "[COMPARE] user_id=%s replies=%d runs=%d quizzes=%d paired=%d winner=%s",
            user_id, len(replies), len(runs), len(quizzes), len(paired), result["winner"],
        )
        return result
