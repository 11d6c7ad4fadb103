from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from abtutor.config import settings
from abtutor.deps import get_db, get_current_user
from abtutor.services.analytics_service import AnalyticsService
from abtutor.services.preference_service import PreferenceService

router = APIRouter(prefix="/api/analytics", tags=["analytics"])


# 모델 A / B 효과 비교
@router.get("/compare")
def compare_models(
    window: str = Query(settings.analytics_window, description="예: 30d, 2w"),
    k_runs: int = Query(settings.analytics_k_runs, ge=0, le=50),
    lookahead_min: int = Query(settings.analytics_lookahead_min, ge=0, le=24 * 60),
    topic_id: Optional[int] = Query(None),
    difficulty: Optional[str] = Query(None),
    nmin: int = Query(1, ge=1),
    coalesce_missing: bool = Query(True, description="false 면 한쪽 값이 없을 때 차이를 null 로"),
    use_attribution_first: bool = Query(True, description="응답에 귀속된 시도를 시간 구간보다 우선"),
    include_quiz_pass: bool = Query(False, description="하루 안의 퀴즈 통과도 success1 로 인정"),
    quiz_pass_percent: Optional[float] = Query(None, ge=0, le=100),
    db: Session = Depends(get_db),
    user=Depends(get_current_user),
):
    return AnalyticsService.compare(
        db,
        user_id=user["id"],
        window=window,
        k_runs=k_runs,
        lookahead_min=lookahead_min,
        topic_id=topic_id,
        difficulty=difficulty,
        nmin=nmin,
        coalesce_missing=coalesce_missing,
        use_attribution_first=use_attribution_first,
        include_quiz_pass=include_quiz_pass,
        quiz_pass_percent=quiz_pass_percent,
    )


# 선호 기록 요약
@router.get("/preferences")
def preference_summary(
    window: str = Query("30d"),
    interaction_type: Optional[str] = Query(None),
    topic_id: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    user=Depends(get_current_user),
):
    return PreferenceService.preference_summary(
        db,
        user_id=user["id"],
        window=window,
        interaction_type=interaction_type,
        topic_id=topic_id,
    )
