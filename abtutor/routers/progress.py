from fastapi import APIRouter, Depends

from abtutor.deps import get_current_user
from abtutor.schemas.tutoring import ProgressRequest
from abtutor.services.scoring import progress_report

router = APIRouter(prefix="/api/progress", tags=["progress"])


# 진행도/성과 점수 계산 (저장하지 않음)
@router.post("/compute")
def compute_progress(
    payload: ProgressRequest,
    user=Depends(get_current_user),
):
    return progress_report(**payload.model_dump())
