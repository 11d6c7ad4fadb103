from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, model_validator

# -- Request --

# 세션 시작
class SessionStartRequest(BaseModel):
    lesson_id: Optional[int] = Field(None, description="레슨 ID (있으면 레슨당 활성 세션 1개)")
    topic_id: Optional[int] = Field(None, description="주제 ID")
    session_type: str = Field("comparison", description="comparison | single")
    ai_models: Optional[List[str]] = Field(None, description="사용할 모델 라벨 목록 (기본: A, B 둘 다)")


# 참여도 증가 (범위 검증은 서비스에서 422 로 처리)
class EngagementRequest(BaseModel):
    points: int = Field(1, description="1~10")


# 선호 기록
class ChoiceRequest(BaseModel):
    choice: str = Field(..., description="model_a | model_b | both | neither")
    reason: Optional[str] = Field(None, description="선택 이유")
    activity_type: Optional[str] = Field(None, description="quiz | practice | code_execution")
    performance_score: Optional[float] = Field(None, ge=0, le=100)
    success_rate: Optional[float] = Field(None, ge=0, le=100)
    time_spent_seconds: Optional[int] = Field(None, ge=0)
    attempt_count: Optional[int] = Field(None, ge=1)
    difficulty_level: Optional[str] = None
    context_data: Optional[Dict[str, Any]] = None
    attribution_confidence: Optional[Any] = Field(None, description="라벨 또는 0~1 숫자")
    attribution_delay_sec: Optional[Any] = None

    def overrides(self) -> Dict[str, Any]:
        return self.model_dump(exclude={"choice", "reason", "activity_type"}, exclude_none=True)


class ClarificationRequest(BaseModel):
    request: str = Field(..., min_length=1, max_length=1000)


# 채팅
class ChatRequest(BaseModel):
    message: str = Field(..., min_length=1, max_length=5000)
    topic: Optional[str] = Field(None, description="프롬프트에 넣을 주제명")
    preferences: Optional[Dict[str, Any]] = None


class RatingRequest(BaseModel):
    rating: int = Field(..., description="1~5")


# 연습 / 퀴즈 시도
class PracticeStartRequest(BaseModel):
    problem_id: int
    topic_id: Optional[int] = None
    session_id: Optional[int] = None
    difficulty_level: Optional[str] = None
    reply_id: Optional[int] = Field(None, description="사용자가 참고한 튜터 응답 ID")


class TestCase(BaseModel):
    input: Optional[str] = None
    expected_output: str = ""


class PracticeSubmitRequest(BaseModel):
    code: str = Field(..., min_length=1)
    test_cases: Optional[List[TestCase]] = None
    time_spent_seconds: Optional[int] = Field(None, ge=0)


class QuizStartRequest(BaseModel):
    quiz_id: int
    topic_id: Optional[int] = None
    session_id: Optional[int] = None
    reply_id: Optional[int] = None


class QuizSubmitRequest(BaseModel):
    score: int = Field(..., ge=0)
    max_possible_score: int = Field(..., gt=0)
    time_spent_seconds: Optional[int] = Field(None, ge=0)

    @model_validator(mode="after")
    def validate_score(self):
        if self.score > self.max_possible_score:
            raise ValueError("점수는 만점을 넘을 수 없습니다.")
        return self


# 진행도 계산
class ProgressRequest(BaseModel):
    interaction_points: int = 0
    code_points: int = 0
    total_minutes: int = 0
    quiz_points: int = 0
    quiz_score: float = 0.0
    code_success_rate: float = 0.0
    error_rate: float = 0.0


# -- Response --

class SessionStartResponse(BaseModel):
    session_id: int
    preserved_session_id: Optional[str]
    session_type: str
    ai_models: List[str]
    started_at: str
    lesson_id: Optional[int]
    topic_id: Optional[int]
    reactivated: bool


class SessionEndResponse(BaseModel):
    session_id: int
    ended_at: str
    duration_minutes: int
    total_messages: int
    engagement_score: int


class ThresholdStatus(BaseModel):
    quiz_threshold: int
    practice_threshold: int
    current_score: int
    quiz_unlocked: bool
    practice_unlocked: bool
    quiz_triggered: bool
    practice_triggered: bool
    points_to_quiz: int
    points_to_practice: int


class EngagementResponse(BaseModel):
    session_id: int
    engagement_score: int
    quiz_triggered: bool
    practice_triggered: bool
    newly_triggered: Dict[str, bool]
    threshold_status: ThresholdStatus
    should_trigger_engagement: bool
