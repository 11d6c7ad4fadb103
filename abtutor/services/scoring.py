# abtutor/services/scoring.py
# 점수 공식 모음 (순수 함수, 부작용 없음). 잘못된 입력은 0 으로 취급한다.
import math
import re
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict

# 단순화한 Java 메서드 시그니처: 접근제어자? static? 반환타입 이름(파라미터) {
METHOD_PATTERN = re.compile(
    r"\b(public|private|protected)?\s*(static\s+)?[A-Za-z_][A-Za-z0-9_<>\[\]]*\s+[A-Za-z_][A-Za-z0-9_]*\s*\([^)]*\)\s*\{",
    re.MULTILINE,
)

INTERACTION_CAP = 30
CODE_CAP = 40
TIME_CAP = 5
QUIZ_CAP = 30


def _num(value, cast=float):
    """None / 문자열 / 이상값 -> 0"""
    try:
        v = cast(value)
    except (TypeError, ValueError):
        return cast(0)
    if isinstance(v, float) and (math.isnan(v) or math.isinf(v)):
        return cast(0)
    return v


def round_half_up(value: float, places: int = 2) -> float:
    """0.5 는 0 에서 먼 쪽으로 (2.675 -> 2.68). 내장 round 는 짝수 쪽으로 보냄"""
    quantum = Decimal(1).scaleb(-places)
    return float(Decimal(repr(float(value))).quantize(quantum, rounding=ROUND_HALF_UP))


def code_complexity(source: str) -> float:
    """
    Complexity = min(LineCount/10, 2) + ClassPresence + min(MethodCount, 2)
    - LineCount: 공백이 아닌 줄 수
    - ClassPresence: 'class' 가 있으면 1
    - MethodCount: 메서드 시그니처 수
    """
    if not isinstance(source, str):
        return 0.0

    line_count = sum(1 for line in source.splitlines() if line.strip())
    class_presence = 1 if "class" in source.lower() else 0
    method_count = len(METHOD_PATTERN.findall(source))

    complexity = min(line_count / 10.0, 2.0) + class_presence + min(method_count, 2)
    return round_half_up(complexity)


def execution_reward(success: bool, complexity: float) -> int:
    # RewardPoints = success ? min(4 + Complexity, 8) : 1
    if success:
        return int(math.floor(min(4.0 + _num(complexity), 8.0)))
    return 1


def time_points(total_minutes: int) -> int:
    # TimePoints = floor(TotalMinutes / 10)
    minutes = _num(total_minutes, int)
    if minutes <= 0:
        return 0
    return minutes // 10


def weighted_progress(interaction: int, code: int, time: int, quiz: int) -> Dict[str, int]:
    interaction_capped = min(_num(interaction, int), INTERACTION_CAP)
    code_capped = min(_num(code, int), CODE_CAP)
    time_capped = min(_num(time, int), TIME_CAP)
    quiz_capped = min(_num(quiz, int), QUIZ_CAP)
    total = interaction_capped + code_capped + time_capped + quiz_capped

    return {
        "interaction_capped": interaction_capped,
        "code_capped": code_capped,
        "time_capped": time_capped,
        "quiz_capped": quiz_capped,
        "total_progress": total,
        "overall_progress": min(total, 100),
    }


def performance_score(
    quiz_score: float,
    code_success_rate: float,
    error_rate: float,
    alpha: float = 1.0,
    beta: float = 1.0,
    gamma: float = 1.0,
) -> float:
    # PerformanceScore = α·QuizScore + β·CodeSuccessRate − γ·ErrorRate
    score = (
        alpha * _num(quiz_score)
        + beta * _num(code_success_rate)
        - gamma * _num(error_rate)
    )
    return round_half_up(score)


def next_difficulty(score: float, high: float = 70.0, low: float = 40.0) -> str:
    s = _num(score)
    if s > high:
        return "increase"
    if s < low:
        return "decrease"
    return "same"


def progress_report(
    interaction_points: int,
    code_points: int,
    total_minutes: int,
    quiz_points: int,
    quiz_score: float = 0.0,
    code_success_rate: float = 0.0,
    error_rate: float = 0.0,
) -> Dict:
    """진행도 + 성과 점수 + 다음 난이도 한 번에 계산"""
    tp = time_points(total_minutes)
    progress = weighted_progress(interaction_points, code_points, tp, quiz_points)
    score = performance_score(quiz_score, code_success_rate, error_rate)
    return {
        "time_points": tp,
        **progress,
        "performance_score": score,
        "next_difficulty": next_difficulty(score),
    }
