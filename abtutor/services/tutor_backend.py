"""
튜터 모델 호출 (OpenAI SDK)
- model A: OpenAI
- model B: OpenAI 호환 엔드포인트 (base_url)
호출 실패 시 예외 대신 fallback 응답을 돌려준다.
"""
import logging
import time
from dataclasses import dataclass
from typing import Dict, List, Optional

from openai import OpenAI

from abtutor.config import settings

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """
너는 Java 프로그래밍 튜터이다.
- 학습자의 수준에 맞춰 짧고 정확하게 설명한다.
- 정답 코드를 통째로 주기보다 다음 단계를 스스로 떠올리도록 힌트를 준다.
- 코드 예시는 Java 로 작성한다.
"""

FALLBACK_TEXT = "지금은 튜터 응답을 가져오지 못했습니다. 잠시 후 다시 질문해 주세요."

HISTORY_LIMIT = 10


@dataclass
class TutorReply:
    text: str
    latency_ms: int
    is_fallback: bool = False


class TutorBackend:
    """모델 라벨 1개 = TutorBackend 1개"""

    def __init__(self, label: str, model_name: str, client: OpenAI, temperature: float = 0.4):
        self.label = label
        self.model_name = model_name
        self.client = client
        self.temperature = temperature

    @staticmethod
    def build_messages(
        text: str,
        history: Optional[List[Dict]] = None,
        preferences: Optional[Dict] = None,
        topic: Optional[str] = None,
    ) -> List[Dict[str, str]]:
        system = SYSTEM_PROMPT
        if topic:
            system += f"\n현재 학습 주제: {topic}"
        if preferences:
            prefs = ", ".join(f"{k}={v}" for k, v in preferences.items())
            system += f"\n학습자 선호: {prefs}"

        messages = [{"role": "system", "content": system.strip()}]
        for turn in (history or [])[-HISTORY_LIMIT:]:
            role = turn.get("role")
            content = turn.get("content")
            if role in ("user", "assistant") and content:
                messages.append({"role": role, "content": content})
        messages.append({"role": "user", "content": text})
        return messages

    def send_message(
        self,
        text: str,
        history: Optional[List[Dict]] = None,
        preferences: Optional[Dict] = None,
        topic: Optional[str] = None,
    ) -> TutorReply:
        started = time.monotonic()
        try:
            completion = self.client.chat.completions.create(
                model=self.model_name,
                temperature=self.temperature,
                messages=self.build_messages(text, history, preferences, topic),
            )
            content = (completion.choices[0].message.content or "").strip()
            latency_ms = int((time.monotonic() - started) * 1000)
            if not content:
                logger.warning("[TUTOR] empty completion model=%s", self.label)
                return TutorReply(text=FALLBACK_TEXT, latency_ms=latency_ms, is_fallback=True)
            return TutorReply(text=content, latency_ms=latency_ms)

        except Exception as e:
            latency_ms = int((time.monotonic() - started) * 1000)
            logger.warning("[TUTOR] completion failed model=%s: %s", self.label, e)
            return TutorReply(text=FALLBACK_TEXT, latency_ms=latency_ms, is_fallback=True)


def build_backends() -> Dict[str, TutorBackend]:
    """설정값으로 model A / B 백엔드 생성"""
    client_a = OpenAI(api_key=settings.openai_api_key or "missing")
    client_b = OpenAI(
        api_key=settings.model_b_api_key or settings.openai_api_key or "missing",
        base_url=settings.model_b_base_url,
    )
    return {
        settings.model_a_label: TutorBackend(
            settings.model_a_label, settings.model_a_name, client_a, settings.tutor_temperature
        ),
        settings.model_b_label: TutorBackend(
            settings.model_b_label, settings.model_b_name, client_b, settings.tutor_temperature
        ),
    }
