# abtutor/config.py


from dotenv import load_dotenv
from pathlib import Path
from pydantic_settings import BaseSettings, SettingsConfigDict

load_dotenv()  # .env 파일 먼저 읽기

BASE_DIR = Path(__file__).resolve().parent.parent

class Settings(BaseSettings):
    # 환경 구분
    app_env: str = "local"
    log_level: str = "INFO"

    # DB (운영: postgresql+psycopg2://..., 로컬/테스트: sqlite)
    database_url: str = f"sqlite:///{BASE_DIR / 'abtutor.db'}"
    db_pool_size: int = 30
    session_lock_timeout_ms: int = 5000      # 세션 시작 시 row lock 대기 한도

    # 인증 (Supabase JWT)
    supabase_jwt_secret: str | None = None

    # 튜터 모델 A / B
    openai_api_key: str | None = None
    model_a_label: str = "model_a"
    model_b_label: str = "model_b"
    model_a_name: str = "gpt-4o-mini"
    model_b_name: str = "meta-llama/Llama-3.3-70B-Instruct-Turbo"
    model_b_base_url: str | None = "https://api.together.xyz/v1"
    model_b_api_key: str | None = None
    tutor_temperature: float = 0.4

    # 참여도 임계값 (퀴즈/연습 트리거)
    quiz_threshold: int = 30
    practice_threshold: int = 70

    # 귀속(attribution) / 분석 기본값
    attribution_recency_minutes: int = 60
    quiz_pass_percent: float = 70.0
    analytics_window: str = "30d"
    analytics_k_runs: int = 3
    analytics_lookahead_min: int = 30

    # Java 실행 샌드박스
    sandbox_url: str = "http://localhost:8081/run"
    sandbox_timeout_sec: float = 20.0

    # pydantic-settings v2 스타일
    model_config = SettingsConfigDict(
        env_file=str(BASE_DIR / ".env"),  # 루트 .env 절대경로
        env_file_encoding="utf-8",
        extra="ignore",                   # 필요 없는 env 무시
    )

    @property
    def model_labels(self) -> tuple[str, str]:
        return self.model_a_label, self.model_b_label

settings = Settings()

if __name__ == "__main__":
    print("BASE_DIR:", BASE_DIR)
    print("DATABASE_URL:", settings.database_url)
    print("MODELS:", settings.model_labels)
