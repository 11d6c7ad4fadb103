# abtutor/main.py

# ------------------------
# 환경 변수 / 로깅
# ------------------------
import logging

from dotenv import load_dotenv
load_dotenv()

from abtutor.config import settings

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s - %(message)s",
)
logger = logging.getLogger(__name__)

# ------------------------
# FastAPI, CORS 미들웨어 import
# ------------------------
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from abtutor.routers import analytics as analytics_router
from abtutor.routers import attempts as attempts_router
from abtutor.routers import chat as chat_router
from abtutor.routers import progress as progress_router
from abtutor.routers import sessions as sessions_router

# ------------------------
# 1) FastAPI 앱 생성
# ------------------------
app = FastAPI(title="A/B Tutoring API")

# ------------------------
# 2) CORS 미들웨어 추가
#    - 개발용 전체 허용
# ------------------------
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ------------------------
# 3) 예상하지 못한 예외 -> 500 (트랜잭션은 get_db 에서 rollback)
# ------------------------
@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("[UNHANDLED] %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": {"message": "internal_server_error"}})

# ------------------------
# 4) 라우터 등록
# ------------------------
app.include_router(sessions_router.router)
app.include_router(chat_router.router)
app.include_router(attempts_router.router)
app.include_router(analytics_router.router)
app.include_router(progress_router.router)

# ------------------------
# 5) Root 엔드포인트 (health check)
# ------------------------
@app.get("/")
def root():
    return {"ok": True, "env": settings.app_env}
