# abtutor/deps.py
import logging
from functools import lru_cache
from typing import Dict

from fastapi import Header, HTTPException

from abtutor.db.base import SessionLocal
from abtutor.services.auth import verify_bearer
from abtutor.services.code_runner import CodeRunner
from abtutor.services.tutor_backend import TutorBackend, build_backends

logger = logging.getLogger(__name__)

# ----------------------------
# DB 세션
# ----------------------------
def get_db():
    db = SessionLocal()
    try:
        yield db
        db.commit()  # commit 포함
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()

# ----------------------------
# 현재 사용자 가져오기
# ----------------------------
async def get_current_user(
    authorization: str | None = Header(None),
):
    try:
        claims = await verify_bearer(authorization)
    except ValueError as e:
        logger.info("[AUTH] verify_bearer failed: %s", e)
        raise HTTPException(status_code=401, detail="unauthorized")

    return {
        "id": claims["user_id"],
        "email": claims.get("email"),
    }

# ----------------------------
# 외부 서비스 (테스트에서 override)
# ----------------------------
@lru_cache
def get_tutor_backends() -> Dict[str, TutorBackend]:
    return build_backends()


def get_code_runner() -> CodeRunner:
    return CodeRunner()
