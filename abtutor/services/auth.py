# abtutor/services/auth.py
# Supabase 발급 JWT(HS256) 검증. sub 를 user_id 로 사용한다.
import logging
from typing import Dict, Optional

from jose import JWTError, jwt

from abtutor.config import settings

logger = logging.getLogger(__name__)


async def verify_bearer(authorization: Optional[str], secret: Optional[str] = None) -> Dict[str, Optional[str]]:
    secret = secret or settings.supabase_jwt_secret
    if not secret:
        raise ValueError("SUPABASE_JWT_SECRET is not configured")

    if not authorization:
        raise ValueError("missing Authorization header")

    parts = authorization.split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise ValueError("invalid Authorization header")

    token = parts[1].strip()
    if not token:
        raise ValueError("invalid Authorization header")

    try:
        claims = jwt.decode(
            token,
            secret,
            algorithms=["HS256"],
            options={
                "verify_aud": False,
                "verify_iss": False,
            },
        )
    except JWTError as e:
        logger.warning("[AUTH] JWT decode failed: %s", e)
        raise ValueError("invalid token") from e

    user_id = claims.get("sub")
    if not user_id:
        raise ValueError("invalid token: missing sub")

    return {
        "user_id": user_id,
        "email": claims.get("email"),
    }
