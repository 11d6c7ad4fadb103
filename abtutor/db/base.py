"""
공용 DB 베이스/세션 팩토리.
SessionLocal, engine, Base 정의는 abtutor.db.session 한 곳에서 관리한다.
"""
from datetime import datetime, timezone

from sqlalchemy import BigInteger, Integer

from abtutor.db.session import engine, SessionLocal, Base

# sqlite는 INTEGER PRIMARY KEY 만 자동 증가하므로 variant 지정
BigIntPK = BigInteger().with_variant(Integer, "sqlite")


def utcnow() -> datetime:
    """naive UTC now (DB 컬럼은 모두 naive UTC로 저장)"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


__all__ = ["engine", "SessionLocal", "Base", "BigIntPK", "utcnow"]
