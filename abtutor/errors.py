# abtutor/errors.py
# 서비스 계층에서 그대로 raise 하는 예외들.
# HTTPException 을 상속하므로 라우터에서 따로 변환하지 않아도 된다.
from typing import Dict, Optional

from fastapi import HTTPException, status


class NotFoundError(HTTPException):
    """세션/시도/답변이 없거나 호출자 소유가 아님 -> 404"""

    def __init__(self, entity: str, detail: Optional[str] = None):
        body = {"message": f"{entity}_not_found"}
        if detail:
            body["detail"] = detail
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=body)
        self.entity = entity


class ValidationFailed(HTTPException):
    """필드 단위 검증 실패 -> 422"""

    def __init__(self, errors: Dict[str, str]):
        super().__init__(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"message": "validation_failed", "errors": errors},
        )
        self.errors = errors


class TransientStoreConflict(HTTPException):
    """세션 시작 중 lock 대기/충돌. 내부에서 한 번 재시도 후에도 실패하면 409"""

    def __init__(self, detail: str = "session_start_conflict"):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail={"message": "conflict", "detail": detail},
        )


class AttributionAmbiguous(Exception):
    """귀속 신뢰도를 해석할 수 없음. 요청을 거부하지 않고 null 로 처리한다."""

    def __init__(self, raw):
        super().__init__(f"unrecognized attribution confidence: {raw!r}")
        self.raw = raw


class SandboxUnavailable(HTTPException):
    """코드 실행 샌드박스 호출 실패 -> 502 (시도는 저장하지 않음)"""

    def __init__(self, detail: str = "sandbox_unavailable"):
        super().__init__(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={"message": "sandbox_unavailable", "detail": detail},
        )
