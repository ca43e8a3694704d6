"""
공통 예외 클래스 정의

모든 패키지(worker, client, transport)의 예외는 JoblineError를 상속합니다.
"""

from typing import Any


class JoblineError(Exception):
    """jobline 기본 예외"""

    def __init__(
        self,
        message: str,
        code: str = "unknown",
        retryable: bool = False,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.retryable = retryable
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        """와이어 포맷 에러 객체로 변환 ({code, message, retryable, details})"""
        error: dict[str, Any] = {
            "code": self.code,
            "message": self.message,
            "retryable": self.retryable,
        }
        if self.details is not None:
            error["details"] = self.details
        return error


class MiddlewareError(JoblineError):
    """미들웨어 체인 기본 예외"""
    pass


class MiddlewareNotFoundError(MiddlewareError):
    """이름으로 지정한 미들웨어가 체인에 없음"""
    def __init__(self, name: str):
        self.name = name
        super().__init__(
            f"Middleware '{name}' not found in chain",
            code="middleware_not_found",
            details={"name": name},
        )


class NextCalledMultipleTimesError(MiddlewareError):
    """하나의 미들웨어 안에서 next()를 두 번 이상 호출함"""
    def __init__(self):
        super().__init__("next() called multiple times", code="next_called_multiple_times")
