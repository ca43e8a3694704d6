"""
Transport 예외

코디네이터 응답 상태 코드를 타입별 예외로 매핑합니다.
"""

from typing import Any, Mapping

from common.exception import JoblineError


class TransportError(JoblineError):
    """Transport 기본 예외"""

    def __init__(
        self,
        message: str,
        code: str = "transport_error",
        retryable: bool = False,
        details: dict[str, Any] | None = None,
        request_id: str | None = None,
        status: int | None = None,
    ):
        super().__init__(message, code=code, retryable=retryable, details=details)
        self.request_id = request_id
        self.status = status


class TransportConnectionError(TransportError):
    """네트워크/연결 실패"""
    def __init__(self, message: str):
        super().__init__(message, code="connection_error", retryable=True)


class TransportValidationError(TransportError):
    """요청 검증 실패 (400)"""
    def __init__(self, message: str, details: dict[str, Any] | None = None, request_id: str | None = None):
        super().__init__(message, code="invalid_request", details=details, request_id=request_id, status=400)


class NotFoundError(TransportError):
    """리소스 없음 (404)"""
    def __init__(self, resource_type: str, resource_id: str, request_id: str | None = None):
        super().__init__(
            f"{resource_type} '{resource_id}' not found",
            code="not_found",
            details={"resource_type": resource_type, "resource_id": resource_id},
            request_id=request_id,
            status=404,
        )
        self.resource_type = resource_type
        self.resource_id = resource_id


class ConflictError(TransportError):
    """상태 충돌 (409)"""
    def __init__(self, message: str, details: dict[str, Any] | None = None, request_id: str | None = None,
                 code: str = "conflict"):
        super().__init__(message, code=code, details=details, request_id=request_id, status=409)


class DuplicateError(ConflictError):
    """중복 잡 (409, code=duplicate)"""
    def __init__(self, message: str, details: dict[str, Any] | None = None, request_id: str | None = None):
        super().__init__(message, details=details, request_id=request_id, code="duplicate")
        self.existing_job_id = (details or {}).get("existing_job_id")


class RateLimitError(TransportError):
    """요청 제한 (429)"""
    def __init__(self, message: str, retry_after: float | None = None,
                 details: dict[str, Any] | None = None, request_id: str | None = None):
        super().__init__(message, code="rate_limited", retryable=True, details=details,
                         request_id=request_id, status=429)
        self.retry_after = retry_after


class ServerError(TransportError):
    """서버 오류 (5xx)"""
    def __init__(self, message: str, status: int, request_id: str | None = None):
        super().__init__(message, code="server_error", retryable=True, request_id=request_id, status=status)


def parse_error_response(status: int, body: Any, headers: Mapping[str, str] | None = None) -> TransportError:
    """
    에러 응답을 예외로 변환

    Args:
        status: HTTP 상태 코드
        body: 응답 바디 ({"error": {code, message, retryable, details, request_id}})
        headers: 응답 헤더 (Retry-After 파싱용)
    """
    err = body.get("error") if isinstance(body, dict) else None
    err = err if isinstance(err, dict) else {}
    message = err.get("message") or f"HTTP {status}"
    details = err.get("details")
    request_id = err.get("request_id")

    if status == 400:
        return TransportValidationError(message, details, request_id)
    if status == 404:
        details = details or {}
        return NotFoundError(
            details.get("resource_type", "resource"),
            details.get("resource_id", "unknown"),
            request_id,
        )
    if status == 409:
        if err.get("code") == "duplicate":
            return DuplicateError(message, details, request_id)
        return ConflictError(message, details, request_id)
    if status == 429:
        retry_after = None
        raw = (headers or {}).get("retry-after") or (headers or {}).get("Retry-After")
        if raw is not None:
            try:
                retry_after = float(raw)
            except ValueError:
                retry_after = None
        return RateLimitError(message, retry_after=retry_after, details=details, request_id=request_id)
    if status >= 500:
        return ServerError(message, status, request_id)

    return TransportError(
        message,
        code=err.get("code", "unknown"),
        retryable=bool(err.get("retryable", False)),
        details=details,
        request_id=request_id,
        status=status,
    )
