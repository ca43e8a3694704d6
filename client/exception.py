"""
Client 관련 예외 클래스 정의
"""

from transport.exception import TransportValidationError


class EnqueueValidationError(TransportValidationError):
    """전송 전 인큐 요청 검증 실패"""
    def __init__(self, errors: list[str]):
        self.errors = errors
        super().__init__("; ".join(errors), details={"validation_errors": errors})
