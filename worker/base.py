"""
Handler 레지스트리 모듈

잡 타입(예: email.send)별로 핸들러 함수를 등록하고 조회합니다.
레지스트리는 모듈 전역이 아니라 Worker 인스턴스마다 하나씩 생성됩니다.
"""

from typing import Any, Awaitable, Callable

from worker.exception import HandlerNotFoundError
from worker.model.executor import JobContext

__all__ = ['JobHandler', 'HandlerRegistry', 'HandlerNotFoundError']

JobHandler = Callable[[JobContext], Awaitable[Any] | Any]


class HandlerRegistry:
    """잡 타입 → 핸들러 레지스트리 (워커 인스턴스 단위)"""

    def __init__(self):
        self._handlers: dict[str, JobHandler] = {}

    def register(self, job_type: str, fn: JobHandler) -> None:
        """핸들러 등록 (같은 타입이면 덮어씀)"""
        self._handlers[job_type] = fn

    def handler(self, job_type: str):
        """핸들러 등록 데코레이터"""
        def decorator(fn: JobHandler) -> JobHandler:
            self.register(job_type, fn)
            return fn
        return decorator

    def get(self, job_type: str) -> JobHandler:
        """
        핸들러 반환

        Raises:
            HandlerNotFoundError: 등록되지 않은 타입
        """
        if job_type not in self._handlers:
            raise HandlerNotFoundError(job_type)
        return self._handlers[job_type]

    def find(self, job_type: str) -> JobHandler | None:
        return self._handlers.get(job_type)

    def types(self) -> list[str]:
        """등록된 잡 타입 목록"""
        return list(self._handlers)

    def __contains__(self, job_type: str) -> bool:
        return job_type in self._handlers
