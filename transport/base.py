"""Transport 기본 인터페이스"""
from abc import ABC, abstractmethod
from typing import Any

from common.cancel import CancellationToken
from transport.model.transport import TransportResponse


class BaseTransport(ABC):
    """
    코디네이터 Transport 기본 클래스

    HTTP, RPC, 인메모리 등 다양한 바인딩을 지원하기 위한
    공통 인터페이스를 정의합니다. 워커/클라이언트는 이 인터페이스에만 의존합니다.
    """

    @abstractmethod
    async def request(
        self,
        method: str,
        path: str,
        body: Any = None,
        *,
        headers: dict[str, str] | None = None,
        token: CancellationToken | None = None,
        timeout: float | None = None,
    ) -> TransportResponse:
        """
        요청 전송

        Args:
            method: GET / POST / DELETE
            path: base path 이하 경로 (예: /workers/fetch)
            body: JSON 직렬화 가능한 요청 바디
            headers: 요청별 추가 헤더
            token: 취소 토큰 (발동 시 요청 중단)
            timeout: 요청 타임아웃 (초)

        Returns:
            TransportResponse

        Raises:
            TransportConnectionError: 네트워크 실패
            TransportError: 에러 상태 코드 응답
        """
        ...

    async def close(self) -> None:
        """리소스 정리 (기본 구현은 아무것도 하지 않음)"""
        return None
