"""HTTP Transport (httpx)"""
import json
import logging
from typing import Any

import httpx

from common.cancel import CancellationToken
from transport.base import BaseTransport
from transport.exception import TransportConnectionError, TransportError, parse_error_response
from transport.model.transport import BASE_PATH, CONTENT_TYPE, TransportConfig, TransportResponse

logger = logging.getLogger(__name__)


class HttpTransport(BaseTransport):
    """
    HTTP Transport

    httpx.AsyncClient로 코디네이터에 JSON 요청을 보냅니다.
    모든 경로 앞에 /ojs/v1 base path가 붙습니다.
    """

    def __init__(self, config: TransportConfig, client: httpx.AsyncClient | None = None):
        """
        Args:
            config: Transport 설정
            client: 외부에서 주입할 httpx 클라이언트 (테스트용 MockTransport 등)
        """
        self._config = config
        self._base_url = config.url.rstrip("/") + BASE_PATH

        headers = {
            "Content-Type": CONTENT_TYPE,
            "Accept": CONTENT_TYPE,
            "OJS-Version": config.protocol_version,
            **config.headers,
        }
        if config.auth:
            headers["Authorization"] = config.auth

        self._client = client or httpx.AsyncClient(
            base_url=self._base_url,
            headers=headers,
            timeout=config.timeout_seconds,
        )
        if client is not None:
            self._client.base_url = self._base_url
            self._client.headers.update(headers)

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
        """요청 전송 (토큰이 있으면 발동 시 요청 중단)"""
        send = self._send(method, path, body, headers, timeout)
        if token is not None:
            return await token.run(send)
        return await send

    async def _send(
        self,
        method: str,
        path: str,
        body: Any,
        headers: dict[str, str] | None,
        timeout: float | None,
    ) -> TransportResponse:
        content = json.dumps(body) if body is not None else None
        try:
            response = await self._client.request(
                method,
                path,
                content=content,
                headers=headers,
                timeout=timeout if timeout is not None else self._config.timeout_seconds,
            )
        except httpx.TransportError as e:
            raise TransportConnectionError(f"Connection failed: {e}") from e

        response_headers = {k.lower(): v for k, v in response.headers.items()}

        if response.status_code == 204 or not response.content:
            response_body: Any = {}
        else:
            try:
                response_body = response.json()
            except ValueError as e:
                raise TransportError(
                    f"Invalid JSON response: {e}",
                    code="serialization_error",
                    status=response.status_code,
                ) from e

        if response.status_code >= 400:
            raise parse_error_response(response.status_code, response_body, response_headers)

        logger.debug(f"{method} {path} -> {response.status_code}")
        return TransportResponse(status=response.status_code, headers=response_headers, body=response_body)

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "HttpTransport":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
