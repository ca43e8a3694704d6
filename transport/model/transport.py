"""Transport 관련 모델"""
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, Field

BASE_PATH = "/ojs/v1"
CONTENT_TYPE = "application/openjobspec+json"
PROTOCOL_VERSION = "1.0"


class TransportConfig(BaseModel):
    """HTTP Transport 설정"""
    url: str = Field(default="http://localhost:8080", description="코디네이터 base URL")
    auth: str | None = Field(default=None, description="Authorization 헤더 값 (예: 'Bearer <token>')")
    headers: dict[str, str] = Field(default_factory=dict)
    timeout_seconds: float = Field(default=30.0, gt=0)
    protocol_version: str = PROTOCOL_VERSION


@dataclass
class TransportRequest:
    """코디네이터로 보내는 요청"""
    method: str
    path: str
    body: Any = None
    headers: dict[str, str] | None = None
    timeout: float | None = None  # 초 단위, None이면 transport 기본값


@dataclass
class TransportResponse:
    """코디네이터 응답 (status / headers / body)"""
    status: int
    headers: dict[str, str] = field(default_factory=dict)
    body: Any = field(default_factory=dict)

    @property
    def request_id(self) -> str | None:
        return self.headers.get("x-request-id")
