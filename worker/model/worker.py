"""
Worker 설정 및 상태 모델
"""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class WorkerState(str, Enum):
    """워커 라이프사이클 상태"""
    RUNNING = "running"
    QUIET = "quiet"
    TERMINATE = "terminate"
    TERMINATED = "terminated"


class WorkerConfig(BaseModel):
    """워커 설정 (생성 후 변경 불가)"""
    model_config = ConfigDict(frozen=True)

    queues: list[str] = Field(default_factory=lambda: ["default"], min_length=1, description="우선순위 순서")
    concurrency: int = Field(default=10, ge=1, description="동시 실행 가능한 잡 수")
    poll_interval_seconds: float = Field(default=1.0, gt=0)
    heartbeat_interval_seconds: float = Field(default=5.0, gt=0)
    shutdown_timeout_seconds: float = Field(default=25.0, ge=0, description="graceful shutdown 유예 시간")
    visibility_timeout_seconds: float = Field(default=30.0, gt=0, description="claim 시 요청할 visibility timeout")
    labels: list[str] = Field(default_factory=list)

    @property
    def visibility_timeout_ms(self) -> int:
        return int(self.visibility_timeout_seconds * 1000)
