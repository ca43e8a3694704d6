"""
잡 envelope 및 에러 모델

코디네이터가 내려주는 잡과 실패 보고용 에러 객체.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

# 실패 코드
HANDLER_NOT_FOUND = "handler_not_found"
HANDLER_ERROR = "handler_error"
TIMEOUT = "timeout"
INVALID_JOB = "invalid_job"


class JobError(BaseModel):
    """잡 실패 보고용 에러 객체"""
    code: str
    message: str
    retryable: bool = True
    details: dict[str, Any] | None = None

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)


class Job(BaseModel):
    """잡 envelope (정의 안 된 확장 속성도 허용)"""
    model_config = ConfigDict(extra='allow')

    specversion: str = "1.0"
    id: str
    type: str
    queue: str = "default"
    args: list[Any] = Field(default_factory=list)
    meta: dict[str, Any] | None = None
    priority: int | None = None
    timeout: int | None = None  # 실행 타임아웃 (ms)
    attempt: int | None = None
    max_attempts: int | None = None
    state: str | None = None
    workflow_id: str | None = None
    parent_results: dict[str, Any] | None = None

    @property
    def timeout_seconds(self) -> float | None:
        if self.timeout and self.timeout > 0:
            return self.timeout / 1000
        return None
