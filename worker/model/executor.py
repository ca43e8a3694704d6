"""
Worker 모델 - Executor 관련 구조체
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any

from common.cancel import CancellationToken
from transport.base import BaseTransport
from worker.model.job import Job
from worker.progress import report_progress


@dataclass
class JobContext:
    """잡 실행 1회분 컨텍스트 (미들웨어와 핸들러에 전달)"""
    job: Job
    attempt: int
    queue: str
    worker_id: str
    token: CancellationToken
    workflow_id: str | None = None
    parent_results: dict[str, Any] | None = None
    metadata: dict[str, Any] = field(default_factory=dict)  # 실행 범위 스크래치 저장소
    transport: BaseTransport | None = None

    @property
    def args(self) -> list[Any]:
        return self.job.args

    async def progress(self, percentage: float, message: str | None = None, data: dict[str, Any] | None = None) -> None:
        """진행률 보고 (0~100)"""
        if self.transport is None:
            raise RuntimeError("JobContext has no transport for progress reporting")
        await report_progress(self.transport, self.job.id, percentage, message, data)


@dataclass
class ActiveJob:
    """실행 중인 잡 레코드"""
    job_id: str
    token: CancellationToken
    timeout_handle: asyncio.TimerHandle | None = None
    started_at: float = field(default_factory=time.monotonic)
