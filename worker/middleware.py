"""
기본 실행 미들웨어

    worker.use("logging", logging_middleware())
    worker.use("timeout", timeout_middleware(30))
"""

import asyncio
import logging
import time
from typing import Any

from common.middleware import ExecutionMiddleware, NextFunction
from worker.exception import JobTimeoutError
from worker.model import JobContext

_default_logger = logging.getLogger(__name__)


def logging_middleware(logger: logging.Logger | None = None, level: int = logging.INFO) -> ExecutionMiddleware:
    """
    잡 시작/완료/실패 로그 미들웨어

    Args:
        logger: 사용할 로거 (기본: worker.middleware)
        level: 완료 로그 레벨 (시작 로그는 DEBUG, 실패 로그는 ERROR 고정)
    """
    log = logger or _default_logger

    async def middleware(ctx: JobContext, next: NextFunction) -> Any:
        job = ctx.job
        started = time.perf_counter()
        log.debug(f"Job started: {job.type} (id={job.id}, attempt={ctx.attempt})")
        try:
            result = await next()
        except Exception as e:
            duration = (time.perf_counter() - started) * 1000
            log.error(f"Job failed: {job.type} (id={job.id}, {duration:.2f}ms), error={e}")
            raise
        duration = (time.perf_counter() - started) * 1000
        log.log(level, f"Job completed: {job.type} (id={job.id}, {duration:.2f}ms)")
        return result

    return middleware


def timeout_middleware(timeout_seconds: float) -> ExecutionMiddleware:
    """
    잡 envelope에 timeout이 없을 때 적용할 기본 타임아웃

    시간이 지나면 실행 컨텍스트의 취소 토큰을 JobTimeoutError 사유로 발동합니다.
    토큰을 관찰하지 않는 핸들러는 중단되지 않습니다.
    """
    async def middleware(ctx: JobContext, next: NextFunction) -> Any:
        if ctx.job.timeout:
            return await next()
        loop = asyncio.get_running_loop()
        handle = loop.call_later(
            timeout_seconds,
            ctx.token.cancel,
            JobTimeoutError(ctx.job.id, int(timeout_seconds * 1000)),
        )
        try:
            return await next()
        finally:
            handle.cancel()

    return middleware
