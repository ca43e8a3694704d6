"""
잡 실행기 모듈

claim된 잡 하나의 실행을 담당합니다.

    핸들러 조회 → 취소 토큰/타임아웃 설정 → 미들웨어 체인 + 핸들러 실행 → ack/nack 보고

실행 결과와 관계없이 종료 시 ActiveJob 레코드를 제거하고,
대기 중인 shutdown drain이 완료될 수 있는지 다시 평가합니다.
"""

import asyncio
import json
import logging
import time
import traceback
from typing import Any

from common.cancel import CancellationToken
from common.event import (
    EventEmitter,
    JOB_COMPLETED,
    JOB_FAILED,
    JOB_STARTED,
    create_event,
)
from common.logging import bind_job_context, reset_job_context
from common.middleware import MiddlewareChain, compose_execution
from transport.base import BaseTransport
from transport.exception import TransportError
from worker.base import HandlerRegistry
from worker.exception import JobTimeoutError
from worker.model import ActiveJob, Job, JobContext, JobError
from worker.model.job import HANDLER_ERROR, HANDLER_NOT_FOUND, INVALID_JOB, TIMEOUT

logger = logging.getLogger(__name__)


class Executor:
    """잡 실행기"""

    def __init__(
        self,
        transport: BaseTransport,
        registry: HandlerRegistry,
        middleware: MiddlewareChain,
        events: EventEmitter,
        worker_id: str,
    ):
        self._transport = transport
        self._registry = registry
        self._middleware = middleware
        self._events = events
        self._worker_id = worker_id
        self._source = f"ojs://sdk/workers/{worker_id}"

        self._active: dict[str, ActiveJob] = {}
        self._running_tasks: set[asyncio.Task] = set()
        self._idle = asyncio.Event()
        self._idle.set()
        self._jobs_completed = 0

    def submit(self, job: Job) -> asyncio.Task:
        """
        잡 실행 태스크 생성

        ActiveJob 레코드는 태스크 생성 전에 동기적으로 등록되므로
        submit 직후의 active_count에 즉시 반영됩니다.
        """
        record = ActiveJob(job_id=job.id, token=CancellationToken())
        self._active[job.id] = record
        self._idle.clear()

        task = asyncio.create_task(self.execute(job, record), name=f"job-{job.id}")
        self._running_tasks.add(task)
        task.add_done_callback(self._on_task_done)
        return task

    async def execute(self, job: Job, record: ActiveJob) -> None:
        """
        잡 실행 (워커 태스크)

        Args:
            job: claim된 잡
            record: submit()에서 등록한 ActiveJob 레코드
        """
        log_context = bind_job_context(job_id=job.id, job_type=job.type, worker_id=self._worker_id)
        try:
            handler = self._registry.find(job.type)
            if handler is None:
                await self._reject(job, record)
                return

            if job.timeout_seconds is not None:
                loop = asyncio.get_running_loop()
                record.timeout_handle = loop.call_later(
                    job.timeout_seconds,
                    record.token.cancel,
                    JobTimeoutError(job.id, job.timeout),
                )

            await self._run(job, record, handler)
        finally:
            self._settle(record)
            reset_job_context(log_context)

    async def _run(self, job: Job, record: ActiveJob, handler) -> None:
        ctx = JobContext(
            job=job,
            attempt=job.attempt or 1,
            queue=job.queue,
            worker_id=self._worker_id,
            token=record.token,
            workflow_id=job.workflow_id,
            parent_results=job.parent_results,
            transport=self._transport,
        )
        logger.info(f"Starting job execution: id={job.id}, type={job.type}, attempt={ctx.attempt}")
        await self._emit(JOB_STARTED, job, {
            "job_type": job.type,
            "queue": job.queue,
            "worker_id": self._worker_id,
            "attempt": ctx.attempt,
        })

        execute = compose_execution(self._middleware.entries(), handler)
        try:
            result = await execute(ctx)
            # ack 바디로 보낼 수 없는 결과는 핸들러 실패로 보고
            json.dumps(result)
        except Exception as e:
            error = self._classify(job, record.token, e)
            duration_ms = _elapsed_ms(record)
            logger.warning(
                f"Job execution failed: id={job.id}, type={job.type}, "
                f"code={error.code}, error={error.message}"
            )
            await self._nack(job.id, error)
            await self._emit(JOB_FAILED, job, {
                "job_type": job.type,
                "queue": job.queue,
                "attempt": ctx.attempt,
                "error": error.to_wire(),
                "duration_ms": duration_ms,
            })
            return

        duration_ms = _elapsed_ms(record)
        await self._ack(job.id, result)
        self._jobs_completed += 1
        logger.info(f"Job execution completed: id={job.id}, duration_ms={duration_ms}")
        await self._emit(JOB_COMPLETED, job, {
            "job_type": job.type,
            "queue": job.queue,
            "duration_ms": duration_ms,
            "attempt": ctx.attempt,
            "result": result,
        })

    async def _reject(self, job: Job, record: ActiveJob) -> None:
        """핸들러 미등록: 미들웨어를 거치지 않고 재시도 불가로 nack"""
        logger.error(f"Handler not found: {job.type} (id={job.id})")
        error = JobError(
            code=HANDLER_NOT_FOUND,
            message=f"No handler registered for job type '{job.type}'.",
            retryable=False,
        )
        await self._nack(job.id, error)
        await self._emit(JOB_FAILED, job, {
            "job_type": job.type,
            "queue": job.queue,
            "attempt": job.attempt or 1,
            "error": error.to_wire(),
            "duration_ms": _elapsed_ms(record),
        })

    async def reject_invalid(self, raw: Any, error: Exception) -> None:
        """
        envelope 검증에 실패한 claim 잡을 재시도 불가로 nack

        id를 알 수 없으면 보고할 수 없으므로 로그만 남깁니다.
        """
        job_id = raw.get("id") if isinstance(raw, dict) else None
        if not isinstance(job_id, str) or not job_id:
            logger.error(f"Claimed job without usable id discarded: error={error}")
            return

        logger.error(f"Invalid job envelope: id={job_id}, error={error}")
        await self._nack(job_id, JobError(
            code=INVALID_JOB,
            message=f"Invalid job envelope: {error}",
            retryable=False,
        ))

    def _classify(self, job: Job, token: CancellationToken, error: Exception) -> JobError:
        """실패 분류: 토큰 사유가 타임아웃이면 timeout, 그 외는 handler_error"""
        reason = token.reason
        if isinstance(reason, JobTimeoutError):
            return JobError(
                code=TIMEOUT,
                message=str(reason),
                retryable=True,
                details=reason.details,
            )
        return JobError(
            code=HANDLER_ERROR,
            message=str(error) or type(error).__name__,
            retryable=True,
            details={
                "error_type": type(error).__name__,
                "traceback": "".join(traceback.format_exception(type(error), error, error.__traceback__)),
            },
        )

    def _settle(self, record: ActiveJob) -> None:
        if record.timeout_handle is not None:
            record.timeout_handle.cancel()
        self._active.pop(record.job_id, None)
        if not self._active:
            self._idle.set()

    async def _ack(self, job_id: str, result: Any) -> None:
        """성공 보고 (best-effort)"""
        body: dict[str, Any] = {"job_id": job_id}
        if result is not None:
            body["result"] = result
        try:
            await self._transport.request("POST", "/workers/ack", body)
        except TransportError as e:
            logger.error(f"Failed to ack job: id={job_id}, error={e}")

    async def _nack(self, job_id: str, error: JobError) -> None:
        """실패 보고 (best-effort)"""
        try:
            await self._transport.request("POST", "/workers/nack", {"job_id": job_id, "error": error.to_wire()})
        except TransportError as e:
            logger.error(f"Failed to nack job: id={job_id}, error={e}")

    async def _emit(self, event_type: str, job: Job, data: dict[str, Any]) -> None:
        try:
            await self._events.emit(create_event(event_type, self._source, data, subject=job.id))
        except Exception as e:
            logger.error(f"Event listener failed: type={event_type}, job_id={job.id}, error={e}", exc_info=True)

    def _on_task_done(self, task: asyncio.Task) -> None:
        """태스크 완료 콜백"""
        self._running_tasks.discard(task)
        if not task.cancelled() and task.exception():
            logger.error(f"Task exception: {task.exception()}")

    def cancel_all(self, reason: BaseException) -> int:
        """
        실행 중인 모든 잡의 취소 토큰 발동

        Returns:
            발동된 토큰 수
        """
        count = 0
        for record in list(self._active.values()):
            if record.token.cancel(reason):
                count += 1
        return count

    async def wait_idle(self, timeout: float | None = None) -> bool:
        """
        실행 중인 잡이 모두 끝날 때까지 대기

        Returns:
            timeout 내에 비었으면 True
        """
        if not self._active:
            return True
        try:
            await asyncio.wait_for(self._idle.wait(), timeout=timeout)
            return True
        except asyncio.TimeoutError:
            return False

    def reset(self) -> None:
        self._jobs_completed = 0

    @property
    def active_count(self) -> int:
        """실행 중인 잡 수"""
        return len(self._active)

    @property
    def active_job_ids(self) -> list[str]:
        return list(self._active)

    @property
    def jobs_completed(self) -> int:
        return self._jobs_completed


def _elapsed_ms(record: ActiveJob) -> int:
    return int((time.monotonic() - record.started_at) * 1000)
