"""
Worker: 잡 실행 워커 모듈

코디네이터에서 잡을 claim하여 등록된 핸들러로 실행하고 결과를 보고합니다.
하트비트 응답으로 내려오는 상태(quiet / terminate)에 따라 라이프사이클을 전환합니다.

상태 전이:
    terminated --start()--> running --quiet--> quiet
    running/quiet --terminate 또는 stop()--> terminate --drain/유예 만료--> terminated

실행 방법:
    python -m worker.main
    jobline worker -c config/worker.yaml
"""

import asyncio
import importlib
import logging
import os
import pkgutil
import signal
import socket
import sys
import time
import uuid
from pathlib import Path
from typing import Any, Callable

from pydantic import ValidationError

from common.event import (
    EventEmitter,
    WORKER_QUIET,
    WORKER_STARTED,
    WORKER_STOPPED,
    create_event,
)
from common.middleware import ExecutionMiddleware, MiddlewareChain, maybe_await
from transport.base import BaseTransport
from transport.exception import TransportError
from transport.http import HttpTransport
from transport.model.transport import TransportConfig
from worker.base import HandlerRegistry, JobHandler
from worker.durable import DurableContext
from worker.exception import WorkerAlreadyActiveError, WorkerError, WorkerShutdownError
from worker.executor import Executor
from worker.model import Job, JobContext, WorkerConfig, WorkerState

logger = logging.getLogger(__name__)

MAX_CLAIM_BATCH = 10
MAX_BACKOFF_SECONDS = 30.0


class Worker:
    """
    잡 실행 워커

    start()는 하트비트/claim 루프를 백그라운드 태스크로 띄우고 바로 반환합니다.
    run()은 start() 후 terminated 상태가 될 때까지 대기합니다.
    """

    def __init__(
        self,
        config: WorkerConfig | None = None,
        transport: BaseTransport | None = None,
        transport_config: TransportConfig | None = None,
    ):
        self._owns_transport = transport is None
        if transport is None:
            if transport_config is None:
                raise ValueError("Either transport or transport_config is required")
            transport = HttpTransport(transport_config)

        self._config = config or WorkerConfig()
        self._transport = transport
        self._worker_id = f"worker_{uuid.uuid4()}"
        self._state = WorkerState.TERMINATED

        self._registry = HandlerRegistry()
        self._middleware: MiddlewareChain[ExecutionMiddleware] = MiddlewareChain()
        self._events = EventEmitter()
        self._executor = Executor(transport, self._registry, self._middleware, self._events, self._worker_id)

        self._claim_task: asyncio.Task | None = None
        self._heartbeat_task: asyncio.Task | None = None
        self._stop_task: asyncio.Task | None = None
        self._wake: asyncio.Event | None = None
        self._stopped: asyncio.Event | None = None
        self._started_at = 0.0
        self._consecutive_poll_errors = 0
        self._consecutive_heartbeat_failures = 0

    # ---- 핸들러 / 미들웨어 등록 ----

    def register(self, job_type: str, handler: JobHandler) -> None:
        """잡 타입에 핸들러 등록"""
        self._registry.register(job_type, handler)
        logger.debug(f"Registered handler: {job_type}")

    def handler(self, job_type: str):
        """핸들러 등록 데코레이터"""
        def decorator(fn: JobHandler) -> JobHandler:
            self.register(job_type, fn)
            return fn
        return decorator

    def register_durable(
        self,
        job_type: str,
        handler: Callable[[JobContext, DurableContext], Any],
        strict: bool = False,
    ) -> None:
        """
        durable 핸들러 등록

        핸들러는 (ctx, DurableContext)를 받습니다. DurableContext는 잡 attempt마다
        체크포인트를 조회해 새로 생성됩니다.
        """
        transport = self._transport

        async def durable_handler(ctx: JobContext) -> Any:
            dc = await DurableContext.create(transport, ctx.job.id, ctx.attempt, strict=strict)
            ctx.metadata["durable"] = dc
            return await maybe_await(handler(ctx, dc))

        durable_handler.__name__ = getattr(handler, "__name__", "durable_handler")
        self.register(job_type, durable_handler)

    def durable(self, job_type: str, strict: bool = False):
        """durable 핸들러 등록 데코레이터"""
        def decorator(fn):
            self.register_durable(job_type, fn, strict=strict)
            return fn
        return decorator

    def use(self, name_or_fn: str | ExecutionMiddleware, fn: ExecutionMiddleware | None = None) -> "Worker":
        """
        실행 미들웨어 추가

        사용 예:
            worker.use(timing)               # 이름 자동 생성 (middleware_0, ...)
            worker.use("timing", timing)
        """
        if fn is None:
            name = f"middleware_{len(self._middleware)}"
            fn = name_or_fn
        else:
            name = name_or_fn
        self._middleware.add(name, fn)
        return self

    # ---- 라이프사이클 ----

    async def start(self) -> None:
        """
        워커 시작

        Raises:
            WorkerAlreadyActiveError: running/quiet 상태에서 호출된 경우
        """
        if self._state in (WorkerState.RUNNING, WorkerState.QUIET):
            raise WorkerAlreadyActiveError(self._state.value)
        if self._state is WorkerState.TERMINATE:
            raise WorkerError("Worker is shutting down", code="worker_shutting_down")

        self._state = WorkerState.RUNNING
        self._executor.reset()
        self._consecutive_poll_errors = 0
        self._consecutive_heartbeat_failures = 0
        self._started_at = time.monotonic()
        self._wake = asyncio.Event()
        self._stopped = asyncio.Event()
        self._stop_task = None

        logger.info(
            f"Worker started (worker_id={self._worker_id}, queues={self._config.queues}, "
            f"concurrency={self._config.concurrency})"
        )
        await self._emit(WORKER_STARTED, {
            "worker_id": self._worker_id,
            "queues": list(self._config.queues),
            "concurrency": self._config.concurrency,
        })

        self._heartbeat_task = asyncio.create_task(self._heartbeat_loop(), name=f"{self._worker_id}-heartbeat")
        self._claim_task = asyncio.create_task(self._claim_loop(), name=f"{self._worker_id}-claim")

    async def run(self) -> None:
        """start() 후 terminated가 될 때까지 대기"""
        await self.start()
        try:
            await self._stopped.wait()
        finally:
            if self._owns_transport:
                await self._transport.close()

    async def quiet(self) -> None:
        """running → quiet (새 잡 claim 중단, 실행 중인 잡은 계속)"""
        if self._state is not WorkerState.RUNNING:
            return
        self._state = WorkerState.QUIET
        self._wake.set()
        logger.info(f"Worker quiet: worker_id={self._worker_id}, active_jobs={self.active_job_count}")
        await self._emit(WORKER_QUIET, {"worker_id": self._worker_id})

    async def stop(self) -> None:
        """
        Worker graceful shutdown

        claim/하트비트 루프를 중단하고 실행 중인 잡이 끝나길 기다립니다.
        유예 시간이 지나면 남은 잡의 취소 토큰을 모두 발동합니다.
        terminated 상태에서는 아무것도 하지 않습니다.
        """
        if self._state is WorkerState.TERMINATED:
            return
        if self._state is WorkerState.TERMINATE:
            await self._stopped.wait()
            return

        logger.info("Stopping Worker...")
        self._state = WorkerState.TERMINATE
        self._wake.set()
        await self._cancel_loops()

        grace = self._config.shutdown_timeout_seconds
        if self._executor.active_count:
            logger.info(f"Waiting for {self._executor.active_count} active jobs...")
            drained = await self._executor.wait_idle(timeout=grace)
            if drained:
                logger.info("All jobs completed")
            else:
                cancelled = self._executor.cancel_all(WorkerShutdownError(self._worker_id, grace))
                logger.warning(f"Shutdown timeout ({grace}s), cancelled {cancelled} active jobs")

        self._state = WorkerState.TERMINATED
        uptime_ms = int((time.monotonic() - self._started_at) * 1000)
        logger.info(
            f"Worker stopped (worker_id={self._worker_id}, "
            f"jobs_completed={self.jobs_completed}, uptime_ms={uptime_ms})"
        )
        await self._emit(WORKER_STOPPED, {
            "worker_id": self._worker_id,
            "reason": "graceful_shutdown",
            "jobs_completed": self.jobs_completed,
            "uptime_ms": uptime_ms,
        })
        self._stopped.set()

    async def _cancel_loops(self) -> None:
        """claim/하트비트 태스크를 한 번씩만 취소"""
        current = asyncio.current_task()
        tasks = [t for t in (self._claim_task, self._heartbeat_task) if t is not None]
        self._claim_task = None
        self._heartbeat_task = None

        pending = []
        for task in tasks:
            if task is current or task.done():
                continue
            task.cancel()
            pending.append(task)
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    # ---- claim 루프 ----

    async def _claim_loop(self) -> None:
        """메인 claim 루프"""
        poll = self._config.poll_interval_seconds
        while self._state is WorkerState.RUNNING:
            try:
                fetched = await self._claim_and_dispatch()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self._consecutive_poll_errors += 1
                delay = min(poll * 2 ** self._consecutive_poll_errors, MAX_BACKOFF_SECONDS)
                logger.warning(
                    f"Claim failed: error={e}, consecutive_errors={self._consecutive_poll_errors}, "
                    f"retry_in={delay}s"
                )
            else:
                self._consecutive_poll_errors = 0
                # 잡을 받았으면 바로 다음 claim
                delay = 0 if fetched > 0 else poll

            if delay > 0:
                await self._sleep(delay)
            else:
                await asyncio.sleep(0)

    async def _claim_and_dispatch(self) -> int:
        """
        가용 슬롯만큼 잡을 claim해 실행기에 넘김

        Returns:
            claim한 잡 수 (슬롯이 없으면 0)
        """
        available = self._config.concurrency - self._executor.active_count
        if available <= 0:
            logger.debug("No available slots, skipping claim")
            return 0

        count = min(available, MAX_CLAIM_BATCH)
        response = await self._transport.request("POST", "/workers/fetch", {
            "queues": list(self._config.queues),
            "count": count,
            "worker_id": self._worker_id,
            "visibility_timeout_ms": self._config.visibility_timeout_ms,
        })

        claimed = response.body.get("jobs") or []
        if not claimed:
            logger.debug("No jobs available")
            return 0

        logger.debug(f"Claimed {len(claimed)} jobs (requested={count})")
        for raw in claimed:
            # 잡 하나의 envelope 오류가 배치 전체를 버리지 않도록 개별 검증
            try:
                job = Job.model_validate(raw)
            except ValidationError as e:
                await self._executor.reject_invalid(raw, e)
                continue
            self._executor.submit(job)
        return len(claimed)

    async def _sleep(self, seconds: float) -> None:
        """인터럽트 가능한 대기 (quiet/stop 시 즉시 깨어남)"""
        try:
            await asyncio.wait_for(self._wake.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    # ---- 하트비트 ----

    async def _heartbeat_loop(self) -> None:
        """하트비트 루프 (실패는 무시하고 계속)"""
        interval = self._config.heartbeat_interval_seconds
        while self._state in (WorkerState.RUNNING, WorkerState.QUIET):
            await asyncio.sleep(interval)
            try:
                await self._send_heartbeat()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Heartbeat error: {e}", exc_info=True)

    async def _send_heartbeat(self) -> None:
        """하트비트 전송 후 코디네이터 지시 상태 반영"""
        active_job_ids = self._executor.active_job_ids
        body = {
            "worker_id": self._worker_id,
            "state": self._state.value,
            "active_jobs": len(active_job_ids),
            "active_job_ids": active_job_ids,
            "hostname": socket.gethostname(),
            "pid": os.getpid(),
            "queues": list(self._config.queues),
            "concurrency": self._config.concurrency,
            "labels": list(self._config.labels),
        }
        try:
            response = await self._transport.request("POST", "/workers/heartbeat", body)
        except TransportError as e:
            self._consecutive_heartbeat_failures += 1
            logger.debug(f"Heartbeat failed: error={e}, consecutive_failures={self._consecutive_heartbeat_failures}")
            return

        self._consecutive_heartbeat_failures = 0
        await self._apply_directive(response.body.get("state"))

    async def _apply_directive(self, directive: str | None) -> None:
        if not directive or directive == self._state.value:
            return

        if directive == WorkerState.QUIET.value and self._state is WorkerState.RUNNING:
            logger.info("Coordinator requested quiet")
            await self.quiet()
        elif directive == WorkerState.TERMINATE.value and self._state in (WorkerState.RUNNING, WorkerState.QUIET):
            logger.info("Coordinator requested terminate")
            # stop()이 하트비트 태스크를 취소하므로 별도 태스크에서 실행
            self._stop_task = asyncio.create_task(self.stop(), name=f"{self._worker_id}-stop")

    async def _emit(self, event_type: str, data: dict[str, Any]) -> None:
        try:
            await self._events.emit(create_event(event_type, f"ojs://sdk/workers/{self._worker_id}", data))
        except Exception as e:
            logger.error(f"Event listener failed: type={event_type}, error={e}", exc_info=True)

    # ---- 상태 조회 ----

    @property
    def state(self) -> WorkerState:
        return self._state

    @property
    def worker_id(self) -> str:
        return self._worker_id

    @property
    def config(self) -> WorkerConfig:
        return self._config

    @property
    def events(self) -> EventEmitter:
        return self._events

    @property
    def middleware(self) -> MiddlewareChain:
        return self._middleware

    @property
    def registry(self) -> HandlerRegistry:
        return self._registry

    @property
    def active_job_count(self) -> int:
        """실행 중인 잡 수"""
        return self._executor.active_count

    @property
    def jobs_completed(self) -> int:
        return self._executor.jobs_completed

    @property
    def consecutive_heartbeat_failures(self) -> int:
        return self._consecutive_heartbeat_failures


def load_handlers(worker: Worker, modules: list[str]) -> None:
    """
    핸들러 모듈 로드 (하위 패키지 재귀 탐색)

    각 모듈에 setup(worker) 함수가 있으면 호출해 핸들러를 등록합니다.
    """
    def load(module_name: str) -> None:
        module = importlib.import_module(module_name)
        setup = getattr(module, "setup", None)
        if callable(setup):
            setup(worker)
            logger.debug(f"Loaded handler module: {module_name}")
        if hasattr(module, "__path__"):
            for _, child, _ in pkgutil.iter_modules(module.__path__):
                load(f"{module_name}.{child}")

    for name in modules:
        load(name)


def install_signal_handlers(worker: Worker) -> None:
    """SIGINT/SIGTERM 수신 시 graceful shutdown"""
    loop = asyncio.get_running_loop()

    def signal_handler():
        logger.info("Received shutdown signal")
        asyncio.create_task(worker.stop())

    # Windows는 add_signal_handler를 지원하지 않음
    if sys.platform != "win32":
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, signal_handler)


if __name__ == "__main__":
    from common.logging import setup_logging
    from jobline.config import load_config

    async def main():
        # 설정 로드 (프로젝트 루트 기준)
        config = load_config(Path(__file__).parent.parent / "config" / "worker.yaml")
        setup_logging(**config.logging.model_dump())

        worker = Worker(config.worker, transport_config=config.transport)
        load_handlers(worker, config.handlers)
        install_signal_handlers(worker)

        logger.info("Starting Worker...")
        await worker.run()

    asyncio.run(main())
