"""
Worker 테스트

테스트 항목:
1. 라이프사이클 (start/stop/run, 중복 start, stop 멱등성)
2. claim 루프 (동시 실행 제한, claim 수 ≤ 가용 슬롯, 배치 상한, 백오프)
3. 하트비트 (코디네이터 지시 quiet/terminate, 실패 무시)
4. graceful shutdown (drain, 유예 만료 시 토큰 발동)
5. 핸들러/미들웨어 등록

실행: python -m pytest test/worker_test.py -v
"""

import asyncio
import logging
import sys
from pathlib import Path

import pytest
import pytest_asyncio

# 프로젝트 루트 경로 추가
sys.path.insert(0, str(Path(__file__).parent.parent))

from common.event import WORKER_QUIET, WORKER_STARTED, WORKER_STOPPED
from transport.exception import TransportConnectionError
from transport.memory import InMemoryBackend, InMemoryTransport
from worker.exception import WorkerAlreadyActiveError
from worker.main import Worker, load_handlers
from worker.model import WorkerConfig, WorkerState

# 테스트용 로깅 설정
logging.basicConfig(
    level=logging.DEBUG,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


async def wait_until(predicate, timeout: float = 2.0, interval: float = 0.005) -> None:
    """predicate가 True가 될 때까지 대기 (timeout 초과 시 AssertionError)"""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met within timeout")
        await asyncio.sleep(interval)


class TimedTransport(InMemoryTransport):
    """fetch 요청 시각을 기록하는 Transport"""

    def __init__(self, backend):
        super().__init__(backend)
        self.fetch_times: list[float] = []

    async def request(self, method, path, body=None, **kwargs):
        if path == "/workers/fetch":
            self.fetch_times.append(asyncio.get_running_loop().time())
        return await super().request(method, path, body, **kwargs)


# ============================================================
# Fixtures
# ============================================================

@pytest.fixture
def backend():
    return InMemoryBackend()


@pytest.fixture
def transport(backend):
    return InMemoryTransport(backend)


def make_config(**overrides) -> WorkerConfig:
    values = dict(
        concurrency=2,
        poll_interval_seconds=0.01,
        heartbeat_interval_seconds=10,
        shutdown_timeout_seconds=1,
    )
    values.update(overrides)
    return WorkerConfig(**values)


@pytest_asyncio.fixture
async def worker(transport):
    """테스트용 Worker (종료 시 stop)"""
    w = Worker(make_config(), transport=transport)
    w.register("echo.test", lambda ctx: {"echo": ctx.args[0] if ctx.args else None})
    yield w
    await w.stop()


# ============================================================
# Lifecycle Tests
# ============================================================

class TestWorkerLifecycle:
    """라이프사이클 상태 전이 테스트"""

    @pytest.mark.asyncio
    async def test_initial_state_is_terminated(self, worker):
        assert worker.state is WorkerState.TERMINATED
        assert worker.worker_id.startswith("worker_")

    @pytest.mark.asyncio
    async def test_start_and_stop(self, worker):
        events = []
        worker.events.on_any(lambda e: events.append(e.type))

        await worker.start()
        assert worker.state is WorkerState.RUNNING

        await worker.stop()
        assert worker.state is WorkerState.TERMINATED
        assert events == [WORKER_STARTED, WORKER_STOPPED]

    @pytest.mark.asyncio
    async def test_start_while_running_raises(self, worker):
        """running 상태에서 start() → WorkerAlreadyActiveError"""
        await worker.start()

        with pytest.raises(WorkerAlreadyActiveError, match="already running"):
            await worker.start()
        assert worker.state is WorkerState.RUNNING

    @pytest.mark.asyncio
    async def test_start_while_quiet_raises(self, worker):
        await worker.start()
        await worker.quiet()

        with pytest.raises(WorkerAlreadyActiveError, match="already quiet"):
            await worker.start()

    @pytest.mark.asyncio
    async def test_stop_when_terminated_is_noop(self, worker):
        """terminated 상태의 stop()은 아무것도 하지 않음"""
        stopped = []
        worker.events.on(WORKER_STOPPED, stopped.append)

        await worker.stop()
        await worker.stop()

        assert worker.state is WorkerState.TERMINATED
        assert stopped == []

    @pytest.mark.asyncio
    async def test_restart_resets_counters(self, backend, worker):
        backend.push("echo.test", ["a"])
        await worker.start()
        await wait_until(lambda: worker.jobs_completed == 1)
        await worker.stop()

        await worker.start()
        assert worker.jobs_completed == 0
        await worker.stop()

    @pytest.mark.asyncio
    async def test_stopped_event_payload(self, backend, worker):
        received = []
        worker.events.on(WORKER_STOPPED, received.append)
        backend.push("echo.test", ["a"])

        await worker.start()
        await wait_until(lambda: worker.jobs_completed == 1)
        await worker.stop()

        data = received[0].data
        assert data["worker_id"] == worker.worker_id
        assert data["reason"] == "graceful_shutdown"
        assert data["jobs_completed"] == 1
        assert data["uptime_ms"] >= 0

    @pytest.mark.asyncio
    async def test_run_returns_after_stop(self, worker):
        task = asyncio.create_task(worker.run())
        await wait_until(lambda: worker.state is WorkerState.RUNNING)

        await worker.stop()
        await asyncio.wait_for(task, timeout=1)
        assert worker.state is WorkerState.TERMINATED

    def test_requires_transport_or_config(self):
        with pytest.raises(ValueError):
            Worker(make_config())


# ============================================================
# Claim Loop Tests
# ============================================================

class TestClaimLoop:
    """claim 루프 테스트"""

    @pytest.mark.asyncio
    async def test_processes_jobs_end_to_end(self, backend, worker):
        for value in ("a", "b", "c"):
            backend.push("echo.test", [value])

        await worker.start()
        await wait_until(lambda: len(backend.acks) == 3)

        assert sorted(ack["result"]["echo"] for ack in backend.acks) == ["a", "b", "c"]
        assert worker.jobs_completed == 3

    @pytest.mark.asyncio
    async def test_fetch_request_body(self, transport, worker):
        await worker.start()
        await wait_until(lambda: transport.requests_to("/workers/fetch"))

        body = transport.requests_to("/workers/fetch")[0].body
        assert body == {
            "queues": ["default"],
            "count": 2,
            "worker_id": worker.worker_id,
            "visibility_timeout_ms": 30000,
        }

    @pytest.mark.asyncio
    async def test_concurrency_never_exceeded(self, backend, transport):
        """동시 실행 잡 수는 concurrency를 넘지 않음"""
        worker = Worker(make_config(concurrency=2), transport=transport)
        running = 0
        peak = 0

        async def handler(ctx):
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            assert worker.active_job_count <= 2
            await asyncio.sleep(0.02)
            running -= 1

        worker.register("busy.job", handler)
        for _ in range(7):
            backend.push("busy.job")

        await worker.start()
        await wait_until(lambda: len(backend.acks) == 7)
        await worker.stop()

        assert peak == 2
        for request in transport.requests_to("/workers/fetch"):
            assert request.body["count"] <= 2

    @pytest.mark.asyncio
    async def test_claim_count_limited_by_free_slots(self, backend, transport):
        """concurrency 1, 슬롯 1개 → claim 요청 count ≤ 1, 바쁠 때는 claim하지 않음"""
        worker = Worker(make_config(concurrency=1), transport=transport)
        release = asyncio.Event()

        async def handler(ctx):
            await release.wait()

        worker.register("block.job", handler)
        backend.push("block.job")
        backend.push("block.job")

        await worker.start()
        await wait_until(lambda: worker.active_job_count == 1)
        fetches_while_busy = len(transport.requests_to("/workers/fetch"))
        await asyncio.sleep(0.05)

        assert len(transport.requests_to("/workers/fetch")) == fetches_while_busy
        assert all(r.body["count"] <= 1 for r in transport.requests_to("/workers/fetch"))

        release.set()
        await wait_until(lambda: len(backend.acks) == 2)
        await worker.stop()

    @pytest.mark.asyncio
    async def test_claim_batch_capped_at_ten(self, transport):
        worker = Worker(make_config(concurrency=50), transport=transport)
        await worker.start()
        await wait_until(lambda: transport.requests_to("/workers/fetch"))
        await worker.stop()

        assert transport.requests_to("/workers/fetch")[0].body["count"] == 10

    @pytest.mark.asyncio
    async def test_backoff_after_claim_error(self, backend):
        """claim 실패 시 poll_interval * 2^errors 만큼 대기"""
        transport = TimedTransport(backend)
        transport.fail_on("/workers/fetch", TransportConnectionError("down"), times=1)
        worker = Worker(make_config(poll_interval_seconds=0.05), transport=transport)

        await worker.start()
        await wait_until(lambda: len(transport.fetch_times) >= 2)
        await worker.stop()

        gap = transport.fetch_times[1] - transport.fetch_times[0]
        assert gap >= 0.09

    @pytest.mark.asyncio
    async def test_claim_error_counter_resets_on_success(self, backend, transport):
        transport.fail_on("/workers/fetch", TransportConnectionError("down"), times=1)
        worker = Worker(make_config(), transport=transport)

        await worker.start()
        await wait_until(lambda: len(transport.requests_to("/workers/fetch")) >= 3)
        await worker.stop()

        assert worker._consecutive_poll_errors == 0

    @pytest.mark.asyncio
    async def test_invalid_job_in_batch_does_not_drop_others(self, backend, transport):
        """envelope 검증 실패 잡은 invalid_job으로 nack, 같은 배치의 정상 잡은 실행"""
        worker = Worker(make_config(concurrency=5), transport=transport)
        worker.register("t.ok", lambda ctx: ctx.args[0])
        valid = backend.push("t.ok", [1])
        invalid = backend.push("t.ok", [2], timeout="not-a-number")

        await worker.start()
        await wait_until(lambda: backend.acks and backend.nacks)
        await worker.stop()

        assert backend.acks == [{"job_id": valid["id"], "result": 1}]
        assert backend.nacks[0]["job_id"] == invalid["id"]
        assert backend.nacks[0]["error"]["code"] == "invalid_job"
        assert backend.nacks[0]["error"]["retryable"] is False
        assert backend.jobs[invalid["id"]]["state"] == "discarded"
        assert worker._consecutive_poll_errors == 0


# ============================================================
# Heartbeat Tests
# ============================================================

class TestHeartbeat:
    """하트비트 및 코디네이터 지시 테스트"""

    @pytest.mark.asyncio
    async def test_heartbeat_body(self, backend, transport):
        worker = Worker(make_config(heartbeat_interval_seconds=0.01, labels=["gpu"]), transport=transport)
        await worker.start()
        await wait_until(lambda: backend.heartbeats)
        await worker.stop()

        heartbeat = backend.heartbeats[0]
        assert heartbeat["worker_id"] == worker.worker_id
        assert heartbeat["state"] == "running"
        assert heartbeat["active_jobs"] == 0
        assert heartbeat["active_job_ids"] == []
        assert heartbeat["queues"] == ["default"]
        assert heartbeat["concurrency"] == 2
        assert heartbeat["labels"] == ["gpu"]
        assert "hostname" in heartbeat and "pid" in heartbeat

    @pytest.mark.asyncio
    async def test_quiet_directive_stops_claiming(self, backend, transport):
        """quiet 지시 → quiet 상태, 새 claim 중단, 실행 중인 잡은 계속"""
        worker = Worker(make_config(heartbeat_interval_seconds=0.01), transport=transport)
        quiet_events = []
        worker.events.on(WORKER_QUIET, quiet_events.append)
        backend.directive = "quiet"

        await worker.start()
        await wait_until(lambda: worker.state is WorkerState.QUIET)
        fetch_count = len(transport.requests_to("/workers/fetch"))
        backend.push("echo.test")
        await asyncio.sleep(0.05)

        assert len(transport.requests_to("/workers/fetch")) == fetch_count
        assert backend.pending_count() == 1
        assert len(quiet_events) == 1
        await worker.stop()

    @pytest.mark.asyncio
    async def test_terminate_directive_stops_worker(self, backend, transport):
        worker = Worker(make_config(heartbeat_interval_seconds=0.01), transport=transport)
        stopped = []
        worker.events.on(WORKER_STOPPED, stopped.append)
        backend.directive = "terminate"

        await worker.start()
        await wait_until(lambda: worker.state is WorkerState.TERMINATED)

        assert len(stopped) == 1

    @pytest.mark.asyncio
    async def test_heartbeat_failure_is_not_fatal(self, backend, transport):
        """하트비트 실패는 무시되고 워커는 계속 동작"""
        transport.fail_on("/workers/heartbeat", TransportConnectionError("down"), times=3)
        worker = Worker(make_config(heartbeat_interval_seconds=0.01), transport=transport)
        worker.register("echo.test", lambda ctx: "ok")

        await worker.start()
        await wait_until(lambda: worker.consecutive_heartbeat_failures >= 2)
        assert worker.state is WorkerState.RUNNING

        await wait_until(lambda: backend.heartbeats)
        assert worker.consecutive_heartbeat_failures == 0

        backend.push("echo.test")
        await wait_until(lambda: len(backend.acks) == 1)
        await worker.stop()


# ============================================================
# Graceful Shutdown Tests
# ============================================================

class TestGracefulShutdown:
    """drain 및 유예 시간 테스트"""

    @pytest.mark.asyncio
    async def test_stop_waits_for_active_jobs(self, backend, transport):
        worker = Worker(make_config(), transport=transport)

        async def handler(ctx):
            await asyncio.sleep(0.05)
            return "finished"

        worker.register("drain.job", handler)
        backend.push("drain.job")

        await worker.start()
        await wait_until(lambda: worker.active_job_count == 1)
        await worker.stop()

        assert worker.state is WorkerState.TERMINATED
        assert backend.acks[0]["result"] == "finished"
        assert worker.jobs_completed == 1

    @pytest.mark.asyncio
    async def test_grace_period_expiry_cancels_tokens(self, backend, transport):
        """유예 시간 만료 시 남은 잡의 취소 토큰 발동"""
        worker = Worker(make_config(shutdown_timeout_seconds=0.05), transport=transport)

        async def handler(ctx):
            await ctx.token.sleep(10)

        worker.register("stuck.job", handler)
        backend.push("stuck.job")

        await worker.start()
        await wait_until(lambda: worker.active_job_count == 1)

        loop = asyncio.get_running_loop()
        started = loop.time()
        await worker.stop()
        assert loop.time() - started < 1
        assert worker.state is WorkerState.TERMINATED

        await wait_until(lambda: backend.nacks)
        error = backend.nacks[0]["error"]
        assert error["code"] == "handler_error"
        assert error["details"]["error_type"] == "WorkerShutdownError"

    @pytest.mark.asyncio
    async def test_concurrent_stop_calls(self, worker):
        await worker.start()

        await asyncio.gather(worker.stop(), worker.stop())

        assert worker.state is WorkerState.TERMINATED


# ============================================================
# Registration Tests
# ============================================================

class TestRegistration:
    """핸들러/미들웨어 등록 테스트"""

    def test_handler_decorator(self, transport):
        worker = Worker(make_config(), transport=transport)

        @worker.handler("email.send")
        async def send(ctx):
            return "sent"

        assert "email.send" in worker.registry
        assert worker.registry.get("email.send") is send

    def test_use_generates_names(self, transport):
        worker = Worker(make_config(), transport=transport)

        async def first(ctx, next):
            return await next()

        worker.use(first).use("named", first).use(first)

        assert worker.middleware.names() == ["middleware_0", "named", "middleware_2"]

    @pytest.mark.asyncio
    async def test_middleware_runs_around_handler(self, backend, transport):
        worker = Worker(make_config(), transport=transport)
        calls = []

        async def outer(ctx, next):
            calls.append("outer:before")
            result = await next()
            calls.append("outer:after")
            return result

        worker.use("outer", outer)
        worker.register("echo.test", lambda ctx: calls.append("handler") or "ok")
        backend.push("echo.test")

        await worker.start()
        await wait_until(lambda: len(backend.acks) == 1)
        await worker.stop()

        assert calls == ["outer:before", "handler", "outer:after"]

    def test_load_handlers_calls_setup(self, transport):
        worker = Worker(make_config(), transport=transport)

        load_handlers(worker, ["worker.job"])

        assert {"sample.echo", "sample.sleep", "sample.report"} <= set(worker.registry.types())
