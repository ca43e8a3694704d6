"""
Client: 잡 인큐 클라이언트 모듈

사용 예:
    client = Client(transport_config=TransportConfig(url="http://localhost:8080"))
    job = await client.enqueue("email.send", {"to": "user@example.com"},
                               EnqueueOptions(queue="email", retry=RetryOptions(max_attempts=5)))

인큐 미들웨어는 잡 envelope을 받아 변경하거나, None을 반환해 인큐를 취소할 수 있습니다.
"""

import logging
from typing import Any
from urllib.parse import quote

from client.exception import EnqueueValidationError
from client.model.job import EnqueueOptions, JobSpec, normalize_args, to_wire_options, validate_enqueue
from common.event import EventEmitter, JOB_ENQUEUED, create_event
from common.middleware import EnqueueMiddleware, MiddlewareChain, compose_enqueue
from transport.base import BaseTransport
from transport.http import HttpTransport
from transport.model.transport import TransportConfig
from worker.model.job import Job

logger = logging.getLogger(__name__)

CLIENT_SOURCE = "ojs://sdk/client"


class Client:
    """잡 인큐 클라이언트"""

    def __init__(
        self,
        transport: BaseTransport | None = None,
        transport_config: TransportConfig | None = None,
    ):
        self._owns_transport = transport is None
        if transport is None:
            if transport_config is None:
                raise ValueError("Either transport or transport_config is required")
            transport = HttpTransport(transport_config)

        self._transport = transport
        self._middleware: MiddlewareChain[EnqueueMiddleware] = MiddlewareChain()
        self._events = EventEmitter()

    def use_enqueue(self, name: str, fn: EnqueueMiddleware) -> "Client":
        """인큐 미들웨어 추가"""
        self._middleware.add(name, fn)
        return self

    @property
    def middleware(self) -> MiddlewareChain[EnqueueMiddleware]:
        return self._middleware

    @property
    def events(self) -> EventEmitter:
        return self._events

    async def enqueue(
        self,
        job_type: str,
        args: Any = None,
        options: EnqueueOptions | None = None,
    ) -> Job | None:
        """
        잡 인큐

        Returns:
            서버가 반환한 잡 (미들웨어가 드롭하면 None)

        Raises:
            EnqueueValidationError: 타입/큐 이름 검증 실패 (전송 전)
        """
        options = options or EnqueueOptions()
        envelope = Job(
            id="",  # 서버에서 할당
            type=job_type,
            queue=options.queue or "default",
            args=normalize_args(args),
            meta=options.meta,
        )

        async def final_enqueue(job: Job) -> Job:
            wire_options = to_wire_options(options) or {}
            if job.queue != (options.queue or "default"):
                wire_options["queue"] = job.queue
            _validate(job.type, job.args, wire_options.get("queue"))

            body: dict[str, Any] = {"type": job.type, "args": job.args}
            if job.meta:
                body["meta"] = job.meta
            if wire_options:
                body["options"] = wire_options

            response = await self._transport.request("POST", "/jobs", body)
            enqueued = Job.model_validate(response.body["job"])
            logger.info(f"Job enqueued: id={enqueued.id}, type={enqueued.type}, queue={enqueued.queue}")
            await self._events.emit(create_event(
                JOB_ENQUEUED, CLIENT_SOURCE, {"job_type": enqueued.type, "queue": enqueued.queue}, subject=enqueued.id,
            ))
            return enqueued

        enqueue = compose_enqueue(self._middleware.entries(), final_enqueue)
        result = await enqueue(envelope)
        if result is None:
            logger.debug(f"Job dropped by enqueue middleware: type={job_type}")
        return result

    async def enqueue_batch(self, specs: list[JobSpec]) -> list[Job]:
        """
        여러 잡을 한 번에 인큐 (미들웨어를 거치지 않음)
        """
        jobs = []
        for spec in specs:
            args = normalize_args(spec.args)
            wire_options = to_wire_options(spec.options)
            _validate(spec.type, args, (wire_options or {}).get("queue"))

            body: dict[str, Any] = {"type": spec.type, "args": args}
            if spec.options is not None and spec.options.meta:
                body["meta"] = spec.options.meta
            if wire_options:
                body["options"] = wire_options
            jobs.append(body)

        response = await self._transport.request("POST", "/jobs/batch", {"jobs": jobs})
        enqueued = [Job.model_validate(job) for job in response.body.get("jobs", [])]
        logger.info(f"Batch enqueued: count={len(enqueued)}")
        return enqueued

    async def get_job(self, job_id: str) -> Job:
        """잡 조회"""
        response = await self._transport.request("GET", f"/jobs/{quote(job_id, safe='')}")
        return Job.model_validate(response.body["job"])

    async def cancel_job(self, job_id: str) -> Job:
        """잡 취소"""
        response = await self._transport.request("DELETE", f"/jobs/{quote(job_id, safe='')}")
        return Job.model_validate(response.body["job"])

    async def health(self) -> dict[str, Any]:
        """코디네이터 상태 조회"""
        response = await self._transport.request("GET", "/health")
        return response.body

    async def close(self) -> None:
        if self._owns_transport:
            await self._transport.close()

    async def __aenter__(self) -> "Client":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()


def _validate(job_type: str, args: Any, queue: str | None) -> None:
    errors = validate_enqueue(job_type, args, queue)
    if errors:
        raise EnqueueValidationError(errors)
