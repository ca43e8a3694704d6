"""
인메모리 코디네이터

테스트/로컬 개발용 코디네이터 대역입니다. 모듈 전역 상태를 쓰지 않고
InMemoryBackend 인스턴스를 명시적으로 생성해 워커/클라이언트에 주입합니다.

사용 예:
    backend = InMemoryBackend()
    backend.push("email.send", [{"to": "a@example.com"}])
    worker = Worker(config, transport=InMemoryTransport(backend))
"""

import asyncio
import copy
import logging
import re
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from common.cancel import CancellationToken
from transport.base import BaseTransport
from transport.exception import NotFoundError, TransportError
from transport.model.transport import TransportRequest, TransportResponse

logger = logging.getLogger(__name__)

_CHECKPOINT_PATH = re.compile(r"^/checkpoints/([^/]+)(/resume)?$")
_JOB_PATH = re.compile(r"^/jobs/([^/]+)$")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class _Failure:
    error: Exception
    remaining: int


@dataclass
class InMemoryBackend:
    """코디네이터 상태 저장소 (인스턴스 단위)"""
    jobs: dict[str, dict[str, Any]] = field(default_factory=dict)
    queues: dict[str, deque] = field(default_factory=dict)
    acks: list[dict[str, Any]] = field(default_factory=list)
    nacks: list[dict[str, Any]] = field(default_factory=list)
    heartbeats: list[dict[str, Any]] = field(default_factory=list)
    progress: list[dict[str, Any]] = field(default_factory=list)
    checkpoints: dict[str, dict[str, Any]] = field(default_factory=dict)
    directive: str | None = None  # 하트비트 응답으로 내려줄 상태 (quiet / terminate)

    def push(
        self,
        job_type: str,
        args: list[Any] | None = None,
        queue: str = "default",
        **attrs: Any,
    ) -> dict[str, Any]:
        """잡을 available 상태로 큐에 추가"""
        job = {
            "specversion": "1.0",
            "id": attrs.pop("id", None) or str(uuid.uuid4()),
            "type": job_type,
            "queue": queue,
            "args": list(args or []),
            "state": "available",
            "attempt": 0,
            "created_at": _now(),
            "enqueued_at": _now(),
            **attrs,
        }
        self.jobs[job["id"]] = job
        self.queues.setdefault(queue, deque()).append(job["id"])
        return copy.deepcopy(job)

    def claim(self, queues: list[str], count: int, worker_id: str) -> list[dict[str, Any]]:
        """우선순위 순서대로 큐를 훑어 최대 count개 잡을 active로 전환"""
        claimed = []
        for queue in queues:
            pending = self.queues.get(queue)
            while pending and len(claimed) < count:
                job = self.jobs[pending.popleft()]
                job["state"] = "active"
                job["attempt"] = job.get("attempt", 0) + 1
                job["started_at"] = _now()
                job["worker_id"] = worker_id
                claimed.append(copy.deepcopy(job))
            if len(claimed) >= count:
                break
        return claimed

    def pending_count(self, queue: str | None = None) -> int:
        if queue is not None:
            return len(self.queues.get(queue, ()))
        return sum(len(q) for q in self.queues.values())

    def job(self, job_id: str) -> dict[str, Any]:
        if job_id not in self.jobs:
            raise NotFoundError("job", job_id)
        return self.jobs[job_id]


class InMemoryTransport(BaseTransport):
    """
    InMemoryBackend를 코디네이터처럼 노출하는 Transport

    모든 요청은 requests에 기록되며 fail_on()으로 특정 경로의 실패를 주입할 수 있습니다.
    """

    def __init__(self, backend: InMemoryBackend | None = None, latency: float = 0.0):
        self.backend = backend or InMemoryBackend()
        self.latency = latency
        self.requests: list[TransportRequest] = []
        self._failures: dict[str, _Failure] = {}

    def fail_on(self, path: str, error: Exception | None = None, times: int = 1) -> None:
        """다음 times번의 path 요청을 실패시킴"""
        self._failures[path] = _Failure(
            error or TransportError(f"Injected failure for {path}", code="injected"),
            times,
        )

    def requests_to(self, path: str) -> list[TransportRequest]:
        return [r for r in self.requests if r.path == path]

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
        self.requests.append(TransportRequest(method, path, copy.deepcopy(body), headers, timeout))

        if token is not None:
            token.raise_if_cancelled()
        if self.latency:
            await asyncio.sleep(self.latency)
        else:
            await asyncio.sleep(0)

        failure = self._failures.get(path)
        if failure is not None:
            failure.remaining -= 1
            if failure.remaining <= 0:
                del self._failures[path]
            raise failure.error

        return TransportResponse(status=200, body=self._route(method, path, body or {}))

    def _route(self, method: str, path: str, body: dict[str, Any]) -> dict[str, Any]:
        backend = self.backend

        if path == "/workers/fetch":
            jobs = backend.claim(body.get("queues", ["default"]), body.get("count", 1), body.get("worker_id", ""))
            return {"jobs": jobs}

        if path == "/workers/ack":
            job = backend.job(body["job_id"])
            job["state"] = "completed"
            job["completed_at"] = _now()
            if "result" in body:
                job["result"] = body["result"]
            backend.acks.append(copy.deepcopy(body))
            return {"acknowledged": True}

        if path == "/workers/nack":
            job = backend.job(body["job_id"])
            error = body.get("error", {})
            job["error"] = error
            job.setdefault("errors", []).append(error)
            max_attempts = job.get("max_attempts", 3)
            if error.get("retryable", True) and job.get("attempt", 1) < max_attempts:
                job["state"] = "retryable"
            else:
                job["state"] = "discarded"
            backend.nacks.append(copy.deepcopy(body))
            return {"state": job["state"]}

        if path == "/workers/heartbeat":
            backend.heartbeats.append(copy.deepcopy(body))
            return {"state": backend.directive or body.get("state"), "server_time": _now()}

        if path == "/workers/progress":
            job = backend.job(body["job_id"])
            job["progress"] = body.get("percentage")
            backend.progress.append(copy.deepcopy(body))
            return {"acknowledged": True}

        if path == "/health":
            return {"status": "ok", "version": "1.0", "backend": {"type": "memory", "status": "ok"}}

        if path == "/jobs" and method == "POST":
            return {"job": self._enqueue(body)}

        if path == "/jobs/batch" and method == "POST":
            return {"jobs": [self._enqueue(spec) for spec in body.get("jobs", [])]}

        match = _JOB_PATH.match(path)
        if match:
            job = backend.job(match.group(1))
            if method == "DELETE":
                job["state"] = "cancelled"
            return {"job": copy.deepcopy(job)}

        match = _CHECKPOINT_PATH.match(path)
        if match:
            return self._checkpoint(method, match.group(1), bool(match.group(2)), body)

        raise NotFoundError("route", f"{method} {path}")

    def _enqueue(self, body: dict[str, Any]) -> dict[str, Any]:
        options = body.get("options") or {}
        attrs: dict[str, Any] = {}
        if body.get("meta"):
            attrs["meta"] = body["meta"]
        if "timeout_ms" in options:
            attrs["timeout"] = options["timeout_ms"]
        if "priority" in options:
            attrs["priority"] = options["priority"]
        if "tags" in options:
            attrs["tags"] = options["tags"]
        if "retry" in options and "max_attempts" in options["retry"]:
            attrs["max_attempts"] = options["retry"]["max_attempts"]
        return self.backend.push(body["type"], body.get("args", []), options.get("queue", "default"), **attrs)

    def _checkpoint(self, method: str, job_id: str, resume: bool, body: dict[str, Any]) -> dict[str, Any]:
        checkpoints = self.backend.checkpoints
        if resume:
            checkpoint = checkpoints.get(job_id)
            if checkpoint is None:
                return {"has_checkpoint": False}
            return {"has_checkpoint": True, "checkpoint": copy.deepcopy(checkpoint)}
        if method == "DELETE":
            checkpoints.pop(job_id, None)
            return {}
        checkpoints[job_id] = {
            "job_id": job_id,
            "state": body.get("state"),
            "step_index": body.get("step_index"),
            "metadata": body.get("metadata", {}),
            "saved_at": _now(),
        }
        return {"saved": True}
