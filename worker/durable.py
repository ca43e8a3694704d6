"""
Durable 실행 컨텍스트 모듈

시간/난수/외부 호출처럼 비결정적인 연산을 기록해 두었다가,
크래시 후 재시도(attempt)에서는 체크포인트의 기록값을 그대로 재생합니다.

사용 예:
    @worker.durable("etl.process")
    async def process(ctx, dc):
        data = await dc.side_effect("fetch-data", fetch_data)
        await dc.checkpoint(1, {"fetched": True})
        started = dc.now()
        run_id = dc.random(8)
        await dc.complete()

재생 중 호출 순서가 기록과 달라지면(divergence) 기본적으로 그 지점부터
기록 모드로 전환합니다. strict=True이면 ReplayDivergenceError를 raise합니다.
"""

import json
import logging
import secrets
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

from common.middleware import maybe_await
from transport.base import BaseTransport
from transport.exception import TransportError
from worker.exception import ReplayDivergenceError

logger = logging.getLogger(__name__)

__all__ = ['DurableContext', 'ReplayLogEntry', 'REPLAY_LOG_KEY']

REPLAY_LOG_KEY = "_replay_log"

KIND_TIME = "time"
KIND_RANDOM = "random"
KIND_CALL = "call"


@dataclass
class ReplayLogEntry:
    """재생 로그 항목"""
    seq: int
    type: str  # time / random / call
    result: Any
    key: str | None = None

    def to_dict(self) -> dict[str, Any]:
        entry = asdict(self)
        if self.key is None:
            del entry["key"]
        return entry

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ReplayLogEntry":
        return cls(seq=data["seq"], type=data["type"], result=data.get("result"), key=data.get("key"))


class DurableContext:
    """
    결정적 실행 컨텍스트

    잡 attempt 1회 동안 하나의 인스턴스가 재생 로그를 독점합니다.
    로그 항목의 위치는 한 번 정해지면 바뀌지 않습니다.
    """

    def __init__(
        self,
        transport: BaseTransport,
        job_id: str,
        attempt: int,
        entries: list[ReplayLogEntry] | None = None,
        strict: bool = False,
    ):
        self._transport = transport
        self._job_id = job_id
        self._attempt = attempt
        self._strict = strict
        self._entries: list[ReplayLogEntry] = list(entries or [])
        self._cursor = 0
        self._replaying = bool(self._entries)

    @classmethod
    async def create(
        cls,
        transport: BaseTransport,
        job_id: str,
        attempt: int,
        strict: bool = False,
    ) -> "DurableContext":
        """
        체크포인트를 조회해 컨텍스트 생성

        재생 로그가 1개 이상 있으면 재생 모드, 아니면 기록 모드로 시작합니다.
        체크포인트 조회 실패는 기록 모드로 간주합니다.
        """
        entries: list[ReplayLogEntry] = []
        try:
            response = await transport.request("GET", f"/checkpoints/{job_id}/resume")
            entries = _parse_resume(response.body)
        except (TransportError, ValueError, KeyError, TypeError) as e:
            logger.debug(f"No usable checkpoint, recording: job_id={job_id}, error={e}")

        if entries:
            logger.info(f"Replaying from checkpoint: job_id={job_id}, entries={len(entries)}")
        return cls(transport, job_id, attempt, entries=entries, strict=strict)

    @property
    def job_id(self) -> str:
        return self._job_id

    @property
    def attempt(self) -> int:
        return self._attempt

    @property
    def entries(self) -> list[ReplayLogEntry]:
        """현재 재생 로그 (복사본)"""
        return list(self._entries)

    def is_replaying(self) -> bool:
        """재생 모드이고 아직 로그 끝에 도달하지 않았으면 True"""
        return self._replaying and self._cursor < len(self._entries)

    def now(self) -> datetime:
        """결정적 현재 시각 (UTC)"""
        entry = self._replay(KIND_TIME)
        if entry is not None:
            return datetime.fromisoformat(entry.result)

        now = datetime.now(timezone.utc)
        self._record(KIND_TIME, now.isoformat(), key="now")
        return now

    def random(self, num_bytes: int) -> str:
        """
        결정적 난수 (hex 문자열, 길이 num_bytes * 2)
        """
        entry = self._replay(KIND_RANDOM)
        if entry is not None:
            return entry.result

        value = secrets.token_hex(num_bytes)
        self._record(KIND_RANDOM, value)
        return value

    async def side_effect(self, key: str, fn: Callable[[], Awaitable[Any] | Any]) -> Any:
        """
        외부 호출 실행 (재생 시에는 fn을 호출하지 않고 기록값 반환)

        Args:
            key: 호출 식별 키
            fn: 실행할 함수 (동기/비동기, 결과는 JSON 직렬화 가능해야 함)
        """
        entry = self._replay(KIND_CALL, key)
        if entry is not None:
            return entry.result

        result = await maybe_await(fn())
        self._record(KIND_CALL, result, key=key)
        return result

    async def checkpoint(self, step_index: int, state: Any) -> None:
        """현재 재생 로그와 상태를 체크포인트로 저장"""
        body = {
            "state": state,
            "step_index": step_index,
            "metadata": {
                REPLAY_LOG_KEY: json.dumps([entry.to_dict() for entry in self._entries]),
                "attempt": str(self._attempt),
            },
        }
        await self._transport.request("POST", f"/checkpoints/{self._job_id}", body)
        logger.debug(f"Checkpoint saved: job_id={self._job_id}, step={step_index}, entries={len(self._entries)}")

    async def complete(self) -> None:
        """잡 성공 후 체크포인트 삭제"""
        await self._transport.request("DELETE", f"/checkpoints/{self._job_id}")

    def _replay(self, kind: str, key: str | None = None) -> ReplayLogEntry | None:
        """커서 위치 항목이 일치하면 반환하고 커서 전진, 아니면 None"""
        if not self.is_replaying():
            self._replaying = False
            return None

        entry = self._entries[self._cursor]
        if entry.type == kind and (kind != KIND_CALL or entry.key is None or entry.key == key):
            self._cursor += 1
            if self._cursor >= len(self._entries):
                self._replaying = False
            return entry

        actual = kind if key is None else f"{kind}:{key}"
        expected = entry.type if entry.key is None else f"{entry.type}:{entry.key}"
        if self._strict:
            raise ReplayDivergenceError(self._job_id, self._cursor, expected, actual)

        logger.warning(
            f"Replay diverged, switching to record mode: job_id={self._job_id}, "
            f"position={self._cursor}, expected={expected}, actual={actual}"
        )
        # 커서 이후 기록은 폐기
        del self._entries[self._cursor:]
        self._replaying = False
        return None

    def _record(self, kind: str, result: Any, key: str | None = None) -> None:
        self._entries.append(ReplayLogEntry(seq=len(self._entries), type=kind, result=result, key=key))


def _parse_resume(body: dict[str, Any]) -> list[ReplayLogEntry]:
    """resume 응답에서 재생 로그 추출"""
    if not body.get("has_checkpoint"):
        return []
    metadata = (body.get("checkpoint") or {}).get("metadata") or {}
    raw = metadata.get(REPLAY_LOG_KEY)
    if not raw:
        return []
    entries = json.loads(raw)
    if not isinstance(entries, list):
        return []
    return [ReplayLogEntry.from_dict(entry) for entry in entries]
