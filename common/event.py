"""
이벤트(알림) 모듈

워커/클라이언트가 발생시키는 라이프사이클 이벤트를 리스너에 전달합니다.
로깅/메트릭 미들웨어 등 외부 수집기가 이 이벤트를 구독합니다.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable

from common.middleware import maybe_await

logger = logging.getLogger(__name__)

__all__ = ['Event', 'EventEmitter', 'create_event', 'ANY_EVENT']

ANY_EVENT = "*"

# 워커 이벤트
WORKER_STARTED = "worker.started"
WORKER_QUIET = "worker.quiet"
WORKER_STOPPED = "worker.stopped"

# 잡 이벤트
JOB_ENQUEUED = "job.enqueued"
JOB_STARTED = "job.started"
JOB_COMPLETED = "job.completed"
JOB_FAILED = "job.failed"


@dataclass
class Event:
    """이벤트 envelope"""
    type: str
    source: str
    data: dict[str, Any] = field(default_factory=dict)
    subject: str | None = None
    id: str = field(default_factory=lambda: f"evt_{uuid.uuid4()}")
    time: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    specversion: str = "1.0"

    def to_dict(self) -> dict[str, Any]:
        event = {
            "specversion": self.specversion,
            "id": self.id,
            "type": self.type,
            "source": self.source,
            "time": self.time,
            "data": self.data,
        }
        if self.subject is not None:
            event["subject"] = self.subject
        return event


def create_event(event_type: str, source: str, data: dict[str, Any], subject: str | None = None) -> Event:
    """이벤트 생성 헬퍼"""
    return Event(type=event_type, source=source, data=data, subject=subject)


Listener = Callable[[Event], Any]


class EventEmitter:
    """타입별 리스너 레지스트리"""

    def __init__(self):
        self._listeners: dict[str, list[Listener]] = {}

    def on(self, event_type: str, listener: Listener) -> Callable[[], None]:
        """
        리스너 등록

        Returns:
            등록 해제 함수
        """
        self._listeners.setdefault(event_type, []).append(listener)
        return lambda: self.off(event_type, listener)

    def on_any(self, listener: Listener) -> Callable[[], None]:
        """모든 이벤트 구독"""
        return self.on(ANY_EVENT, listener)

    def off(self, event_type: str, listener: Listener) -> None:
        listeners = self._listeners.get(event_type)
        if listeners and listener in listeners:
            listeners.remove(listener)

    async def emit(self, event: Event) -> None:
        """타입 리스너 → 전체(*) 리스너 순으로 호출 (async 리스너는 await)"""
        targets = list(self._listeners.get(event.type, [])) + list(self._listeners.get(ANY_EVENT, []))
        for listener in targets:
            await maybe_await(listener(event))

    def listener_count(self, event_type: str | None = None) -> int:
        if event_type is None:
            return sum(len(v) for v in self._listeners.values())
        return len(self._listeners.get(event_type, []))

    def remove_all_listeners(self) -> None:
        self._listeners.clear()
