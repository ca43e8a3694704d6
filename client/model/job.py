"""
인큐 요청 모델

개발자용 옵션(EnqueueOptions)을 와이어 포맷 options 객체로 변환합니다.
"""

import re
from datetime import datetime, timedelta, timezone
from typing import Any, Literal

from pydantic import BaseModel, Field

JOB_TYPE_PATTERN = re.compile(r"^[a-z][a-z0-9_]*(\.[a-z][a-z0-9_]*)*$")
QUEUE_NAME_PATTERN = re.compile(r"^[a-z0-9][a-z0-9\-.]*$")
MAX_QUEUE_NAME_LENGTH = 128

_DURATION_PATTERN = re.compile(r"^(\d+)(ms|s|m|h|d)$")
_DURATION_UNITS = {
    "ms": timedelta(milliseconds=1),
    "s": timedelta(seconds=1),
    "m": timedelta(minutes=1),
    "h": timedelta(hours=1),
    "d": timedelta(days=1),
}


class RetryOptions(BaseModel):
    """재시도 정책"""
    max_attempts: int | None = Field(default=None, ge=1)
    initial_interval: str | None = None  # ISO 8601 duration (예: PT1S)
    backoff_coefficient: float | None = Field(default=None, ge=1)
    max_interval: str | None = None
    jitter: bool | None = None
    non_retryable_errors: list[str] | None = None
    on_exhaustion: Literal["discard", "dead_letter"] | None = None


class UniqueOptions(BaseModel):
    """중복 방지 정책"""
    key: list[str] | None = None
    period: str | None = None
    on_conflict: Literal["reject", "replace", "ignore"] | None = None
    states: list[str] | None = None


class EnqueueOptions(BaseModel):
    """인큐 옵션"""
    queue: str | None = None
    priority: int | None = None
    timeout_ms: int | None = Field(default=None, gt=0)
    delay: str | None = Field(default=None, description="'30s', '5m' 같은 상대 시간 또는 ISO 8601 시각")
    expires_at: str | None = None
    retry: RetryOptions | None = None
    unique: UniqueOptions | None = None
    tags: list[str] | None = None
    meta: dict[str, Any] | None = None
    visibility_timeout_ms: int | None = Field(default=None, gt=0)


class JobSpec(BaseModel):
    """배치 인큐 항목"""
    type: str
    args: Any = Field(default_factory=list)
    options: EnqueueOptions | None = None


def normalize_args(args: Any) -> list[Any]:
    """리스트가 아니면 1개짜리 리스트로 감쌈"""
    if args is None:
        return []
    if isinstance(args, (list, tuple)):
        return list(args)
    return [args]


def parse_delay(delay: str, now: datetime | None = None) -> str:
    """
    상대 시간('5m')을 ISO 8601 시각으로 변환

    형식이 맞지 않으면 이미 ISO 시각으로 보고 그대로 반환합니다.
    """
    match = _DURATION_PATTERN.match(delay)
    if not match:
        return delay
    base = now or datetime.now(timezone.utc)
    return (base + int(match.group(1)) * _DURATION_UNITS[match.group(2)]).isoformat()


def to_wire_options(options: EnqueueOptions | None) -> dict[str, Any] | None:
    """EnqueueOptions → 와이어 options (비어 있으면 None)"""
    if options is None:
        return None

    wire: dict[str, Any] = {}
    if options.queue is not None:
        wire["queue"] = options.queue
    if options.priority is not None:
        wire["priority"] = options.priority
    if options.timeout_ms is not None:
        wire["timeout_ms"] = options.timeout_ms
    if options.delay is not None:
        wire["delay_until"] = parse_delay(options.delay)
    if options.expires_at is not None:
        wire["expires_at"] = options.expires_at
    if options.tags is not None:
        wire["tags"] = list(options.tags)
    if options.visibility_timeout_ms is not None:
        wire["visibility_timeout_ms"] = options.visibility_timeout_ms
    if options.retry is not None:
        wire["retry"] = options.retry.model_dump(exclude_none=True)
    if options.unique is not None:
        wire["unique"] = options.unique.model_dump(exclude_none=True)

    return wire or None


def validate_enqueue(job_type: str, args: Any, queue: str | None) -> list[str]:
    """
    인큐 요청 검증

    Returns:
        오류 메시지 목록 (비어 있으면 유효)
    """
    errors = []
    if not job_type:
        errors.append("type is required")
    elif not JOB_TYPE_PATTERN.match(job_type):
        errors.append(f"type '{job_type}' must be dot-namespaced lowercase (e.g. 'email.send')")

    if not isinstance(args, list):
        errors.append("args must be a list")

    if queue is not None:
        if len(queue) > MAX_QUEUE_NAME_LENGTH:
            errors.append(f"queue name must be at most {MAX_QUEUE_NAME_LENGTH} characters")
        elif not QUEUE_NAME_PATTERN.match(queue):
            errors.append(f"queue '{queue}' must match {QUEUE_NAME_PATTERN.pattern}")
    return errors
