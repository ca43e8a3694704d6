"""
로깅 설정

stdout(+ 파일)으로 JSON 또는 텍스트 로그를 출력합니다.
잡 실행 중에 남긴 로그에는 bind_job_context()로 묶은 job_id / job_type / worker_id가
JSON 필드로 함께 기록됩니다.
"""

import logging
import sys
from contextvars import ContextVar, Token
from typing import Any

from pythonjsonlogger.json import JsonFormatter

JSON_FORMAT = '%(timestamp)s %(level)s %(name)s %(message)s'
TEXT_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

# 잡 태스크마다 독립 (asyncio 태스크는 생성 시점의 context를 복사)
_job_context: ContextVar[dict[str, Any] | None] = ContextVar("jobline_job_context", default=None)

_NOISY_LOGGERS = ('asyncio', 'httpx', 'httpcore')


def bind_job_context(**fields: Any) -> Token:
    """현재 태스크의 로그 컨텍스트 설정 (reset_job_context로 해제)"""
    return _job_context.set({k: v for k, v in fields.items() if v is not None})


def reset_job_context(token: Token) -> None:
    _job_context.reset(token)


def current_job_context() -> dict[str, Any]:
    return dict(_job_context.get() or {})


class CustomJsonFormatter(JsonFormatter):
    """timestamp / level / logger / message + 잡 컨텍스트"""

    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)
        log_record['timestamp'] = self.formatTime(record)
        log_record['level'] = record.levelname
        log_record['logger'] = record.name
        if not log_record.get('message'):
            log_record['message'] = record.getMessage()

        for key, value in current_job_context().items():
            log_record.setdefault(key, value)


def setup_logging(
    level: str = "INFO",
    json_format: bool = True,
    log_file: str | None = None
) -> None:
    """
    루트 로거 설정 (기존 핸들러는 교체)

    Args:
        level: 로그 레벨 이름
        json_format: False면 TEXT_FORMAT 사용
        log_file: 지정하면 같은 포맷으로 파일에도 기록
    """
    formatter = CustomJsonFormatter(JSON_FORMAT) if json_format else logging.Formatter(TEXT_FORMAT)

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file, encoding='utf-8'))
    for handler in handlers:
        handler.setFormatter(formatter)

    logging.basicConfig(level=getattr(logging, level.upper()), handlers=handlers, force=True)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
