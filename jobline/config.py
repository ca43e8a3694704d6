"""
YAML 설정 로드

config/worker.yaml 예:

    worker:
      queues: [critical, default]
      concurrency: 10
    transport:
      url: http://localhost:8080
    logging:
      level: INFO
      json_format: false
    handlers:
      - worker.job
"""

from pathlib import Path

import yaml
from pydantic import BaseModel, Field

from transport.model.transport import TransportConfig
from worker.model import WorkerConfig


class LoggingConfig(BaseModel):
    """로깅 설정 (common.logging.setup_logging 인자)"""
    level: str = "INFO"
    json_format: bool = True
    log_file: str | None = None


class AppConfig(BaseModel):
    """설정 파일 전체"""
    worker: WorkerConfig = Field(default_factory=WorkerConfig)
    transport: TransportConfig = Field(default_factory=TransportConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    handlers: list[str] = Field(default_factory=list, description="setup(worker)를 가진 핸들러 모듈/패키지")


def load_config(path: str | Path) -> AppConfig:
    """
    YAML 설정 파일 로드

    Raises:
        FileNotFoundError: 파일 없음
        pydantic.ValidationError: 설정 값 검증 실패
    """
    with open(path, encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}
    return AppConfig(**raw)
