"""Worker 모듈 - 잡 claim/실행/보고"""
from worker.base import HandlerRegistry, JobHandler
from worker.durable import DurableContext, ReplayLogEntry
from worker.exception import (
    WorkerError,
    WorkerAlreadyActiveError,
    HandlerNotFoundError,
    JobTimeoutError,
    WorkerShutdownError,
    ReplayDivergenceError,
)
from worker.executor import Executor
from worker.main import Worker, load_handlers, install_signal_handlers
from worker.middleware import logging_middleware, timeout_middleware
from worker.progress import report_progress
from worker.model import ActiveJob, Job, JobContext, JobError, WorkerConfig, WorkerState

__all__ = [
    "Worker",
    "WorkerConfig",
    "WorkerState",
    "Executor",
    "HandlerRegistry",
    "JobHandler",
    "DurableContext",
    "ReplayLogEntry",
    "ActiveJob",
    "Job",
    "JobContext",
    "JobError",
    "WorkerError",
    "WorkerAlreadyActiveError",
    "HandlerNotFoundError",
    "JobTimeoutError",
    "WorkerShutdownError",
    "ReplayDivergenceError",
    "load_handlers",
    "install_signal_handlers",
    "logging_middleware",
    "timeout_middleware",
    "report_progress",
]
