"""
Worker 관련 예외 클래스 정의
"""

from common.exception import JoblineError


class WorkerError(JoblineError):
    """Worker 기본 예외"""
    pass


class WorkerAlreadyActiveError(WorkerError):
    """running/quiet 상태에서 start() 호출"""
    def __init__(self, state: str):
        self.state = state
        super().__init__(f"Worker is already {state}", code="worker_already_active", details={"state": state})


class HandlerNotFoundError(WorkerError):
    """핸들러를 찾을 수 없음"""
    def __init__(self, name: str):
        self.name = name
        super().__init__(
            f"No handler registered for job type '{name}'",
            code="handler_not_found",
            retryable=False,
        )


class JobTimeoutError(WorkerError):
    """잡 실행 타임아웃"""
    def __init__(self, job_id: str, timeout_ms: int):
        self.job_id = job_id
        self.timeout_ms = timeout_ms
        super().__init__(
            f"Job '{job_id}' exceeded {timeout_ms}ms timeout",
            code="timeout",
            retryable=True,
            details={"job_id": job_id, "timeout_ms": timeout_ms},
        )


class WorkerShutdownError(WorkerError):
    """shutdown 유예 시간 만료로 취소됨"""
    def __init__(self, worker_id: str, grace_seconds: float):
        self.worker_id = worker_id
        super().__init__(
            f"Worker {worker_id} shut down after {grace_seconds}s grace period",
            code="worker_shutdown",
            retryable=True,
            details={"worker_id": worker_id},
        )


class ReplayDivergenceError(WorkerError):
    """재실행 로그와 실제 호출 순서가 다름 (strict 모드)"""
    def __init__(self, job_id: str, position: int, expected: str, actual: str):
        self.position = position
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Replay diverged for job '{job_id}' at position {position}: "
            f"expected '{expected}', got '{actual}'",
            code="replay_divergence",
            retryable=False,
            details={"job_id": job_id, "position": position, "expected": expected, "actual": actual},
        )
