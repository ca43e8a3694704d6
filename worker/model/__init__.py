"""Worker 모델"""
from worker.model.executor import ActiveJob, JobContext
from worker.model.job import Job, JobError
from worker.model.worker import WorkerConfig, WorkerState

__all__ = ["ActiveJob", "JobContext", "Job", "JobError", "WorkerConfig", "WorkerState"]
