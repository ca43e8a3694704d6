"""Client 모듈 - 잡 인큐"""
from client.exception import EnqueueValidationError
from client.main import Client
from client.model import EnqueueOptions, JobSpec, RetryOptions, UniqueOptions

__all__ = [
    "Client",
    "EnqueueOptions",
    "EnqueueValidationError",
    "JobSpec",
    "RetryOptions",
    "UniqueOptions",
]
