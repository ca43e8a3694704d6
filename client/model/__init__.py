"""Client 모델"""
from client.model.job import (
    EnqueueOptions,
    JobSpec,
    RetryOptions,
    UniqueOptions,
    normalize_args,
    parse_delay,
    to_wire_options,
    validate_enqueue,
)

__all__ = [
    "EnqueueOptions",
    "JobSpec",
    "RetryOptions",
    "UniqueOptions",
    "normalize_args",
    "parse_delay",
    "to_wire_options",
    "validate_enqueue",
]
