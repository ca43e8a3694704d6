"""Transport 모듈 - 코디네이터 통신"""
from transport.base import BaseTransport
from transport.http import HttpTransport
from transport.memory import InMemoryBackend, InMemoryTransport
from transport.model.transport import TransportConfig, TransportRequest, TransportResponse
from transport.exception import (
    TransportError,
    TransportConnectionError,
    TransportValidationError,
    NotFoundError,
    ConflictError,
    DuplicateError,
    RateLimitError,
    ServerError,
    parse_error_response,
)

__all__ = [
    "BaseTransport",
    "HttpTransport",
    "InMemoryBackend",
    "InMemoryTransport",
    "TransportConfig",
    "TransportRequest",
    "TransportResponse",
    "TransportError",
    "TransportConnectionError",
    "TransportValidationError",
    "NotFoundError",
    "ConflictError",
    "DuplicateError",
    "RateLimitError",
    "ServerError",
    "parse_error_response",
]
