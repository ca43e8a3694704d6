"""Transport 모델"""
from transport.model.transport import (
    BASE_PATH,
    CONTENT_TYPE,
    PROTOCOL_VERSION,
    TransportConfig,
    TransportRequest,
    TransportResponse,
)

__all__ = [
    "BASE_PATH",
    "CONTENT_TYPE",
    "PROTOCOL_VERSION",
    "TransportConfig",
    "TransportRequest",
    "TransportResponse",
]
