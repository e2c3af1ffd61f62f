"""Remote service integration (liveness, attribution, decision)."""
from .client import RemoteServiceClient
from .exceptions import (
    BadRequestError,
    DecodeError,
    GateClientError,
    PermissionDeniedError,
    TransportError,
)

__all__ = [
    "RemoteServiceClient",
    "GateClientError",
    "BadRequestError",
    "TransportError",
    "DecodeError",
    "PermissionDeniedError",
]
