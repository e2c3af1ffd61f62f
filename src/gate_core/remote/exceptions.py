"""Custom exceptions for the remote service client."""


class GateClientError(Exception):
    """Base exception for all remote service errors."""


class BadRequestError(GateClientError):
    """Raised when a valid request cannot be built (bad URL or target)."""

    def __init__(self, target: str):
        self.target = target
        super().__init__(f"Cannot build request for target={target!r}")


class TransportError(GateClientError):
    """Raised for non-2xx responses and network failures."""

    def __init__(self, message: str, status: int | None = None):
        self.status = status
        super().__init__(message)


class DecodeError(GateClientError):
    """Raised when a success response does not have the expected shape."""

    def __init__(self, message: str, body: str = ""):
        self.body = body
        super().__init__(f"{message}: body={body[:200]}" if body else message)


class PermissionDeniedError(GateClientError):
    """Raised by permission prompt adapters when the user declines."""
