"""Custom exception classes for the API and the scan pipeline."""

from typing import Any


class APIError(Exception):
    """Base exception for API errors."""

    def __init__(self, message: str, status_code: int = 400, details: Any = None):
        self.message = message
        self.status_code = status_code
        self.details = details
        super().__init__(message)


class NotFoundError(APIError):
    """Resource not found."""

    def __init__(self, resource: str, resource_id: str):
        super().__init__(
            message=f"{resource} with id '{resource_id}' not found",
            status_code=404,
            details={"resource": resource, "id": resource_id},
        )


class ValidationError(APIError):
    """Malformed input to submit_scan. Never retried."""

    def __init__(self, message: str, details: Any = None):
        super().__init__(message=message, status_code=422, details=details)


class DatabaseError(APIError):
    """Database operation error."""

    def __init__(self, message: str, details: Any = None):
        super().__init__(message=message, status_code=500, details=details)


class TransientIOError(APIError):
    """Upload or QC I/O failure that is worth retrying."""

    def __init__(self, message: str, details: Any = None):
        super().__init__(message=message, status_code=503, details=details)


class EstimationError(APIError):
    """The estimator produced no usable result. Terminal for the scan."""

    def __init__(self, message: str, details: Any = None):
        super().__init__(message=message, status_code=502, details=details)


class ConsistencyError(APIError):
    """A prior scan referenced by the delta stage is missing or no longer completed."""

    def __init__(self, message: str, missing_scan_id: str | None = None):
        super().__init__(
            message=message,
            status_code=409,
            details={"missing_scan_id": missing_scan_id},
        )
