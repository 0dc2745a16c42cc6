"""
Custom exceptions for the mindshare tracker with user-friendly error messages.

A missing snapshot or window is not an error: lookups return None and the
service layer reports it as a not-found outcome.
"""

class MindshareError(Exception):
    """Base exception for tracker errors."""
    code = "error"

    def __init__(self, message: str, user_message: str = None):
        super().__init__(message)
        self.user_message = user_message or message

class UpstreamUnavailableError(MindshareError):
    """Raised when the direct source and every fallback failed."""
    code = "upstream_unavailable"

    def __init__(self, window: str, attempts: list = None):
        self.window = window
        self.attempts = list(attempts or [])
        details = "; ".join(f"{a.source}: {a.reason}" for a in self.attempts)
        super().__init__(
            f"All sources exhausted for window '{window}'" + (f" ({details})" if details else ""),
            "Upstream data is currently unavailable. Please try again later."
        )

class MalformedPayloadError(MindshareError):
    """Raised when an upstream payload is structurally invalid."""
    code = "malformed_payload"

    def __init__(self, field: str, reason: str):
        self.field = field
        super().__init__(
            f"Malformed payload at '{field}': {reason}",
            "Upstream returned data in an unexpected format."
        )

class StorageError(MindshareError):
    """Raised when snapshot store operations fail."""
    code = "storage_error"

    def __init__(self, operation: str, details: str = None):
        self.operation = operation
        super().__init__(
            f"Storage error during {operation}: {details}",
            "Database error occurred. Please try again later."
        )

class InvalidRequestError(MindshareError):
    """Raised when a request is rejected before touching the store or network."""
    code = "invalid_request"

    def __init__(self, reason: str):
        super().__init__(f"Invalid request: {reason}", reason)
