"""
Gateway transport errors.
"""
from typing import Optional


class RemoteCallError(Exception):
    """Raised when a call through the gateway fails (network, HTTP, decoding)."""

    def __init__(self, operation: str, message: str, status_code: Optional[int] = None):
        self.operation = operation
        self.status_code = status_code
        detail = f"{operation} failed: {message}"
        if status_code is not None:
            detail = f"{operation} failed ({status_code}): {message}"
        super().__init__(detail)
