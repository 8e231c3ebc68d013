from __future__ import annotations

from typing import Any, Dict, Optional


class ConstraintViolation(Exception):
    """Raised when a storage-layer uniqueness constraint is violated."""

    def __init__(self, message: str, detail: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail or {}


class CacheUnavailableError(Exception):
    """Raised when the session cache cannot serve a read or write."""

    def __init__(self, operation: str, cause: Optional[BaseException] = None):
        message = f"session cache unavailable during {operation}"
        super().__init__(message)
        self.operation = operation
        self.cause = cause


__all__ = ["ConstraintViolation", "CacheUnavailableError"]
