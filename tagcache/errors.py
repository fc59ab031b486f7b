"""
Error types for the tagcache package.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel


class ErrorResponse(BaseModel):
    """Serializable error payload."""

    code: str
    message: str
    details: Dict[str, Any] = {}


class CacheError(Exception):
    """Base exception for cache failures."""

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Plain dict form for logging and JSON payloads."""
        return self.to_response().model_dump()

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            code=self.code,
            message=self.message,
            details=self.details
        )


class BackendError(CacheError):
    """A storage backend failed to complete an operation."""

    def __init__(self, backend: str, message: str = "Backend error", details: Optional[Dict[str, Any]] = None):
        super().__init__("BACKEND_ERROR", f"{backend}: {message}", details)


class BackendUnavailableError(CacheError):
    """A storage backend cannot be reached."""

    def __init__(self, backend: str, message: str = "Backend unavailable", details: Optional[Dict[str, Any]] = None):
        super().__init__("BACKEND_UNAVAILABLE", f"{backend}: {message}", details)


class SerializationError(CacheError):
    """A value could not be encoded for storage."""

    def __init__(self, message: str = "Serialization failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("SERIALIZATION_ERROR", message, details)


class ConfigurationError(CacheError):
    """Cache configuration is invalid."""

    def __init__(self, message: str = "Invalid cache configuration", details: Optional[Dict[str, Any]] = None):
        super().__init__("CONFIGURATION_ERROR", message, details)
