"""
Tunesmith Error Taxonomy
Exceptions surfaced to API callers, each with a stable error code
"""

from datetime import datetime
from typing import Any, Dict, Optional


class TunesmithError(Exception):
    """Base error for user-visible failures"""

    error_code = "tunesmith_error"
    status_code = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.error_code,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(TunesmithError):
    """Request rejected before reaching a provider"""
    error_code = "validation_error"
    status_code = 400


class NotFoundError(TunesmithError):
    error_code = "not_found"
    status_code = 404


class DispatchError(TunesmithError):
    """Provider rejected or could not receive a generation request"""
    error_code = "dispatch_failed"
    status_code = 502

    def __init__(self, service: str, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)
        self.service = service


class RateLimitExceededError(TunesmithError):
    """Quota for a (user, service) window is used up"""
    error_code = "rate_limited"
    status_code = 429

    def __init__(self, service: str, reset_time: datetime, retry_after: int):
        super().__init__(
            f"Too many {service} requests. Try again in {retry_after} seconds.",
            {"service": service, "reset_time": reset_time.isoformat(), "retry_after": retry_after}
        )
        self.service = service
        self.reset_time = reset_time
        self.retry_after = retry_after


class ProviderError(TunesmithError):
    """Provider reported a failed generation or stem separation"""
    error_code = "provider_failed"
    status_code = 502


class GenerationTimeoutError(TunesmithError):
    error_code = "generation_timeout"
    status_code = 504


class StorageError(TunesmithError):
    """Audio could not be downloaded or written to object storage"""
    error_code = "storage_failed"
    status_code = 502
