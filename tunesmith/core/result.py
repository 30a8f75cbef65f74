"""
Result Pattern Implementation
Provider clients and repositories return Result values instead of raising;
services decide which failures become exceptions
"""

from typing import Any, Callable, Dict, Generic, Optional, TypeVar

from pydantic import BaseModel, ConfigDict

T = TypeVar('T')
U = TypeVar('U')


class UnwrapError(ValueError):
    """Raised when unwrapping an error result"""

    def __init__(self, error: Optional[str], error_code: Optional[str] = None):
        super().__init__(f"Result unwrap failed: {error}")
        self.error = error
        self.error_code = error_code


class Result(BaseModel, Generic[T]):
    """Success value or error message with an optional machine-readable code"""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    success: bool
    data: Optional[T] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    details: Optional[Dict[str, Any]] = None

    @classmethod
    def ok(cls, data: T = None) -> 'Result[T]':
        return cls(success=True, data=data)

    @classmethod
    def err(
        cls,
        error: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ) -> 'Result[T]':
        return cls(success=False, error=error, error_code=error_code, details=details)

    def is_ok(self) -> bool:
        return self.success

    def is_err(self) -> bool:
        return not self.success

    def propagate(self) -> 'Result[Any]':
        """Copy of this error for a caller returning a different value type"""
        if self.success:
            raise ValueError("Only error results can be propagated")
        return Result.err(self.error, error_code=self.error_code, details=self.details)

    def unwrap(self) -> T:
        """Value of a successful result (which may be None); raises UnwrapError otherwise"""
        if self.success:
            return self.data
        raise UnwrapError(self.error, self.error_code)

    def unwrap_or(self, default: T) -> T:
        if self.success and self.data is not None:
            return self.data
        return default

    def map(self, func: Callable[[T], U]) -> 'Result[U]':
        """Apply func to a successful value; exceptions become error results"""
        if self.success and self.data is not None:
            try:
                return Result.ok(func(self.data))
            except Exception as e:
                return Result.err(str(e), error_code="map_failed")
        return self
