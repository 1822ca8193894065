from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


class ErrorCode:
    UNAUTHORIZED = "unauthorized"
    NO_PENDING = "no_pending"
    NO_SESSION = "no_session"
    NOT_FOUND = "not_found"
    MISSING_CHAT = "missing_chat"
    EMPTY_CATALOG = "empty_catalog"
    TRANSPORT_ERROR = "transport_error"
    STORE_ERROR = "store_error"
    CATALOG_ERROR = "catalog_error"
    UNSUPPORTED_CONTENT = "unsupported_content"


@dataclass
class Result(Generic[T]):
    ok: bool
    value: Optional[T] = None
    error: Optional[str] = None
    error_code: Optional[str] = None

    @staticmethod
    def success(value: T) -> "Result[T]":
        return Result(ok=True, value=value)

    @staticmethod
    def failure(error: str, code: str = "unknown") -> "Result[T]":
        return Result(ok=False, error=error, error_code=code)

    @staticmethod
    def from_exception(exc: Exception) -> "Result[T]":
        """Failure carrying the error code of a SupportBotError (or 'unknown')."""
        return Result(ok=False, error=str(exc), error_code=getattr(exc, "code", "unknown"))

    def unwrap_or(self, default: T) -> T:
        return self.value if self.ok else default
