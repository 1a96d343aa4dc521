from enum import Enum


class StopReason(str, Enum):
    MAX_ATTEMPTS = "MAX_ATTEMPTS"
    NON_RETRYABLE = "NON_RETRYABLE"
    RETRY_DISABLED = "RETRY_DISABLED"
    CANCELLED = "CANCELLED"


class StorageError(Exception):
    """
    Public error raised by storage surfaces.

    Carries the backend status/error code of the failure it was translated
    from; the original failure is available as ``__cause__``.
    """

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.status_code = status_code

    def __str__(self) -> str:
        details = []
        if self.status_code is not None:
            details.append(f"status={self.status_code}")
        if self.error_code:
            details.append(f"code={self.error_code}")
        if not details:
            return self.message
        return f"{self.message} ({', '.join(details)})"


class RetryCancelledError(Exception):
    """Raised when the cancel signal fires while waiting between attempts."""

    def __init__(self, attempts: int, last_error: BaseException | None = None) -> None:
        super().__init__(f"Retry cancelled after {attempts} attempt(s)")
        self.attempts = attempts
        self.last_error = last_error


class EntityConversionError(ValueError):
    """A property bag value could not be converted to the declared field type."""

    def __init__(self, field: str, value: object, target: object) -> None:
        name = getattr(target, "__name__", repr(target))
        super().__init__(f"Cannot convert property {field!r} value {value!r} to {name}")
        self.field = field
        self.value = value
        self.target = target
