"""Custom exceptions for the DealDesk application."""

from __future__ import annotations


class DealDeskException(Exception):
    """Base exception for DealDesk application."""

    pass


class ValidationError(DealDeskException):
    """Raised when local validation fails, before any network call."""

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.field = field


class InvalidStageError(ValidationError):
    """Raised when a stage code is outside the known enumeration."""

    def __init__(self, stage: object) -> None:
        super().__init__(f"Invalid opportunity stage: {stage!r}", field="Stage")
        self.stage = stage


class TransportError(DealDeskException):
    """Raised when a record-store call fails."""

    retryable = True

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class StaleReferenceError(TransportError):
    """Raised when the target record no longer exists on the record store."""

    retryable = False


class NotFoundError(DealDeskException):
    """Raised when a resource is not found locally."""

    pass


class ConfigurationError(DealDeskException):
    """Raised when configuration is invalid."""

    pass
