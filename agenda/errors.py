"""Domain error codes for the agenda app."""

from dataclasses import dataclass
from enum import Enum


class ErrorCode(Enum):
    """Domain error codes."""

    VALIDATION = "VALIDATION"
    PERSISTENCE = "PERSISTENCE"
    SESSION_NOT_FOUND = "SESSION_NOT_FOUND"
    EVENT_NOT_FOUND = "EVENT_NOT_FOUND"


@dataclass(frozen=True)
class DomainError(Exception):
    """Base domain error with code and user-safe message."""

    code: ErrorCode
    message: str

    def __str__(self) -> str:
        return f"{self.code.value}: {self.message}"

    def to_dict(self) -> dict:
        return {"success": False, "error": self.code.value, "message": self.message}


class ValidationError(DomainError):
    """Raised before any write when the request cannot be honoured."""

    def __init__(self, message: str) -> None:
        super().__init__(code=ErrorCode.VALIDATION, message=message)


class PersistenceError(DomainError):
    """Raised when the store rejects a write. Carries the driver message verbatim."""

    def __init__(self, message: str) -> None:
        super().__init__(code=ErrorCode.PERSISTENCE, message=message)


class SessionNotFoundError(DomainError):
    """Raised when a live session row does not exist."""

    def __init__(self, session_id: str) -> None:
        super().__init__(
            code=ErrorCode.SESSION_NOT_FOUND,
            message="Live session not found",
        )
        object.__setattr__(self, "session_id", session_id)


class EventNotFoundError(DomainError):
    """Raised when a live event has no program to time."""

    def __init__(self, event_id: str) -> None:
        super().__init__(
            code=ErrorCode.EVENT_NOT_FOUND,
            message="Live event not found",
        )
        object.__setattr__(self, "event_id", event_id)
