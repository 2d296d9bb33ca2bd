from dataclasses import dataclass, field
from typing import List, Literal, Optional

RATE_LIMITED_MESSAGE = (
    "The service is busy due to high demand. Please wait a moment and try again.")

FAILURE_MESSAGES = {
    "comic": "Sorry, something went wrong while creating your comic. Please try again.",
    "story": "Sorry, something went wrong while creating your story. Please try again.",
    "edit": "Sorry, something went wrong while editing your comic. Please try again.",
    "suggestion": "Sorry, could not fetch a suggestion. Please try again.",
    "face": "Sorry, could not analyze the image. Please try another one.",
}


class EcoMatrixError(Exception):
    """Base class; `message` is what the user gets to see."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.message = message
        self.cause = cause


class ValidationError(EcoMatrixError):
    pass


class BackendFailure(EcoMatrixError):
    pass


class RateLimited(BackendFailure):
    pass


class GenerationFailed(BackendFailure):
    pass


class EditFailed(BackendFailure):
    pass


class StorageFailure(EcoMatrixError):
    pass


class StorageQuotaExceeded(StorageFailure):
    pass


class SchemaMigrationFailure(EcoMatrixError):
    pass


class CapabilityUnavailable(EcoMatrixError):
    pass


def is_rate_limit(exc: BaseException) -> bool:
    text = str(exc)
    return "429" in text or "quota" in text.lower()


def classify_backend_error(exc: BaseException, operation: str) -> BackendFailure:
    """
    Turn whatever a backend raised into a user-facing failure.
    Rate limiting wins over the operation-specific message.
    """
    if isinstance(exc, BackendFailure):
        return exc
    if is_rate_limit(exc):
        return RateLimited(RATE_LIMITED_MESSAGE, cause=exc)
    message = FAILURE_MESSAGES.get(operation, FAILURE_MESSAGES["comic"])
    if operation == "edit":
        return EditFailed(message, cause=exc)
    return GenerationFailed(message, cause=exc)


@dataclass
class Outcome:
    """Result of a public engine operation. Failures are carried, not raised."""
    status: Literal["committed", "rejected", "busy", "failed"]
    error: Optional[EcoMatrixError] = None
    warnings: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.status == "committed"

    @classmethod
    def committed(cls, warnings: Optional[List[str]] = None) -> "Outcome":
        return cls("committed", warnings=list(warnings or []))

    @classmethod
    def rejected(cls, error: Optional[EcoMatrixError] = None) -> "Outcome":
        return cls("rejected", error=error)

    @classmethod
    def busy(cls) -> "Outcome":
        return cls("busy")

    @classmethod
    def failed(cls, error: EcoMatrixError) -> "Outcome":
        return cls("failed", error=error)
