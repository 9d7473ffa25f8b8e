"""Exception taxonomy for the ingestion pipeline and record services."""

from typing import Any, Optional


class AppError(Exception):
    """Base exception for application errors."""

    kind = "app_error"

    def __init__(self, message: str, original_error: Exception = None):
        super().__init__(message)
        self.message = message
        self.original_error = original_error


class ValidationError(AppError):
    """Raised when input or an extraction payload fails validation."""

    kind = "validation_error"

    def __init__(self, message: str, field: Optional[str] = None, original_error: Exception = None):
        super().__init__(message, original_error=original_error)
        self.field = field


class DuplicateDetected(AppError):
    """Raised when an incoming bill is already on record.

    Not a failure: the caller decides whether to proceed.
    """

    kind = "duplicate"

    def __init__(self, message: str, check: Any = None):
        super().__init__(message)
        self.check = check


class ExternalServiceError(AppError):
    """Raised when an external collaborator is unavailable or misbehaves."""

    kind = "external_service_error"


class APIClientError(ExternalServiceError):
    """Raised when an external API call fails."""
    pass


class APITimeoutError(APIClientError):
    """Raised when an external API call times out."""
    pass


class RasterizationError(ExternalServiceError):
    """Raised when a PDF cannot be rendered to images."""
    pass


class DatabaseError(AppError):
    """Raised when a database operation fails."""

    kind = "database_error"


class PersistenceError(DatabaseError):
    """Raised when a transactional write fails; nothing was committed."""

    kind = "persistence_error"


class ConflictError(DatabaseError):
    """Raised when a uniqueness constraint rejects a write."""

    kind = "conflict"


class NotFoundError(AppError):
    """Raised when a requested record does not exist."""

    kind = "not_found"


class InvalidStateTransition(AppError):
    """Raised when a status change is not allowed from the current status."""

    kind = "invalid_state_transition"


class PostProcessingError(AppError):
    """Raised when a step after bill persistence fails."""

    kind = "post_processing_error"

    def __init__(self, message: str, step: str, original_error: Exception = None):
        super().__init__(message, original_error=original_error)
        self.step = step


class PipelineCancelled(AppError):
    """Raised when an ingestion is cancelled through its token."""

    kind = "cancelled"


class ConfigurationError(AppError):
    """Raised when configuration is invalid or missing."""

    kind = "configuration_error"
