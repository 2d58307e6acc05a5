"""Custom exception hierarchy."""

class AppError(Exception):
    """Base exception for application errors."""
    def __init__(self, message: str, original_error: Exception = None):
        super().__init__(message)
        self.original_error = original_error


class DatabaseError(AppError):
    """Raised when a database operation fails."""
    pass


class ValidationError(AppError):
    """Raised when input validation fails."""
    pass


class ConfigurationError(AppError):
    """Raised when configuration is invalid or missing."""
    pass


class DocumentNotFoundError(AppError):
    """Raised when a document is not found."""
    pass


class DocumentFileNotFoundError(AppError):
    """Raised when a document file is not found."""
    pass


class InvalidStatusTransitionError(AppError):
    """Raised when a processing status change is not permitted."""

    def __init__(self, current, target):
        super().__init__(f"Cannot move processing status from {current.value} to {target.value}")
        self.current = current
        self.target = target


class InvalidUploadError(ValidationError):
    """Raised when an uploaded payload is not a PDF."""
    pass
