"""Custom exception types for the AppVeyor feed audit."""


class FeedAuditError(Exception):
    """Base exception for all recoverable feed audit errors."""


class ConfigurationError(FeedAuditError):
    """Raised when runtime configuration values are missing, invalid, or disagree with the project."""


class AuthenticationError(FeedAuditError):
    """Raised when AppVeyor rejects the configured credentials."""


class ApiError(FeedAuditError):
    """Raised when an AppVeyor API request fails or returns an unexpected response."""


class FeedFormatError(ApiError):
    """Raised when a package feed page cannot be interpreted."""


class DataValidationError(FeedAuditError):
    """Raised when cached result files do not match the expected tabular layout."""
