"""
Core business exceptions for the release tracker.

This module defines a hierarchy of custom exceptions to allow for granular
error handling and clear separation of failure domains.
"""

from typing import Optional


class ReleaseTrackerError(Exception):
    """Base exception for all component-specific errors."""
    pass


# --- Configuration Errors ---

class ConfigurationError(ReleaseTrackerError):
    """Raised for errors related to application configuration."""
    pass


# --- Infrastructure Errors ---

class InfrastructureError(ReleaseTrackerError):
    """Base class for errors related to external systems (network, API, etc.)."""
    pass


class ProviderError(InfrastructureError):
    """
    Raised when the release-data provider rejects or fails a request.

    Carries the HTTP status and/or a network error code so the retry policy
    can classify the failure.
    """

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        code: Optional[str] = None,
    ):
        super().__init__(message)
        self.status = status
        self.code = code


class ResponseFormatError(ProviderError):
    """Raised when the provider answers, but the content cannot be parsed."""
    pass


class StorageError(InfrastructureError):
    """Raised when persisted state cannot be written."""
    pass


# --- Domain/Business Logic Errors ---

class DomainError(ReleaseTrackerError):
    """Base class for errors related to business logic failures."""
    pass


class DataUnavailableError(DomainError):
    """Raised when a slot has neither fresh nor stale data to serve."""
    pass
