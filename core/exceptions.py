"""
Custom exceptions for better error handling.
"""
from typing import Any, Dict, Optional


class RateGuardException(Exception):
    """Base exception for all RateGuard errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        """
        Initialize exception.

        Args:
            message: Error message
            details: Additional error details
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigurationError(RateGuardException):
    """Raised when configuration is invalid or a required credential is missing."""
    pass


class ValidationError(RateGuardException):
    """Raised when user input fails validation."""
    pass


class FileTooLargeError(ValidationError):
    """Raised when an uploaded document exceeds the size ceiling."""
    pass


class UnsupportedFileTypeError(ValidationError):
    """Raised when an uploaded document is neither an image nor a PDF."""
    pass


class InsufficientCreditsError(RateGuardException):
    """Raised when a free-plan organization has no credits left."""
    pass


class LLMError(RateGuardException):
    """Raised when an LLM / OCR API call fails."""
    pass


class ProviderError(LLMError):
    """Raised when one extraction strategy fails and the next should be tried."""
    pass


class ProviderNotConfiguredError(ProviderError):
    """Raised when a provider has no credentials configured."""
    pass


class DocumentUnreadableError(RateGuardException):
    """Raised when every extraction provider failed or returned too little text."""
    pass


class RateUnavailableError(RateGuardException):
    """Raised when a live market rate cannot be fetched."""
    pass


class PersistenceError(RateGuardException):
    """Raised when a document store operation fails."""
    pass


class DataNotFoundError(RateGuardException):
    """Raised when required data is not found."""
    pass


class SeatLimitError(RateGuardException):
    """Raised when an organization has no free seats left."""
    pass


class PaymentError(RateGuardException):
    """Raised when a payment callback cannot be applied."""
    pass


class ExportError(RateGuardException):
    """Raised when ledger export fails."""
    pass
