"""
Unit tests for custom exceptions.
"""
from core.exceptions import (
    ConfigurationError,
    DataNotFoundError,
    DocumentUnreadableError,
    ExportError,
    FileTooLargeError,
    InsufficientCreditsError,
    LLMError,
    ProviderError,
    ProviderNotConfiguredError,
    RateGuardException,
    SeatLimitError,
    UnsupportedFileTypeError,
    ValidationError,
)


def test_base_exception():
    """Test base exception class."""
    exc = RateGuardException("Test error", details={"key": "value"})
    assert str(exc) == "Test error"
    assert exc.message == "Test error"
    assert exc.details == {"key": "value"}


def test_exception_hierarchy():
    """Test exception inheritance."""
    for exc_type in (
        ValidationError, LLMError, ExportError, ConfigurationError, DataNotFoundError,
        DocumentUnreadableError, InsufficientCreditsError, SeatLimitError,
    ):
        assert issubclass(exc_type, RateGuardException)

    assert issubclass(FileTooLargeError, ValidationError)
    assert issubclass(UnsupportedFileTypeError, ValidationError)
    assert issubclass(ProviderNotConfiguredError, ProviderError)
    assert issubclass(ProviderError, LLMError)


def test_unreadable_document_is_not_a_provider_error():
    """The extraction loop only falls back on ProviderError."""
    assert not issubclass(DocumentUnreadableError, ProviderError)


def test_exception_with_details():
    """Test exception with details dictionary."""
    details = {"filename": "wire.pdf", "size": 2_000_000}
    exc = FileTooLargeError("File too large", details=details)
    assert exc.message == "File too large"
    assert exc.details["filename"] == "wire.pdf"
    assert exc.details["size"] == 2_000_000


def test_exception_without_details():
    """Test exception without details."""
    exc = LLMError("API call failed")
    assert exc.message == "API call failed"
    assert exc.details == {}
