import errno

import pytest
import requests  # type: ignore[import-untyped]

from gameupdater.core.error_classifier import (
    ErrorCategory,
    ErrorSeverity,
    classify,
    format_error_for_user,
    is_retryable,
)
from gameupdater.core.errors import (
    ChecksumMismatchError,
    ConfigurationError,
    ExtractionError,
    NetworkError,
    SizeMismatchError,
)


@pytest.mark.parametrize(
    "error, category, severity",
    [
        (NetworkError("HTTP 503 downloading https://cdn/full.zip"), ErrorCategory.NETWORK, ErrorSeverity.RETRYABLE),
        (requests.ConnectionError("Connection aborted"), ErrorCategory.NETWORK, ErrorSeverity.RETRYABLE),
        (SizeMismatchError("Size mismatch: expected 1 bytes"), ErrorCategory.VERIFICATION, ErrorSeverity.RETRYABLE),
        (ChecksumMismatchError("SHA256 mismatch for patch 1.1.0"), ErrorCategory.VERIFICATION, ErrorSeverity.RETRYABLE),
        (PermissionError(errno.EACCES, "Access is denied"), ErrorCategory.FILESYSTEM, ErrorSeverity.FATAL),
        (OSError(errno.ENOSPC, "disk is full"), ErrorCategory.FILESYSTEM, ErrorSeverity.FATAL),
        (FileNotFoundError(errno.ENOENT, "No such file or directory"), ErrorCategory.FILESYSTEM, ErrorSeverity.RETRYABLE),
        (
            ConfigurationError("No client version found. Cannot apply patches."),
            ErrorCategory.CONFIGURATION,
            ErrorSeverity.FATAL,
        ),
        (ExtractionError("Failed to extract patch 1.1.0: truncated"), ErrorCategory.FILESYSTEM, ErrorSeverity.RETRYABLE),
        (ValueError("something odd"), ErrorCategory.UNKNOWN, ErrorSeverity.FATAL),
    ],
)
def test_classify_maps_errors(error, category, severity):
    categorized = classify(error)

    assert categorized.category is category
    assert categorized.severity is severity
    assert categorized.original_error is error
    assert is_retryable(error) == (severity is ErrorSeverity.RETRYABLE)


def test_unknown_error_includes_details_suggestion():
    categorized = classify("x" * 300)

    assert categorized.suggestions[-1] == "Error details: " + "x" * 100


def test_format_error_for_user_lists_suggestions():
    text = format_error_for_user(classify(NetworkError("HTTP 500")))

    lines = text.splitlines()
    assert lines[0] == "Unable to connect to the update server."
    assert "What you can try:" in lines
    assert "• Check your internet connection" in lines
