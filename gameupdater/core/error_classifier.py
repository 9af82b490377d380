"""Map raw failures to a category, a severity and user-facing remediation.

The caller only needs :func:`is_retryable` to decide between offering a retry
button and asking the user to fix something first.
"""

from __future__ import annotations

import errno
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

logger = logging.getLogger(__name__)


class ErrorCategory(Enum):
    NETWORK = "network"
    FILESYSTEM = "filesystem"
    VERIFICATION = "verification"
    CONFIGURATION = "configuration"
    UNKNOWN = "unknown"


class ErrorSeverity(Enum):
    RETRYABLE = "retryable"
    FATAL = "fatal"


@dataclass(frozen=True)
class CategorizedError:
    category: ErrorCategory
    severity: ErrorSeverity
    technical_message: str
    user_message: str
    suggestions: list[str] = field(default_factory=list)
    original_error: Optional[BaseException] = None

    @property
    def retryable(self) -> bool:
        return self.severity is ErrorSeverity.RETRYABLE


@dataclass(frozen=True)
class _Rule:
    patterns: tuple[str, ...]
    category: ErrorCategory
    severity: ErrorSeverity
    user_message: str
    suggestions: tuple[str, ...]


# Order matters: first match wins.
_RULES: tuple[_Rule, ...] = (
    _Rule(
        patterns=(
            "ENOTFOUND", "ECONNREFUSED", "ETIMEDOUT", "ECONNRESET",
            "network", "Network", "HTTP", "connection", "Connection",
            "timed out", "Timeout", "Name or service not known", "redirects",
        ),
        category=ErrorCategory.NETWORK,
        severity=ErrorSeverity.RETRYABLE,
        user_message="Unable to connect to the update server.",
        suggestions=(
            "Check your internet connection",
            "Disable VPN or proxy if enabled",
            "Check firewall settings",
            "Try again in a few moments",
        ),
    ),
    _Rule(
        patterns=("Size mismatch", "SHA256 mismatch", "checksum", "verification failed"),
        category=ErrorCategory.VERIFICATION,
        severity=ErrorSeverity.RETRYABLE,
        user_message="Downloaded file is corrupted or incomplete.",
        suggestions=(
            "The download may have been interrupted",
            "Try downloading again",
            "Check available disk space",
            "If problem persists, contact support",
        ),
    ),
    _Rule(
        patterns=("EACCES", "EPERM", "permission", "Permission denied"),
        category=ErrorCategory.FILESYSTEM,
        severity=ErrorSeverity.FATAL,
        user_message="Permission denied. Cannot write to game directory.",
        suggestions=(
            "Run the launcher as Administrator",
            "Check folder permissions",
            "Ensure antivirus is not blocking the launcher",
            "Try installing to a different location",
        ),
    ),
    _Rule(
        patterns=("ENOSPC", "no space", "No space", "disk full"),
        category=ErrorCategory.FILESYSTEM,
        severity=ErrorSeverity.FATAL,
        user_message="Not enough disk space.",
        suggestions=(
            "Free up disk space on your drive",
            "Try installing to a different drive",
        ),
    ),
    _Rule(
        patterns=("ENOENT", "not found", "No such file", "does not exist"),
        category=ErrorCategory.FILESYSTEM,
        severity=ErrorSeverity.RETRYABLE,
        user_message="Required file or folder not found.",
        suggestions=(
            "Installation may be incomplete",
            "Try downloading again",
            "Check if antivirus quarantined files",
            "Verify installation path is correct",
        ),
    ),
    _Rule(
        patterns=(
            "configuration", "config", "settings",
            "No client version found", "Cannot apply patches",
        ),
        category=ErrorCategory.CONFIGURATION,
        severity=ErrorSeverity.FATAL,
        user_message="Game installation is missing or corrupted.",
        suggestions=(
            "Download the full game installation",
            "Do not download individual patches",
            "Contact support if you need help",
        ),
    ),
    _Rule(
        patterns=("extract", "Extract", "unzip"),
        category=ErrorCategory.FILESYSTEM,
        severity=ErrorSeverity.RETRYABLE,
        user_message="Failed to extract game files.",
        suggestions=(
            "Downloaded archive may be corrupted",
            "Check available disk space",
            "Ensure antivirus is not blocking extraction",
            "Try downloading again",
        ),
    ),
)

_ERRNO_TAGS = {
    errno.EACCES: "EACCES",
    errno.EPERM: "EPERM",
    errno.ENOSPC: "ENOSPC",
    errno.ENOENT: "ENOENT",
}


def _error_text(error: object) -> str:
    if isinstance(error, BaseException):
        text = str(error) or type(error).__name__
        # OSError messages do not always carry the symbolic errno name.
        if isinstance(error, OSError) and error.errno in _ERRNO_TAGS:
            text = f"{_ERRNO_TAGS[error.errno]}: {text}"
        return text
    return str(error)


def classify(error: object) -> CategorizedError:
    message = _error_text(error)
    logger.debug("Classifying error: %s", message[:100])
    original = error if isinstance(error, BaseException) else None

    for rule in _RULES:
        if any(pattern in message for pattern in rule.patterns):
            return CategorizedError(
                category=rule.category,
                severity=rule.severity,
                technical_message=message,
                user_message=rule.user_message,
                suggestions=list(rule.suggestions),
                original_error=original,
            )

    return CategorizedError(
        category=ErrorCategory.UNKNOWN,
        severity=ErrorSeverity.FATAL,
        technical_message=message,
        user_message="An unexpected error occurred.",
        suggestions=[
            "Try the operation again",
            "Restart the launcher",
            "Contact support if the problem persists",
            f"Error details: {message[:100]}",
        ],
        original_error=original,
    )


def is_retryable(error: object) -> bool:
    return classify(error).severity is ErrorSeverity.RETRYABLE


def format_error_for_user(categorized: CategorizedError) -> str:
    lines = [categorized.user_message]
    if categorized.suggestions:
        lines.append("")
        lines.append("What you can try:")
        lines.extend(f"• {suggestion}" for suggestion in categorized.suggestions)
    return "\n".join(lines)
