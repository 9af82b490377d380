class UpdaterError(Exception):
    """Base class for update engine failures."""


class NetworkError(UpdaterError):
    """Non-retryable transfer failure (HTTP status, redirect limit, retries exhausted)."""


class SizeMismatchError(UpdaterError):
    """Server-reported size disagrees with the expected size."""


class ChecksumMismatchError(UpdaterError):
    """Downloaded archive digest does not match the manifest."""


class ExtractionError(UpdaterError):
    """Archive could not be extracted."""


class ExtractionVerificationError(UpdaterError):
    """Extraction produced fewer files than required."""


class InsufficientSpaceError(UpdaterError):
    """Not enough free disk space for a download."""


class ConfigurationError(UpdaterError):
    """Installed version unknown or patch chain cannot be bridged."""


class ManifestError(UpdaterError):
    """Release or patch manifest is malformed."""
