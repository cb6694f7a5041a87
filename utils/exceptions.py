"""Scan pipeline exceptions"""

from enum import Enum


class ScanError(Exception):
    """Base error for the scan pipeline."""
    pass


class ConfigError(ScanError):
    """Configuration loading errors."""
    pass


class ExtractionError(ScanError):
    """Bad frame buffer or recognizer failure/overrun."""
    pass


class RecognizerBusy(ExtractionError):
    """Recognizer still running an earlier, overrun frame."""
    pass



class ValidationFailure(Enum):
    INVALID_CHECKSUM = "invalid_checksum"
    INVALID_LENGTH = "invalid_length"
    EXPIRED_DATE = "expired_date"


class ValidationError(ScanError):
    """Card fields rejected by the validator."""

    def __init__(self, kind: ValidationFailure, message: str = ""):
        super().__init__(message or kind.value)
        self.kind = kind


class SessionError(ScanError):
    """Rejected session state transition."""
    pass
