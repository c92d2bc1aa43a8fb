"""
Exception hierarchy for the scanner.

Configuration errors are fatal at startup. Source and scan errors are soft
failures recorded per website; the next periodic pass retries them.
"""


class ScannerError(Exception):
    """Base class for all scanner errors."""


class ConfigError(ScannerError, ValueError):
    """Missing or malformed configuration."""


class SourceError(ScannerError):
    """A backend could not satisfy a request."""


class RangeNotSupported(SourceError):
    """The backend (or its range policy) cannot start a read mid-object."""


class StreamNotSupported(SourceError):
    """The backend only supports range reads."""


class SourceAuthError(SourceError):
    """Credentials are missing or were rejected."""


class ScanError(ScannerError):
    """A read failed part way through a target."""


class ScanCancelled(ScannerError):
    """The scan pass was cancelled while a target was being read."""
