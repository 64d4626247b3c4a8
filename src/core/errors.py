"""
Error taxonomy for the scan pipeline.
"""


class ScannerError(Exception):
    """Base class for all scanner errors."""


class ConfigurationError(ScannerError):
    """Missing or invalid configuration (e.g. provider credentials)."""


class ProviderError(ScannerError):
    """A provider call failed or returned an unexpected shape."""


class ValidationError(ProviderError, ValueError):
    """Malformed identity ID. Raised before any provider call is made."""


class ProviderThrottled(ProviderError):
    """Throttling persisted after the bounded number of waits."""


class ProviderUnavailable(ProviderError):
    """Non-throttle failure: bad status code or transport error."""


class ProviderTimeout(ProviderError):
    """The caller-supplied timeout elapsed before the provider finished."""
