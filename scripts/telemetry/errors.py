"""Exceptions raised to the host application for misuse."""


class TelemetryError(Exception):
    """Base class for SDK errors."""


class NotStartedError(TelemetryError):
    """Raised when recording or requesting before start()."""

    def __init__(self, message: str = "You must first start the SDK via the start method"):
        super().__init__(message)


class ConfigurationError(TelemetryError):
    """Raised when a required URL or key is not configured."""
