"""Custom exceptions for the compliance engine."""


class ComplianceEngineError(Exception):
    """Base exception for all compliance engine errors."""

    pass


class ConfigurationError(ComplianceEngineError):
    """Error in configuration or settings.

    Raised at startup for invalid policy values. Never recovered by
    falling back to a default.
    """

    pass
