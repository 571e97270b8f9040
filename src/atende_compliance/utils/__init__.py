"""Utility modules for the compliance engine."""

from atende_compliance.utils.exceptions import ComplianceEngineError, ConfigurationError

__all__ = ["ComplianceEngineError", "ConfigurationError"]
