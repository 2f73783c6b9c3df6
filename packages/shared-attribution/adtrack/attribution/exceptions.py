"""Custom exceptions for the attribution engine."""

from __future__ import annotations


class AttributionError(Exception):
    """Base exception for attribution errors."""

    pass


class ConversionNotFoundError(AttributionError):
    """Raised when a conversion ID does not resolve to a stored conversion."""

    def __init__(self, conversion_id: str):
        super().__init__(f"Conversion not found: {conversion_id}")
        self.conversion_id = conversion_id


class EmptyJourneyError(AttributionError):
    """Raised when no touchpoints can be attributed for a conversion."""

    def __init__(self, conversion_id: str):
        super().__init__(f"No touchpoints found for conversion: {conversion_id}")
        self.conversion_id = conversion_id


class UnknownModelError(AttributionError, ValueError):
    """Raised when an attribution model name is not registered."""

    def __init__(self, model_name: str):
        super().__init__(f"Attribution model '{model_name}' not found")
        self.model_name = model_name


class PerformanceLookupError(AttributionError):
    """Raised by stores when a campaign or channel performance lookup fails."""

    pass
