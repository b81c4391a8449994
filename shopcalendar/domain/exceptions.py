"""
Domain-specific exception hierarchy for the shop calendar engine.
"""


class SchedulingError(Exception):
    """Base class for all scheduling errors."""


class ParseError(SchedulingError, ValueError):
    """Raised when a date or time string is malformed or impossible."""


class ValidationError(SchedulingError, ValueError):
    """Raised when structurally valid input breaks a scheduling rule."""


class FetchError(SchedulingError):
    """Raised when an appointment store or provider call fails."""
