"""
Exceptions raised by the analytics pipeline and its data API clients.

Only conditions that make the requested operation impossible raise; sparse
or partially malformed data degrades to neutral results instead.
"""


class AnalyticsError(Exception):
    """Base class for all analytics errors."""


class MissingInputError(AnalyticsError):
    """A required collaborator or argument is missing or unusable."""


class ApiError(AnalyticsError):
    """The blockchain data API returned an error or an unreadable response."""
