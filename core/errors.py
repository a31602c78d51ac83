"""
Exception types shared by the tracker components.
"""


class TrackerError(Exception):
    """Base class for tracker errors."""


class ConfigurationError(TrackerError):
    """A required setting is missing. Fatal at startup."""


class SubscriptionError(TrackerError):
    """Moralis stream could not be created or updated."""


class TradeError(TrackerError):
    """Gate.io rejected a request or returned an unexpected response."""

    def __init__(self, message: str, status: int = 0, payload=None):
        super().__init__(message)
        self.status = status
        self.payload = payload
