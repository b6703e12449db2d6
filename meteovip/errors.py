"""
Error taxonomy for the MeteoVip backend.
"""


class MeteoVipError(Exception):
    """Base class for all application errors."""


class UpstreamUnavailable(MeteoVipError):
    """The weather provider did not return a usable response."""


class NotFound(MeteoVipError):
    """A user, location or plan does not exist (or is not owned by the caller)."""


class InvalidInput(MeteoVipError):
    """A request payload or command argument is malformed."""


class DeliveryFailure(MeteoVipError):
    """A notification could not be delivered to the chat."""
