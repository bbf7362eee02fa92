"""
EdgeRouter exception hierarchy.

All custom exceptions inherit from EdgeRouterException so callers can
catch a single base type when they want a broad safety net.
"""


class EdgeRouterException(Exception):
    """Base exception for all EdgeRouter errors."""


class ConfigurationError(EdgeRouterException, ValueError):
    """Raised when configuration is invalid or cannot be loaded."""


class InvalidRequestError(EdgeRouterException, ValueError):
    """Raised when a chat request carries no messages."""


class NoAvailableProvidersError(EdgeRouterException):
    """Raised when every registered provider is unhealthy."""


class UnknownStrategyError(EdgeRouterException, ValueError):
    """Raised when a routing strategy name is not recognised."""


class UnknownProviderError(EdgeRouterException, KeyError):
    """Raised when a provider is looked up by an unregistered name."""


class NoCandidatesError(EdgeRouterException):
    """Raised when the strategy selector is handed an empty pool.

    The router always falls back to the healthy set, so this signals a
    bug rather than an operational condition.
    """


class ProviderError(EdgeRouterException):
    """Raised when the hand-off to a provider client fails."""
