"""External service integrations for the BookBeauty platform."""

from .mollie_client import (
    MollieClient,
    MollieClientFactory,
    MollieError,
    MollieOAuthClient,
    is_auth_error,
)

__all__ = [
    "MollieClient",
    "MollieClientFactory",
    "MollieError",
    "MollieOAuthClient",
    "is_auth_error",
]
