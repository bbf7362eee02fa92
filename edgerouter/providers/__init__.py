"""Provider registry and provider client adapters."""

from edgerouter.providers.client import (
    HttpProviderClient,
    MockProviderClient,
    ProviderClient,
)
from edgerouter.providers.registry import (
    DEFAULT_PROVIDERS,
    Provider,
    ProviderRegistry,
    calculate_cost,
    estimate_tokens,
)

__all__ = [
    "DEFAULT_PROVIDERS",
    "HttpProviderClient",
    "MockProviderClient",
    "Provider",
    "ProviderClient",
    "ProviderRegistry",
    "calculate_cost",
    "estimate_tokens",
]
