"""Provider adapters for different control planes."""
from typing import Any, Optional

from .base import Provider
from .local import LocalStateProvider
from .memory import FailureRule, InMemoryProvider

__all__ = [
    "Provider",
    "InMemoryProvider",
    "LocalStateProvider",
    "FailureRule",
    "create_provider",
]

# Provider registry
PROVIDER_TYPES = {
    "memory": InMemoryProvider,
    "local": LocalStateProvider,
}


def create_provider(name: str, options: Optional[dict[str, Any]] = None) -> Provider:
    """Factory function to create provider instances."""
    provider_type = (name or "").lower()
    if provider_type not in PROVIDER_TYPES:
        raise ValueError(f"Unknown provider type: {name}")

    provider_class = PROVIDER_TYPES[provider_type]
    return provider_class(options)
