from gensy.providers.base import BaseProvider, JobState, ProviderJobStatus
from gensy.providers.registry import ProviderRegistry, provider_registry

__all__ = [
    "BaseProvider",
    "JobState",
    "ProviderJobStatus",
    "ProviderRegistry",
    "provider_registry",
]
