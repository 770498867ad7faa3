from typing import Dict, Optional, Type

import httpx

from gensy.config import settings
from gensy.providers.base import BaseProvider
from gensy.providers.bfl import BFLProvider
from gensy.providers.google_veo import GoogleVeoProvider
from gensy.providers.minimax import MiniMaxProvider
from gensy.providers.replicate import ReplicateProvider


class ProviderRegistry:
    """Provider status clients keyed by ``Generation.provider``."""

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._providers: Dict[str, Type[BaseProvider]] = {}
        self._instances: Dict[str, BaseProvider] = {}
        self.transport = transport

    def register(self, provider_class: Type[BaseProvider]) -> Type[BaseProvider]:
        self._providers[provider_class.name] = provider_class
        return provider_class

    def _options(self, name: str) -> Optional[dict]:
        if name == ReplicateProvider.name:
            return {"api_key": settings.REPLICATE_API_TOKEN}
        if name == MiniMaxProvider.name:
            return {"api_key": settings.MINIMAX_API_KEY, "endpoint": settings.MINIMAX_API_ENDPOINT}
        if name == BFLProvider.name:
            return {"api_key": settings.BFL_API_KEY, "endpoint": settings.BFL_API_ENDPOINT}
        if name == GoogleVeoProvider.name:
            return {
                "project_id": settings.GOOGLE_CLOUD_PROJECT,
                "location": settings.GOOGLE_CLOUD_LOCATION,
                "model": settings.GOOGLE_VEO_MODEL,
                "credentials_file": settings.GOOGLE_APPLICATION_CREDENTIALS,
            }
        return None

    def _is_configured(self, name: str) -> bool:
        options = self._options(name) or {}
        # Veo authenticates with Google credentials instead of an API key
        return bool(options.get("api_key") or options.get("project_id"))

    def get_provider(self, name: Optional[str]) -> Optional[BaseProvider]:
        """Return the client for ``name``, or None when unknown or missing an API key."""
        if not name or name not in self._providers:
            return None
        if name not in self._instances:
            if not self._is_configured(name):
                return None
            options = self._options(name)
            self._instances[name] = self._providers[name](
                timeout=settings.PROVIDER_TIMEOUT_SECONDS,
                transport=self.transport,
                **options,
            )
        return self._instances[name]

    def list_providers(self) -> list:
        return [
            {"name": cls.name, "display_name": cls.display_name, "configured": self._is_configured(cls.name)}
            for cls in self._providers.values()
        ]


provider_registry = ProviderRegistry()
provider_registry.register(ReplicateProvider)
provider_registry.register(MiniMaxProvider)
provider_registry.register(BFLProvider)
provider_registry.register(GoogleVeoProvider)
